"""Turn black-box extractor output into a CanonicalRecord.

The extractor may omit any field, send numbers where text is expected or
return a single medication object instead of a list. ``normalize`` absorbs all
of that: it is pure, never raises, and reports every coercion as a
``NormalizationNote`` so callers can surface what was guessed.
"""

from __future__ import annotations

import math
import re
from collections.abc import Mapping
from typing import Any

from hmr_schemas.clinical import (
    CanonicalRecord,
    ComplianceStatus,
    FieldExtraction,
    FieldOrigin,
    InterviewResponse,
    MedicationEntry,
    PatientInfo,
    RegularityClass,
)
from observability.logging_config import get_logger

from .types import NormalizationNote, NormalizationResult

logger = get_logger(__name__)

_RAW_TEXT_KEYS = ("rawText", "raw_text", "text")
_FIELDS_KEYS = ("fields", "data", "extractedData", "extracted_data")
_CONFIDENCE_KEYS = ("fieldConfidence", "field_confidence")

# snake_case source key -> (section, canonical field)
_PATIENT_ALIASES: dict[str, tuple[str, str]] = {
    "name": ("patient", "name"),
    "patient_name": ("patient", "name"),
    "dob": ("patient", "dob"),
    "date_of_birth": ("patient", "dob"),
    "gender": ("patient", "gender"),
    "sex": ("patient", "gender"),
    "medicare_number": ("patient", "medicare_number"),
    "medicare": ("patient", "medicare_number"),
    "address": ("patient", "address"),
    "phone": ("patient", "phone"),
    "email": ("patient", "email"),
    "patient_email": ("patient", "email"),
    "referring_doctor": ("patient", "referring_doctor"),
    "doctor_name": ("patient", "referring_doctor"),
    "gp": ("patient", "referring_doctor"),
    "doctor_email": ("patient", "doctor_email"),
    "gp_email": ("patient", "doctor_email"),
    "practice_name": ("patient", "practice_name"),
    "allergies": ("patient", "known_allergies"),
    "known_allergies": ("patient", "known_allergies"),
    "current_conditions": ("patient", "current_conditions"),
    "past_medical_history": ("patient", "past_medical_history"),
    "pharmacist_name": ("interview", "pharmacist_name"),
    "interview_date": ("interview", "interview_date"),
}

_MEDICATION_ALIASES: dict[str, str] = {
    "name": "name",
    "medication_name": "name",
    "drug": "name",
    "strength": "strength",
    "form": "form",
    "dosage": "dosage",
    "dose": "dosage",
    "frequency": "frequency",
    "route": "route",
    "prescriber": "prescriber",
    "compliance_notes": "compliance_notes",
}
_MEDICATION_REGULARITY_KEYS = ("prn_status", "regularity", "prn")
_MEDICATION_COMPLIANCE_KEYS = ("compliance_status", "compliance")

_REGULARITY_WORDS: dict[str, RegularityClass] = {
    "regular": RegularityClass.REGULAR,
    "prn": RegularityClass.PRN,
    "prnasneeded": RegularityClass.PRN,
    "asneeded": RegularityClass.PRN,
    "whenrequired": RegularityClass.PRN,
    "limitedduration": RegularityClass.LIMITED_DURATION,
    "limited": RegularityClass.LIMITED_DURATION,
    "shortterm": RegularityClass.LIMITED_DURATION,
    "stopped": RegularityClass.STOPPED,
    "ceased": RegularityClass.STOPPED,
    "discontinued": RegularityClass.STOPPED,
}

_COMPLIANCE_WORDS: dict[str, ComplianceStatus] = {
    "good": ComplianceStatus.GOOD,
    "moderate": ComplianceStatus.MODERATE,
    "poor": ComplianceStatus.POOR,
    "nonadherent": ComplianceStatus.NON_ADHERENT,
    "noncompliant": ComplianceStatus.NON_ADHERENT,
}

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def snake_key(key: str) -> str:
    """``referringDoctor`` -> ``referring_doctor``; snake_case passes through."""
    return _CAMEL_BOUNDARY.sub("_", str(key).strip()).replace("-", "_").replace(" ", "_").lower()


def _label_key(value: str) -> str:
    return re.sub(r"[^a-z]", "", value.lower())


def coerce_text(value: Any, path: str, notes: list[NormalizationNote]) -> str:
    if value is None:
        notes.append(NormalizationNote("null_to_empty", path, "null replaced with empty text"))
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, bool):
        notes.append(NormalizationNote("bool_to_text", path, f"boolean {value!r} stored as text"))
        return "Yes" if value else "No"
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            notes.append(NormalizationNote("number_dropped", path, "non-finite number dropped"))
            return ""
        notes.append(NormalizationNote("number_to_text", path, f"number {value!r} stored as text"))
        if isinstance(value, float) and value.is_integer():
            return str(int(value))
        return str(value)
    if isinstance(value, (list, tuple)):
        parts = [coerce_text(item, path, notes) for item in value]
        notes.append(NormalizationNote("list_joined", path, f"{len(parts)} list item(s) joined"))
        return ", ".join(part for part in parts if part)
    if isinstance(value, Mapping):
        notes.append(NormalizationNote("mapping_dropped", path, "nested object where text was expected"))
        return ""
    notes.append(NormalizationNote("object_to_text", path, f"{type(value).__name__} stored as text"))
    return str(value).strip()


def coerce_confidence(value: Any, path: str, notes: list[NormalizationNote]) -> tuple[float, bool]:
    """Return ``(confidence, scored)``.

    Missing or non-numeric scores become 1.0 and ``scored`` is False. Values in
    (1, 100] are read as percentages; anything else is clamped into [0, 1].
    """
    raw = value
    if isinstance(raw, str):
        text = raw.strip().rstrip("%").strip()
        try:
            raw = float(text)
        except ValueError:
            raw = None
    if raw is None or isinstance(raw, bool) or not isinstance(raw, (int, float)) or not math.isfinite(raw):
        if value is not None:
            notes.append(NormalizationNote("confidence_invalid", path, f"unreadable confidence {value!r}"))
        else:
            notes.append(NormalizationNote("confidence_defaulted", path, "no confidence; treated as 1.0"))
        return 1.0, False

    score = float(raw)
    if 1.0 < score <= 100.0:
        notes.append(NormalizationNote("confidence_percentage", path, f"{score} read as a percentage"))
        score = score / 100.0
    if score < 0.0 or score > 1.0:
        notes.append(NormalizationNote("confidence_clamped", path, f"{score} clamped into [0, 1]"))
        score = min(max(score, 0.0), 1.0)
    return score, True


def _coerce_enum(value: Any, table: Mapping[str, Any], default: Any, path: str, notes: list[NormalizationNote]) -> Any:
    text = coerce_text(value, path, notes)
    if not text:
        return default
    found = table.get(_label_key(text))
    if found is None:
        # "PRN (as needed)" style labels: first word decides.
        found = table.get(_label_key(text.split("(")[0]))
    if found is None:
        notes.append(NormalizationNote("unknown_label", path, f"'{text}' not recognised; using {default.value}"))
        return default
    return found


def _as_medication_list(value: Any, notes: list[NormalizationNote]) -> list[Mapping[str, Any]]:
    if value is None:
        return []
    if isinstance(value, Mapping):
        notes.append(NormalizationNote("single_to_list", "medications", "single medication wrapped in a list"))
        return [value]
    if not isinstance(value, (list, tuple)):
        notes.append(NormalizationNote("medications_dropped", "medications", f"{type(value).__name__} is not a list"))
        return []
    items: list[Mapping[str, Any]] = []
    for idx, item in enumerate(value):
        if isinstance(item, Mapping):
            items.append(item)
        elif isinstance(item, str) and item.strip():
            # Bare medication names are kept as a name-only entry.
            items.append({"name": item})
            notes.append(NormalizationNote("name_only_medication", f"medications[{idx}]", "text item read as a name"))
        else:
            notes.append(NormalizationNote("medication_dropped", f"medications[{idx}]", "item is not an object"))
    return items


def _normalize_medication(item: Mapping[str, Any], idx: int, notes: list[NormalizationNote]) -> MedicationEntry:
    base = f"medications[{idx}]"
    values: dict[str, Any] = {}
    confidence_raw: Any = None
    for key, raw in item.items():
        skey = snake_key(key)
        if skey in _MEDICATION_ALIASES:
            target = _MEDICATION_ALIASES[skey]
            values[target] = coerce_text(raw, f"{base}.{target}", notes)
        elif skey in _MEDICATION_REGULARITY_KEYS:
            values["regularity"] = _coerce_enum(
                raw, _REGULARITY_WORDS, RegularityClass.REGULAR, f"{base}.regularity", notes
            )
        elif skey in _MEDICATION_COMPLIANCE_KEYS:
            values["compliance_status"] = _coerce_enum(
                raw, _COMPLIANCE_WORDS, ComplianceStatus.GOOD, f"{base}.compliance_status", notes
            )
        elif skey == "confidence":
            confidence_raw = raw
        else:
            notes.append(NormalizationNote("unknown_field", f"{base}.{key}", "ignored"))

    confidence, _scored = coerce_confidence(confidence_raw, f"{base}.confidence", notes)
    values["confidence"] = confidence
    values["origin"] = FieldOrigin.EXTRACTED
    return MedicationEntry(**values)


def _field_confidences(source: Mapping[str, Any], notes: list[NormalizationNote]) -> dict[str, float]:
    for key in _CONFIDENCE_KEYS:
        block = source.get(key)
        if block is None:
            continue
        if not isinstance(block, Mapping):
            notes.append(NormalizationNote("confidence_block_dropped", key, "field confidences are not an object"))
            return {}
        scores: dict[str, float] = {}
        for name, raw in block.items():
            alias = _PATIENT_ALIASES.get(snake_key(name))
            if alias is None:
                continue
            path = f"{alias[0]}.{alias[1]}"
            scores[path], _scored = coerce_confidence(raw, path, notes)
        return scores
    return {}


def _pick(raw: Mapping[str, Any], keys: tuple[str, ...]) -> tuple[bool, Any]:
    for key in keys:
        if key in raw:
            return True, raw[key]
    return False, None


def _normalize(raw: Any, notes: list[NormalizationNote]) -> NormalizationResult:
    if raw is None:
        return NormalizationResult(record=CanonicalRecord(), raw_text="", notes=notes)
    if not isinstance(raw, Mapping):
        notes.append(NormalizationNote("input_dropped", None, f"{type(raw).__name__} is not an object"))
        return NormalizationResult(record=CanonicalRecord(), raw_text="", notes=notes)

    _found, raw_text_value = _pick(raw, _RAW_TEXT_KEYS)
    raw_text = coerce_text(raw_text_value, "raw_text", notes) if raw_text_value is not None else ""

    found, fields = _pick(raw, _FIELDS_KEYS)
    if not found:
        # Flat extractor output: the fields sit beside rawText.
        fields = {k: v for k, v in raw.items() if k not in _RAW_TEXT_KEYS}
    if fields is None:
        fields = {}
    if not isinstance(fields, Mapping):
        notes.append(NormalizationNote("fields_dropped", None, f"{type(fields).__name__} is not an object"))
        fields = {}

    flat: dict[str, Any] = {}
    nested_patient = fields.get("patient")
    if isinstance(nested_patient, Mapping):
        flat.update(nested_patient)
    flat.update({k: v for k, v in fields.items() if k != "patient"})

    sections: dict[str, dict[str, str]] = {"patient": {}, "interview": {}}
    medications_raw: Any = None
    for key, value in flat.items():
        skey = snake_key(key)
        if skey == "medications":
            medications_raw = value
            continue
        if key in _CONFIDENCE_KEYS or key in _RAW_TEXT_KEYS:
            continue
        alias = _PATIENT_ALIASES.get(skey)
        if alias is None:
            notes.append(NormalizationNote("unknown_field", key, "ignored"))
            continue
        section, name = alias
        text = coerce_text(value, f"{section}.{name}", notes)
        # First non-empty alias wins ("allergies" and "known_allergies" both map).
        if text or name not in sections[section]:
            sections[section][name] = text

    if not sections["interview"].get("interview_date"):
        sections["interview"].pop("interview_date", None)

    medications = [
        _normalize_medication(item, idx, notes)
        for idx, item in enumerate(_as_medication_list(medications_raw, notes))
    ]

    scores = _field_confidences(fields, notes) or _field_confidences(raw, notes)
    provenance: dict[str, FieldExtraction] = {}
    for section, values in sections.items():
        for name, text in values.items():
            path = f"{section}.{name}"
            if not text and path not in scores:
                continue
            provenance[path] = FieldExtraction(
                confidence=scores.get(path, 1.0),
                origin=FieldOrigin.EXTRACTED,
                extracted_value=text,
            )

    record = CanonicalRecord(
        patient=PatientInfo(**sections["patient"]),
        medications=medications,
        interview=InterviewResponse(**sections["interview"]),
        provenance=provenance,
    )
    return NormalizationResult(record=record, raw_text=raw_text, notes=notes)


def normalize(raw: Any) -> NormalizationResult:
    """Normalize extractor output; total over any input.

    Accepts ``{"rawText": ..., "fields": {...}}`` (or snake_case / ``data``
    variants, or a flat object) and always returns a record. When something
    unexpected still slips through, the result is an empty record plus the raw
    text so the pharmacist can fall back to manual entry.
    """
    notes: list[NormalizationNote] = []
    try:
        result = _normalize(raw, notes)
    except Exception as exc:  # noqa: BLE001
        logger.warning("Normalization fell back to an empty record", extra={"error": repr(exc)})
        raw_text = ""
        if isinstance(raw, Mapping):
            raw_text = next((str(raw[k]) for k in _RAW_TEXT_KEYS if isinstance(raw.get(k), str)), "")
        notes.append(NormalizationNote("fallback_empty_record", None, f"normalization failed: {exc}"))
        return NormalizationResult(record=CanonicalRecord(), raw_text=raw_text, notes=notes)

    if result.notes:
        logger.debug(
            "Normalized extractor output",
            extra={"notes": len(result.notes), "medications": len(result.record.medications)},
        )
    return result


__all__ = ["coerce_confidence", "coerce_text", "normalize", "snake_key"]
