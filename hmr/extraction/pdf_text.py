"""Extraction input boundary.

Only paginated PDF documents are accepted. Anything else is rejected with
``ExtractionFailure`` before it reaches the normalizer. The text parser is a
best-effort labelled-field guesser for GP referral letters; its output has the
same shape an external OCR service would return, so either can feed
``hmr.extraction.normalizer.normalize``.
"""

from __future__ import annotations

import io
import re
from abc import ABC, abstractmethod
from typing import Any

from pypdf import PdfReader
from pypdf.errors import PdfReadError

from hmr.common.exceptions import ExtractionFailure
from observability.logging_config import get_logger
from observability.timing import timed

logger = get_logger(__name__)

PDF_MEDIA_TYPE = "application/pdf"
PDF_MAGIC = b"%PDF-"

# Confidence given to a value found behind an explicit label ("DOB: ...").
LABELLED_CONFIDENCE = 0.9
# Values inferred without a label (titles, signature blocks).
INFERRED_CONFIDENCE = 0.6


class DocumentExtractor(ABC):
    """Port for the black-box extractor."""

    @abstractmethod
    def extract(self, content: bytes, *, filename: str | None = None) -> dict[str, Any]:
        """Return ``{"rawText": str, "fields": {...}, "fieldConfidence": {...}}``.

        Raises:
            ExtractionFailure: The document cannot be processed at all.
        """
        ...


def is_pdf(content: bytes) -> bool:
    return content.lstrip()[: len(PDF_MAGIC)] == PDF_MAGIC


# ============================================================================
# Referral letter text parsing
# ============================================================================

_NAME_PATTERNS = (
    re.compile(r"^\s*RE:\s*(?:Mrs?\.?\s+|Ms\.?\s+)?([^\n\r]+)", re.I | re.M),
    re.compile(r"^\s*Patient(?:\s+Name)?\s*:\s*([^\n\r]+)", re.I | re.M),
    re.compile(r"^\s*Name\s*:\s*([^\n\r]+)", re.I | re.M),
)
_DOB_PATTERNS = (
    re.compile(r"\bDOB[\s:]*(\d{1,2}/\d{1,2}/\d{4})", re.I),
    re.compile(r"\bDate of Birth[\s:]*(\d{1,2}/\d{1,2}/\d{4})", re.I),
    re.compile(r"\b(?:DOB|Date of Birth)[\s:]*(\d{4}-\d{2}-\d{2})", re.I),
)
_MEDICARE_PATTERNS = (
    re.compile(r"\bMedicare\s+(?:No\.?|Number)[\s:#]*([0-9][0-9 ]{8,12}[0-9])", re.I),
    re.compile(r"\bMedicare[\s:#]*([0-9][0-9 ]{8,12}[0-9])", re.I),
)
_ADDRESS_PATTERN = re.compile(
    r"^\s*(?:Address\s*:\s*)?(\d+\s+[^\n\r]*?(?:Street|St|Road|Rd|Avenue|Ave|Drive|Dr|Lane|Ln|Court|Ct)\b[^\n\r]*)",
    re.I | re.M,
)
_PHONE_PATTERN = re.compile(r"\b(?:Ph|Phone|Tel)[\s.:]*(\(?\d[\d ()]{6,14}\d)", re.I)
_EMAIL_PATTERN = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")
_DOCTOR_PATTERNS = (
    re.compile(r"^\s*Referring\s+(?:Doctor|GP)\s*:\s*([^\n\r]+)", re.I | re.M),
    re.compile(r"Yours\s+sincerely[^\n\r]*[\n\r]+\s*([^\n\r]+)", re.I),
    re.compile(r"\bDr\.?\s+([A-Z][a-z]+(?:\s+[A-Z][a-z]+)+)"),
)
_PRACTICE_PATTERNS = (
    re.compile(r"^\s*Practice\s*:\s*([^\n\r]+)", re.I | re.M),
    re.compile(r"^([A-Z][A-Z ]+(?:MEDICAL|CLINIC|CENTRE|CENTER|HEALTH)[A-Z ]*)$", re.M),
)
_SECTION_PATTERNS = {
    "currentConditions": re.compile(
        r"(?:Current\s+(?:Medical\s+)?(?:Conditions|Problems)|Diagnos[ie]s)\s*:?\s*\n?([\s\S]*?)(?=\n\s*\n|\n[A-Z][A-Za-z ]+:|\Z)",
        re.I,
    ),
    "pastMedicalHistory": re.compile(
        r"Past\s+(?:Medical\s+)?History\s*:?\s*\n?([\s\S]*?)(?=\n\s*\n|\n[A-Z][A-Za-z ]+:|\Z)", re.I
    ),
    "allergies": re.compile(r"Allerg(?:ies|y)(?:\s*/\s*ADRs?)?\s*:?\s*([^\n\r]*)", re.I),
}
_MED_SECTION = re.compile(
    r"(?:Current\s+)?Medications?\s*:?\s*\n([\s\S]*?)(?=\n\s*(?:Yours\s+sincerely|Past\s+(?:Medical\s+)?History|Allerg)|\Z)",
    re.I,
)
_MED_INDICATOR = re.compile(
    r"\d+(?:\.\d+)?\s*(?:mg|mcg|g|ml|mL|IU|units?|%)\b|\b(?:tablet|capsule|cream|gel|injection|pessar(?:y|ies)|drops|inhaler|patch)\b",
    re.I,
)
_STRENGTH = re.compile(r"(\d+(?:\.\d+)?\s*(?:mg|mcg|g|ml|IU|units?|%)(?:\s*/\s*\d*\s*(?:mg|ml|mL|dose))?)", re.I)
_FORM = re.compile(r"\b(tablets?|capsules?|cream|gel|injection|pessar(?:y|ies)|drops|inhaler|patch|liquid)\b", re.I)
_FREQUENCY_PATTERNS = (
    re.compile(r"(\d+\s*(?:times?|x)\s*(?:daily|a day|per day))", re.I),
    re.compile(r"\b(once daily|twice daily|three times daily|four times daily|daily|bd|tds|qds|mane|nocte)\b", re.I),
    re.compile(r"\b(morning|evening|at night|bedtime)\b", re.I),
    re.compile(r"\b(every \d+ (?:days?|weeks?|months?))\b", re.I),
)
_INSTRUCTION_LINE = re.compile(
    r"^(?:apply|take|insert|use|administer|inhale|daily|twice daily|morning|evening|night|nocte|bd|tds|qds|"
    r"every \d+|as needed|prn|when required|\d+/\d+)",
    re.I,
)
_PRN = re.compile(r"\b(?:prn|as needed|when required|if needed)\b", re.I)
_LIMITED = re.compile(r"\b(?:for \d+ (?:days?|weeks?)|until (?:resolved|resolution)|short term|course)\b", re.I)


def _first(patterns: tuple[re.Pattern[str], ...], text: str) -> str:
    for pattern in patterns:
        match = pattern.search(text)
        if match and match.group(1).strip():
            return match.group(1).strip()
    return ""


def _dmy_to_iso(value: str) -> str:
    parts = value.split("/")
    if len(parts) == 3:
        day, month, year = parts
        return f"{year}-{month.zfill(2)}-{day.zfill(2)}"
    return value


def _detect_gender(text: str) -> str:
    if re.search(r"\b(?:Mrs|Ms|Miss)\.?\s", text):
        return "Female"
    if re.search(r"\bMr\.?\s", text):
        return "Male"
    male = len(re.findall(r"\b(?:he|him|his)\b", text, re.I))
    female = len(re.findall(r"\b(?:she|her|hers)\b", text, re.I))
    if male > female:
        return "Male"
    if female > male:
        return "Female"
    return ""


def medication_line_confidence(line: str) -> float:
    score = 0.5
    if re.search(r"\d+\s*(?:mg|mcg|g|ml|%|IU)", line, re.I):
        score += 0.2
    if re.search(r"\b(?:daily|bd|tds|qds|morning|evening|nocte|twice|apply)\b", line, re.I):
        score += 0.2
    if re.search(r"\b(?:tablet|capsule|cream|gel|injection|drops)\b", line, re.I):
        score += 0.1
    return round(min(score, 1.0), 2)


def _parse_medication_line(line: str) -> dict[str, Any] | None:
    strength_match = _STRENGTH.search(line)
    if strength_match:
        name = line[: strength_match.start()].strip(" -,")
    else:
        name = " ".join(line.split()[:2])
    if len(name) < 2:
        return None
    form_match = _FORM.search(line)
    frequency = _first(_FREQUENCY_PATTERNS, line)
    if _PRN.search(line):
        regularity = "PRN"
    elif _LIMITED.search(line):
        regularity = "Limited Duration"
    else:
        regularity = "Regular"
    return {
        "name": name,
        "strength": strength_match.group(1).strip() if strength_match else "",
        "form": form_match.group(1).capitalize() if form_match else "",
        "dosage": "",
        "frequency": frequency,
        "prnStatus": regularity,
        "confidence": medication_line_confidence(line),
    }


def parse_medications(text: str) -> list[dict[str, Any]]:
    section_match = _MED_SECTION.search(text)
    section = section_match.group(1) if section_match else text
    medications: list[dict[str, Any]] = []
    current: dict[str, Any] | None = None
    for raw_line in section.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        if _INSTRUCTION_LINE.match(line):
            # Directions line belongs to the medication above it.
            if current is not None:
                current["dosage"] = f"{current['dosage']} {line}".strip()
                if not current["frequency"]:
                    current["frequency"] = _first(_FREQUENCY_PATTERNS, line)
                if _PRN.search(line):
                    current["prnStatus"] = "PRN"
            continue
        if _MED_INDICATOR.search(line) and len(line.split()) > 1:
            parsed = _parse_medication_line(line)
            if parsed is not None:
                if current is not None:
                    medications.append(current)
                current = parsed
    if current is not None:
        medications.append(current)
    return medications


def parse_referral_text(text: str) -> dict[str, Any]:
    """Guess labelled fields in referral letter text.

    Returns the extractor payload shape: camelCase fields, a medications list
    with a per-line confidence and per-field confidences for what was found.
    """
    fields: dict[str, Any] = {}
    confidence: dict[str, float] = {}

    def _put(key: str, value: str, score: float) -> None:
        if value:
            fields[key] = value
            confidence[key] = score

    _put("name", _first(_NAME_PATTERNS, text), LABELLED_CONFIDENCE)
    _put("dob", _dmy_to_iso(_first(_DOB_PATTERNS, text)), LABELLED_CONFIDENCE)
    _put("gender", _detect_gender(text), INFERRED_CONFIDENCE)
    _put("medicareNumber", _first(_MEDICARE_PATTERNS, text).replace(" ", ""), LABELLED_CONFIDENCE)
    address = _ADDRESS_PATTERN.search(text)
    _put("address", address.group(1).strip() if address else "", INFERRED_CONFIDENCE)
    phone = _PHONE_PATTERN.search(text)
    _put("phone", phone.group(1).strip() if phone else "", LABELLED_CONFIDENCE)

    doctor = _first(_DOCTOR_PATTERNS, text)
    doctor = re.sub(r"[^\w\s.]", "", doctor).strip()
    _put("referringDoctor", doctor if len(doctor) > 2 else "", INFERRED_CONFIDENCE)
    _put("practiceName", _first(_PRACTICE_PATTERNS, text), INFERRED_CONFIDENCE)
    email = _EMAIL_PATTERN.search(text)
    _put("doctorEmail", email.group(0) if email else "", INFERRED_CONFIDENCE)

    for key, pattern in _SECTION_PATTERNS.items():
        match = pattern.search(text)
        if match:
            value = " ".join(part.strip(" -•*") for part in match.group(1).splitlines() if part.strip())
            _put(key, value, INFERRED_CONFIDENCE)

    fields["medications"] = parse_medications(text)
    return {"fields": fields, "fieldConfidence": confidence}


class PdfTextExtractor(DocumentExtractor):
    """Text-layer extractor backed by pypdf.

    Scanned PDFs with no text layer yield empty text and an empty record;
    that is still a success, the pharmacist falls back to manual entry.
    """

    def extract(self, content: bytes, *, filename: str | None = None) -> dict[str, Any]:
        if not content or not is_pdf(content):
            raise ExtractionFailure(
                f"Unsupported document{f' {filename!r}' if filename else ''}: only PDF files are accepted",
                media_type=None,
            )
        with timed("extraction.pdf_text") as timer:
            try:
                reader = PdfReader(io.BytesIO(content))
                if reader.is_encrypted and not reader.decrypt(""):
                    raise ExtractionFailure("PDF is password protected", media_type=PDF_MEDIA_TYPE)
                pages = [page.extract_text() or "" for page in reader.pages]
            except ExtractionFailure:
                raise
            except (PdfReadError, ValueError, KeyError, TypeError, OSError) as exc:
                raise ExtractionFailure(f"Could not read PDF: {exc}", media_type=PDF_MEDIA_TYPE) from exc

            raw_text = "\n".join(pages).strip()
            payload = parse_referral_text(raw_text)
        payload["rawText"] = raw_text
        logger.info(
            "Extracted referral text",
            extra={
                "pages": len(pages),
                "chars": len(raw_text),
                "medications": len(payload["fields"]["medications"]),
                "elapsed_ms": round(timer.elapsed_ms, 1),
            },
        )
        return payload


__all__ = [
    "DocumentExtractor",
    "PDF_MEDIA_TYPE",
    "PdfTextExtractor",
    "is_pdf",
    "parse_medications",
    "parse_referral_text",
]
