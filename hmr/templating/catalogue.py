"""The fixed catalogue of data paths a template field may be mapped to.

Paths are derived from the record models, so a path offered here is always
one the resolver can service.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from pydantic import BaseModel

from hmr_schemas.clinical import InterviewResponse, MedicationEntry, PatientInfo, Recommendation
from hmr.common.exceptions import PathError
from hmr.extraction.normalizer import snake_key
from hmr.reporting.util.path_access import format_path, parse_path
from hmr.templating.context import ReportValues, SummaryValues

# Provenance bookkeeping, not document content.
_EXCLUDED_FIELDS = frozenset({"confidence", "origin"})

# Template field names seen in the wild, snake_cased -> data path.
FIELD_ALIASES: dict[str, str] = {
    "name": "patient.name",
    "patient": "patient.name",
    "patient_name": "patient.name",
    "full_name": "patient.name",
    "dob": "patient.dob",
    "date_of_birth": "patient.dob",
    "birth_date": "patient.dob",
    "gender": "patient.gender",
    "sex": "patient.gender",
    "medicare": "patient.medicare_number",
    "medicare_no": "patient.medicare_number",
    "medicare_number": "patient.medicare_number",
    "address": "patient.address",
    "patient_address": "patient.address",
    "phone": "patient.phone",
    "patient_phone": "patient.phone",
    "doctoremail": "patient.doctor_email",
    "patient_email": "patient.email",
    "doctor_email": "patient.doctor_email",
    "gp_email": "patient.doctor_email",
    "doctor": "patient.referring_doctor",
    "doctor_name": "patient.referring_doctor",
    "gp": "patient.referring_doctor",
    "gp_name": "patient.referring_doctor",
    "referring_doctor": "patient.referring_doctor",
    "practice": "patient.practice_name",
    "clinic": "patient.practice_name",
    "practice_name": "patient.practice_name",
    "allergies": "patient.known_allergies",
    "known_allergies": "patient.known_allergies",
    "conditions": "patient.current_conditions",
    "current_conditions": "patient.current_conditions",
    "medical_history": "patient.past_medical_history",
    "past_medical_history": "patient.past_medical_history",
    "interview_date": "interview.interview_date",
    "review_date": "interview.interview_date",
    "next_review_date": "interview.next_review_date",
    "pharmacist": "interview.pharmacist_name",
    "pharmacist_name": "interview.pharmacist_name",
    "medications": "summary.medications_list",
    "medications_list": "summary.medications_list",
    "medication_list": "summary.medications_list",
    "drug_list": "summary.medications_list",
    "medications_count": "summary.medications_count",
    "compliance": "summary.compliance_summary",
    "compliance_summary": "summary.compliance_summary",
    "recommendations": "summary.recommendations_summary",
    "recommendations_summary": "summary.recommendations_summary",
    "recommendations_count": "summary.recommendations_count",
    "high_priority": "summary.high_priority_count",
    "date": "report.generated_date",
    "report_date": "report.generated_date",
    "generated_date": "report.generated_date",
    "watermark": "report.watermark",
    "status": "report.watermark",
}


@dataclass(frozen=True)
class CatalogueEntry:
    path: str
    group: str
    label: str
    computed: bool = False


def _label(name: str) -> str:
    return name.replace("_", " ").capitalize()


def _leaf_names(model: type[BaseModel]) -> list[str]:
    return [name for name in model.model_fields if name not in _EXCLUDED_FIELDS]


class DataPathCatalogue:
    """Enumerates legal mapping targets.

    List sections are offered per slot (``medications[0].name`` ...) up to
    ``max_list_items``; slots that do not exist on a given record render
    empty.
    """

    SECTION_MODELS: dict[str, type[BaseModel]] = {
        "patient": PatientInfo,
        "interview": InterviewResponse,
    }
    LIST_MODELS: dict[str, type[BaseModel]] = {
        "medications": MedicationEntry,
        "recommendations": Recommendation,
    }
    COMPUTED_MODELS: dict[str, type[BaseModel]] = {
        "summary": SummaryValues,
        "report": ReportValues,
    }

    def __init__(self, max_list_items: int = 10) -> None:
        if max_list_items < 1:
            raise ValueError("max_list_items must be at least 1")
        self.max_list_items = max_list_items

    def entries(self) -> list[CatalogueEntry]:
        out: list[CatalogueEntry] = []
        for section, model in self.SECTION_MODELS.items():
            for name in _leaf_names(model):
                out.append(CatalogueEntry(f"{section}.{name}", section, _label(name)))
        for section, model in self.LIST_MODELS.items():
            singular = section[:-1].capitalize()
            for idx in range(self.max_list_items):
                for name in _leaf_names(model):
                    out.append(
                        CatalogueEntry(f"{section}[{idx}].{name}", section, f"{singular} {idx + 1} {_label(name).lower()}")
                    )
        for group, model in self.COMPUTED_MODELS.items():
            for name in model.model_fields:
                out.append(CatalogueEntry(f"{group}.{name}", group, _label(name), computed=True))
        return out

    def paths(self) -> list[str]:
        return [entry.path for entry in self.entries()]

    def is_legal(self, path: str) -> bool:
        try:
            segments = parse_path(path)
        except PathError:
            return False
        if len(segments) == 2 and all(isinstance(s, str) for s in segments):
            section, name = segments
            if section in self.SECTION_MODELS:
                return name in _leaf_names(self.SECTION_MODELS[section])
            if section in self.COMPUTED_MODELS:
                return name in self.COMPUTED_MODELS[section].model_fields
            return False
        if len(segments) == 3 and isinstance(segments[1], int):
            section, idx, name = segments
            model = self.LIST_MODELS.get(section)  # type: ignore[arg-type]
            return (
                model is not None
                and isinstance(name, str)
                and idx < self.max_list_items
                and name in _leaf_names(model)
            )
        return False

    def suggest(self, field_name: str) -> str | None:
        """Best-guess data path for a template field name, or None."""
        if self.is_legal(field_name):
            return format_path(parse_path(field_name))
        key = snake_key(field_name).strip("_")
        if key in FIELD_ALIASES:
            return FIELD_ALIASES[key]
        for prefix in ("patient_", "interview_"):
            if key.startswith(prefix) and key[len(prefix) :]:
                candidate = f"{prefix[:-1]}.{key[len(prefix):]}"
                if self.is_legal(candidate):
                    return candidate
        for section in self.SECTION_MODELS:
            candidate = f"{section}.{key}"
            if self.is_legal(candidate):
                return candidate
        return None


@lru_cache(maxsize=8)
def get_catalogue(max_list_items: int = 10) -> DataPathCatalogue:
    return DataPathCatalogue(max_list_items)


__all__ = ["CatalogueEntry", "DataPathCatalogue", "FIELD_ALIASES", "get_catalogue"]
