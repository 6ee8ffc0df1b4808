from __future__ import annotations

import datetime as dt
from enum import Enum
from typing import Any, List

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RegularityClass(str, Enum):
    REGULAR = "Regular"
    PRN = "PRN"
    LIMITED_DURATION = "LimitedDuration"
    STOPPED = "Stopped"


class ComplianceStatus(str, Enum):
    GOOD = "Good"
    MODERATE = "Moderate"
    POOR = "Poor"
    NON_ADHERENT = "NonAdherent"


class PriorityLevel(str, Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


class FieldOrigin(str, Enum):
    EXTRACTED = "extracted"
    USER_EDITED = "user-edited"


REGULARITY_LABELS: dict[RegularityClass, str] = {
    RegularityClass.REGULAR: "Regular",
    RegularityClass.PRN: "PRN (as needed)",
    RegularityClass.LIMITED_DURATION: "Limited Duration",
    RegularityClass.STOPPED: "Stopped",
}

COMPLIANCE_LABELS: dict[ComplianceStatus, str] = {
    ComplianceStatus.GOOD: "Good",
    ComplianceStatus.MODERATE: "Moderate",
    ComplianceStatus.POOR: "Poor",
    ComplianceStatus.NON_ADHERENT: "Non-adherent",
}

# Interview answer sets used by the review form and the report phrase rules.
MEDICATION_UNDERSTANDING_OPTIONS: tuple[str, ...] = (
    "Good - Patient demonstrates clear understanding of medication purposes",
    "Moderate - Patient has partial understanding, some clarification needed",
    "Poor - Patient has limited understanding of medication purposes",
)
MEDICATION_ADMINISTRATION_OPTIONS: tuple[str, ...] = (
    "Uses a Dose Administration Aid (DAA) packed by their local pharmacy",
    "Self-administers medications using their own DAA (Webster pack/pill organizer)",
    "Self-administers medications without using any DAA",
)
MEDICATION_ADHERENCE_OPTIONS: tuple[str, ...] = (
    "Good compliance - Medications are taken at the same time each day",
    "Poor compliance suspected due to varying dosing times and lifestyle factors",
    "Medications taken at consistent times, but dose discrepancies have been identified",
)
FLUID_INTAKE_OPTIONS: tuple[str, ...] = (
    "Adequate fluid intake (~approximately 2 litres per day)",
    "Inadequate fluid intake - Limited water intake (less than 2 litres per day)",
)
EATING_HABITS_OPTIONS: tuple[str, ...] = (
    "Good eating habits - Regular meals, balanced diet",
    "Poor eating habits - Irregular meals, dietary concerns identified",
)
SMOKING_STATUS_OPTIONS: tuple[str, ...] = ("Non-smoker", "Current smoker", "Ex-smoker")
ALCOHOL_CONSUMPTION_OPTIONS: tuple[str, ...] = (
    "No alcohol consumption",
    "Minimal alcohol consumption (occasional social drinking)",
    "Regular alcohol consumption",
    "Excessive alcohol consumption requiring intervention",
)
RECREATIONAL_DRUG_USE_OPTIONS: tuple[str, ...] = (
    "No recreational drug use",
    "Occasional recreational drug use",
    "Regular recreational drug use",
)


def _today_iso() -> str:
    return dt.date.today().isoformat()


class FieldExtraction(BaseModel):
    """Provenance for one extracted leaf value."""

    model_config = ConfigDict(frozen=True, extra="ignore")
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    origin: FieldOrigin = FieldOrigin.EXTRACTED
    extracted_value: str = ""

    def needs_review(self, threshold: float) -> bool:
        return self.origin == FieldOrigin.EXTRACTED and self.confidence < threshold


class PatientInfo(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")
    name: str = ""
    dob: str = ""
    gender: str = ""
    medicare_number: str = ""
    address: str = ""
    phone: str = ""
    email: str = ""
    referring_doctor: str = ""
    doctor_email: str = ""
    practice_name: str = ""
    known_allergies: str = ""
    current_conditions: str = ""
    past_medical_history: str = ""


class MedicationEntry(BaseModel):
    """A single line of the medication list.

    ``confidence`` and ``origin`` carry the extraction provenance of the whole
    entry. Entries typed in by the pharmacist are created with full confidence.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")
    name: str = ""
    strength: str = ""
    form: str = ""
    dosage: str = ""
    frequency: str = ""
    route: str = ""
    regularity: RegularityClass = RegularityClass.REGULAR
    prescriber: str = ""
    compliance_status: ComplianceStatus = ComplianceStatus.GOOD
    compliance_notes: str = ""
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    origin: FieldOrigin = FieldOrigin.USER_EDITED

    def needs_review(self, threshold: float) -> bool:
        return self.origin == FieldOrigin.EXTRACTED and self.confidence < threshold


class InterviewResponse(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")
    interview_date: str = Field(default_factory=_today_iso)
    next_review_date: str = ""
    pharmacist_name: str = ""
    medication_understanding: str = ""
    medication_administration: str = ""
    medication_adherence: str = ""
    adherence_comments: str = ""
    fluid_intake: str = ""
    tea_cups_daily: str = ""
    coffee_cups_daily: str = ""
    other_fluids: str = ""
    eating_habits: str = ""
    dietary_concerns: str = ""
    smoking_status: str = ""
    cigarettes_daily: str = ""
    quit_date: str = ""
    alcohol_consumption: str = ""
    alcohol_drinks_weekly: str = ""
    recreational_drug_use: str = ""
    drug_type: str = ""
    drug_frequency: str = ""

    @field_validator("*", mode="before")
    @classmethod
    def _numbers_as_text(cls, value: Any) -> Any:
        # Counts (cups, cigarettes, drinks) arrive as numbers from form posts.
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value


class Recommendation(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")
    category: str = ""
    issue_identified: str = ""
    suggested_action: str = ""
    priority_level: PriorityLevel = PriorityLevel.MEDIUM
    patient_counselling: str = ""


class CanonicalRecord(BaseModel):
    """The single structured representation of a review in progress.

    Records are immutable snapshots; edits go through
    ``hmr.reporting.util.path_access.set_path`` and yield a new record.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")
    patient: PatientInfo = Field(default_factory=PatientInfo)
    medications: List[MedicationEntry] = Field(default_factory=list)
    interview: InterviewResponse = Field(default_factory=InterviewResponse)
    recommendations: List[Recommendation] = Field(default_factory=list)
    # Keyed by dotted path, e.g. "patient.name".
    provenance: dict[str, FieldExtraction] = Field(default_factory=dict)

    def flagged_medications(self, threshold: float) -> list[int]:
        return [idx for idx, med in enumerate(self.medications) if med.needs_review(threshold)]

    def flagged_fields(self, threshold: float) -> list[str]:
        return sorted(path for path, prov in self.provenance.items() if prov.needs_review(threshold))


RECORD_SECTIONS: tuple[str, ...] = ("patient", "medications", "interview", "recommendations")


__all__ = [
    "ALCOHOL_CONSUMPTION_OPTIONS",
    "COMPLIANCE_LABELS",
    "CanonicalRecord",
    "ComplianceStatus",
    "EATING_HABITS_OPTIONS",
    "FLUID_INTAKE_OPTIONS",
    "FieldExtraction",
    "FieldOrigin",
    "InterviewResponse",
    "MEDICATION_ADHERENCE_OPTIONS",
    "MEDICATION_ADMINISTRATION_OPTIONS",
    "MEDICATION_UNDERSTANDING_OPTIONS",
    "MedicationEntry",
    "PatientInfo",
    "PriorityLevel",
    "RECORD_SECTIONS",
    "RECREATIONAL_DRUG_USE_OPTIONS",
    "REGULARITY_LABELS",
    "Recommendation",
    "RegularityClass",
    "SMOKING_STATUS_OPTIONS",
]
