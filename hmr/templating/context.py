"""Values a custom template can be filled from.

The render context exposes the record sections as-is plus two computed
groups, ``summary`` (list digests) and ``report`` (generation metadata). Both
groups are frozen models so the strict resolver rejects misspelled paths.
"""

from __future__ import annotations

import datetime as dt
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict

from hmr_schemas.clinical import (
    COMPLIANCE_LABELS,
    REGULARITY_LABELS,
    CanonicalRecord,
    ComplianceStatus,
    MedicationEntry,
    PriorityLevel,
    RegularityClass,
)


class SummaryValues(BaseModel):
    model_config = ConfigDict(frozen=True)

    medications_list: str = ""
    medications_count: str = "0"
    compliance_summary: str = ""
    recommendations_count: str = "0"
    high_priority_count: str = "0"
    recommendations_summary: str = ""


class ReportValues(BaseModel):
    model_config = ConfigDict(frozen=True)

    generated_date: str = ""
    pharmacist_name: str = ""
    watermark: str = ""


def format_au_date(value: dt.date) -> str:
    return value.strftime("%d/%m/%Y")


def medication_line(med: MedicationEntry) -> str:
    line = med.name
    if med.strength:
        line += f" {med.strength}"
    if med.dosage:
        line += f" - {med.dosage}"
    if med.frequency:
        line += f" {med.frequency}"
    return line


def summarize(record: CanonicalRecord) -> SummaryValues:
    meds = record.medications
    compliant = sum(1 for m in meds if m.compliance_status == ComplianceStatus.GOOD)
    non_compliant = sum(
        1 for m in meds if m.compliance_status in (ComplianceStatus.POOR, ComplianceStatus.NON_ADHERENT)
    )
    recs = record.recommendations
    return SummaryValues(
        medications_list="\n".join(medication_line(m) for m in meds if m.name),
        medications_count=str(len(meds)),
        compliance_summary=f"{compliant} compliant, {non_compliant} non-compliant",
        recommendations_count=str(len(recs)),
        high_priority_count=str(sum(1 for r in recs if r.priority_level == PriorityLevel.HIGH)),
        recommendations_summary="\n\n".join(
            f"{idx}. {rec.issue_identified}\nAction: {rec.suggested_action}" for idx, rec in enumerate(recs, start=1)
        ),
    )


def build_render_context(
    record: CanonicalRecord,
    *,
    preparer: str = "",
    watermark: str = "",
    generated_on: dt.date | None = None,
) -> dict[str, Any]:
    generated_on = generated_on or dt.date.today()
    return {
        "patient": record.patient,
        "medications": record.medications,
        "interview": record.interview,
        "recommendations": record.recommendations,
        "summary": summarize(record),
        "report": ReportValues(
            generated_date=format_au_date(generated_on),
            pharmacist_name=preparer,
            watermark=watermark,
        ),
    }


def stringify(value: Any) -> str:
    """Text placed into a template field. Never returns "None"."""
    if value is None:
        return ""
    if isinstance(value, RegularityClass):
        return REGULARITY_LABELS[value]
    if isinstance(value, ComplianceStatus):
        return COMPLIANCE_LABELS[value]
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, float):
        return f"{value:g}"
    if isinstance(value, (list, tuple)):
        return "\n".join(text for text in (stringify(item) for item in value) if text)
    if isinstance(value, (BaseModel, dict)):
        # Whole sections are not placeable values.
        return ""
    return str(value)


__all__ = [
    "ReportValues",
    "SummaryValues",
    "build_render_context",
    "format_au_date",
    "medication_line",
    "stringify",
    "summarize",
]
