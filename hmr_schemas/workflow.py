"""Wizard step identifiers shared by validation, workflow and the API."""

from __future__ import annotations

from enum import Enum


class WorkflowStep(str, Enum):
    UPLOAD = "upload"
    PATIENT_INFO = "patient_info"
    MEDICATIONS_REVIEW = "medications_review"
    INTERVIEW = "interview"
    RECOMMENDATIONS = "recommendations"
    FINAL_REVIEW = "final_review"


STEP_ORDER: tuple[WorkflowStep, ...] = tuple(WorkflowStep)

# Record section edited on each step; upload and final review own none.
STEP_SECTIONS: dict[WorkflowStep, str | None] = {
    WorkflowStep.UPLOAD: None,
    WorkflowStep.PATIENT_INFO: "patient",
    WorkflowStep.MEDICATIONS_REVIEW: "medications",
    WorkflowStep.INTERVIEW: "interview",
    WorkflowStep.RECOMMENDATIONS: "recommendations",
    WorkflowStep.FINAL_REVIEW: None,
}


def step_for_section(section: str) -> WorkflowStep:
    for step, owned in STEP_SECTIONS.items():
        if owned == section:
            return step
    return WorkflowStep.FINAL_REVIEW


__all__ = ["STEP_ORDER", "STEP_SECTIONS", "WorkflowStep", "step_for_section"]
