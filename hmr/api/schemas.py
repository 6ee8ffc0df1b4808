"""Request and response bodies for the HTTP API."""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

from hmr_schemas.clinical import CanonicalRecord
from hmr_schemas.templates import TemplateDescriptor
from hmr_schemas.workflow import WorkflowStep
from hmr.reporting.metadata import ValidationIssue, issue_to_dict
from hmr.reporting.renderer import RenderOptions
from hmr.workflow.state import WorkflowState


class ErrorResponse(BaseModel):
    error: str
    detail: str
    retryable: bool = False


class RenderOptionsIn(BaseModel):
    include_appendices: Optional[bool] = None
    watermark: Optional[Literal["Draft", "Final", "draft", "final"]] = None
    page_format: Optional[str] = None

    def to_options(self, defaults: RenderOptions) -> RenderOptions:
        return RenderOptions(
            include_appendices=defaults.include_appendices if self.include_appendices is None else self.include_appendices,
            watermark=self.watermark if self.watermark is not None else defaults.watermark,
            page_format=self.page_format or defaults.page_format,
        )


class GenerateRequest(BaseModel):
    record: CanonicalRecord
    template_id: Optional[str] = None
    mapping: Optional[dict[str, str]] = None
    options: RenderOptionsIn = Field(default_factory=RenderOptionsIn)


class ReviewGenerateRequest(BaseModel):
    template_id: Optional[str] = None
    options: RenderOptionsIn = Field(default_factory=RenderOptionsIn)


class ExtractionResponse(BaseModel):
    record: CanonicalRecord
    raw_text: str = ""
    flagged_medications: list[int] = Field(default_factory=list)
    flagged_fields: list[str] = Field(default_factory=list)
    notes: list[dict[str, Any]] = Field(default_factory=list)


class EditBatch(BaseModel):
    """Edits in wire form: ``{"op": "set", "path": ..., "value": ...}`` etc."""

    edits: list[dict[str, Any]] = Field(min_length=1)


class JumpRequest(BaseModel):
    step: WorkflowStep


class FixRequest(BaseModel):
    field_path: str


class NewReviewRequest(BaseModel):
    confirm: bool = False


class MappingRequest(BaseModel):
    data_path: str


class ReviewStateResponse(BaseModel):
    session_id: str
    step: WorkflowStep
    revision: int
    finalized: bool
    focus_path: Optional[str] = None
    record: CanonicalRecord
    issues: list[dict[str, Any]] = Field(default_factory=list)
    blocking_on_step: int = 0
    watermark: str = "Draft"
    flagged_medications: list[int] = Field(default_factory=list)
    flagged_fields: list[str] = Field(default_factory=list)

    @classmethod
    def build(
        cls,
        state: WorkflowState,
        issues: list[ValidationIssue],
        step_blocking: list[ValidationIssue],
        threshold: float,
    ) -> "ReviewStateResponse":
        return cls(
            session_id=state.session_id,
            step=state.step,
            revision=state.revision,
            finalized=state.finalized,
            focus_path=state.focus_path,
            record=state.record,
            issues=[issue_to_dict(i) for i in issues],
            blocking_on_step=len(step_blocking),
            watermark="Draft" if issues else "Final",
            flagged_medications=state.record.flagged_medications(threshold),
            flagged_fields=state.record.flagged_fields(threshold),
        )


class TemplateResponse(BaseModel):
    id: str
    source_name: str
    kind: str
    discovered_fields: list[str]
    mapping: dict[str, str]
    unmapped_fields: list[str]
    complete: bool
    suggestions: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def build(cls, descriptor: TemplateDescriptor, suggestions: dict[str, str] | None = None) -> "TemplateResponse":
        return cls(
            id=descriptor.id,
            source_name=descriptor.source_name,
            kind=descriptor.kind.value,
            discovered_fields=list(descriptor.discovered_fields),
            mapping=dict(descriptor.mapping),
            unmapped_fields=descriptor.unmapped_fields,
            complete=descriptor.mapped_count == descriptor.discovered_count,
            suggestions=suggestions or {},
        )


__all__ = [
    "EditBatch",
    "ErrorResponse",
    "ExtractionResponse",
    "FixRequest",
    "GenerateRequest",
    "JumpRequest",
    "MappingRequest",
    "NewReviewRequest",
    "RenderOptionsIn",
    "ReviewGenerateRequest",
    "ReviewStateResponse",
    "TemplateResponse",
]
