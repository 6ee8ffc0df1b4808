from __future__ import annotations

from dataclasses import asdict, dataclass, field, is_dataclass
from enum import Enum
from typing import Any


class IssueSeverity(str, Enum):
    BLOCKING = "blocking"
    INFORMATIONAL = "informational"


@dataclass(frozen=True)
class ValidationIssue:
    message: str
    field_path: str
    severity: IssueSeverity
    rule_id: str

    @property
    def blocking(self) -> bool:
        return self.severity == IssueSeverity.BLOCKING

    @property
    def section(self) -> str:
        head = self.field_path.split(".", 1)[0]
        return head.split("[", 1)[0]


@dataclass
class FieldResolution:
    field_name: str
    data_path: str | None
    status: str  # filled | empty | unmapped | error
    detail: str | None = None


@dataclass
class GenerationSummary:
    """Per-field outcome of a custom template render.

    Individual fields fail soft (rendered empty); the summary is where those
    failures become visible to the operator.
    """

    template_id: str | None = None
    fields: list[FieldResolution] = field(default_factory=list)
    watermark: str | None = None
    pages: int | None = None

    @property
    def filled(self) -> list[str]:
        return [f.field_name for f in self.fields if f.status == "filled"]

    @property
    def unmapped(self) -> list[str]:
        return [f.field_name for f in self.fields if f.status == "unmapped"]

    @property
    def errors(self) -> list[FieldResolution]:
        return [f for f in self.fields if f.status == "error"]

    @property
    def ok(self) -> bool:
        return not self.errors


@dataclass
class RenderedDocument:
    content: bytes = field(repr=False)
    media_type: str
    filename: str
    summary: GenerationSummary = field(default_factory=GenerationSummary)

    @property
    def content_length(self) -> int:
        return len(self.content)


def _serialize(obj: Any) -> Any:
    """Recursively convert dataclass objects to JSON-friendly primitives."""
    if isinstance(obj, Enum):
        return obj.value
    if is_dataclass(obj):
        return {key: _serialize(val) for key, val in asdict(obj).items()}
    if isinstance(obj, dict):
        return {key: _serialize(val) for key, val in obj.items()}
    if isinstance(obj, (list, tuple, set)):
        return [_serialize(val) for val in obj]
    return obj


def issue_to_dict(issue: ValidationIssue) -> dict[str, Any]:
    return _serialize(issue)


def summary_to_dict(summary: GenerationSummary) -> dict[str, Any]:
    data = _serialize(summary)
    data["filled_count"] = len(summary.filled)
    data["unmapped"] = summary.unmapped
    data["error_count"] = len(summary.errors)
    return data


__all__ = [
    "FieldResolution",
    "GenerationSummary",
    "IssueSeverity",
    "RenderedDocument",
    "ValidationIssue",
    "issue_to_dict",
    "summary_to_dict",
]
