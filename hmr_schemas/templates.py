"""Custom template descriptors.

A descriptor tracks one uploaded template through discovery → mapping →
generation. It is owned by the session that uploaded it.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TemplateKind(str, Enum):
    FORM_FILLABLE = "form_fillable"
    MERGE_FIELD = "merge_field"


class TemplateDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    owner_id: str
    source_name: str = ""
    kind: TemplateKind
    source_document: bytes = Field(default=b"", repr=False)
    discovered_fields: list[str] = Field(default_factory=list)
    mapping: dict[str, str] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @model_validator(mode="after")
    def _mapping_within_discovered(self) -> "TemplateDescriptor":
        dangling = set(self.mapping) - set(self.discovered_fields)
        if dangling:
            raise ValueError(f"mapping references undiscovered fields: {sorted(dangling)}")
        return self

    @property
    def mapped_count(self) -> int:
        return len(self.mapping)

    @property
    def discovered_count(self) -> int:
        return len(self.discovered_fields)

    @property
    def unmapped_fields(self) -> list[str]:
        return [name for name in self.discovered_fields if name not in self.mapping]


__all__ = ["TemplateDescriptor", "TemplateKind"]
