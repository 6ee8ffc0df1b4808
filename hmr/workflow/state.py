"""Review state snapshots and the edit messages applied to them."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from hmr_schemas.clinical import CanonicalRecord
from hmr_schemas.workflow import WorkflowStep


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WorkflowState(BaseModel):
    """One immutable snapshot of a review in progress.

    ``revision`` increases on every record change; background results are
    checked against it. ``step_entry_record`` is the record as it was when the
    current step was entered, used by "discard changes".
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    session_id: str
    step: WorkflowStep = WorkflowStep.UPLOAD
    record: CanonicalRecord = Field(default_factory=CanonicalRecord)
    revision: int = 0
    # Revision at which this review was started; later revisions are unsaved work.
    started_revision: int = 0
    finalized: bool = False
    focus_path: Optional[str] = None
    raw_text: str = ""
    step_entry_record: Optional[CanonicalRecord] = None
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def has_unfinalized_work(self) -> bool:
        return not self.finalized and self.revision > self.started_revision

    def evolve(self, **changes: Any) -> "WorkflowState":
        changes.setdefault("updated_at", _utcnow())
        return self.model_copy(update=changes)


# ============================================================================
# Edit messages
# ============================================================================


@dataclass(frozen=True)
class SetField:
    path: str
    value: Any


@dataclass(frozen=True)
class AppendItem:
    collection: str
    item: Any = None


@dataclass(frozen=True)
class RemoveItem:
    collection: str
    index: int


@dataclass(frozen=True)
class MoveItem:
    collection: str
    index: int
    new_index: int


Edit = Union[SetField, AppendItem, RemoveItem, MoveItem]


def edit_from_dict(payload: dict[str, Any]) -> Edit:
    """Build an edit message from its wire form, e.g. ``{"op": "set", ...}``."""
    op = str(payload.get("op", "")).lower()
    if op in ("set", "set_field"):
        return SetField(path=str(payload["path"]), value=payload.get("value"))
    if op in ("append", "append_item"):
        return AppendItem(collection=str(payload["collection"]), item=payload.get("item"))
    if op in ("remove", "remove_item"):
        return RemoveItem(collection=str(payload["collection"]), index=int(payload["index"]))
    if op in ("move", "move_item"):
        return MoveItem(
            collection=str(payload["collection"]),
            index=int(payload["index"]),
            new_index=int(payload["new_index"]),
        )
    raise ValueError(f"Unknown edit op: {payload.get('op')!r}")


__all__ = [
    "AppendItem",
    "Edit",
    "MoveItem",
    "RemoveItem",
    "SetField",
    "WorkflowState",
    "edit_from_dict",
]
