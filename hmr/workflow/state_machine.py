"""The review wizard as an explicit state machine.

Steps run upload -> patient_info -> medications_review -> interview ->
recommendations -> final_review. Every operation takes a ``WorkflowState``
and returns a new one; the machine owns no per-session state of its own, the
draft store does. Forward moves are gated on the blocking issues of the step
being left, backward moves never are.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ValidationError

from config.settings import ReviewSettings
from hmr_schemas.clinical import (
    CanonicalRecord,
    FieldExtraction,
    FieldOrigin,
    MedicationEntry,
    Recommendation,
)
from hmr_schemas.workflow import STEP_ORDER, STEP_SECTIONS, WorkflowStep
from hmr.common.exceptions import (
    InvalidTransitionError,
    PathError,
    PersistenceError,
    StepBlockedError,
    UnsavedChangesError,
    WorkflowError,
)
from hmr.extraction.types import NormalizationResult
from hmr.reporting.metadata import ValidationIssue
from hmr.reporting.preparer import PreparerProfile
from hmr.reporting.util.path_access import format_path, get_path, parse_path, set_path
from hmr.reporting.validation import blocking_issues, step_for_path, validate
from hmr.reporting.validation import watermark_for as _watermark_for
from hmr.workflow.autosave import Autosaver
from hmr.workflow.draft_store import DraftStore
from hmr.workflow.state import AppendItem, Edit, MoveItem, RemoveItem, SetField, WorkflowState
from observability.logging_config import get_logger

logger = get_logger(__name__)

COLLECTIONS: dict[str, type[BaseModel]] = {
    "medications": MedicationEntry,
    "recommendations": Recommendation,
}


class ReviewWorkflow:
    """Drives one review per session id through the wizard steps."""

    def __init__(
        self,
        store: DraftStore,
        settings: ReviewSettings | None = None,
        *,
        profile: str | PreparerProfile | None = None,
        autosaver: Autosaver | None = None,
    ) -> None:
        self.store = store
        self.settings = settings or ReviewSettings()
        self.profile = profile
        self.autosaver = autosaver

    # ========================================================================
    # Persistence
    # ========================================================================

    def _persist(self, state: WorkflowState) -> WorkflowState:
        try:
            self.store.save(state)
        except PersistenceError as exc:
            # The snapshot is still returned; the autosaver retries it.
            if self.autosaver is None:
                raise
            logger.warning("Draft save deferred", extra={"session_id": state.session_id, "error": str(exc)})
            self.autosaver.mark_dirty(state)
            return state
        if self.autosaver is not None:
            self.autosaver.discard_through(state.session_id, state.revision)
        return state

    def load(self, session_id: str) -> WorkflowState:
        """Resume the saved draft, or start a fresh review at the upload step."""
        saved = self.store.get(session_id)
        if saved is not None:
            logger.info("Draft resumed", extra={"session_id": session_id, "step": saved.step.value})
            return saved
        return WorkflowState(session_id=session_id)

    # ========================================================================
    # Validation views
    # ========================================================================

    def issues(self, state: WorkflowState) -> list[ValidationIssue]:
        return validate(
            state.record,
            profile_name=self.profile,
            static_default=self.settings.default_preparer,
            threshold=self.settings.confidence_threshold,
        )

    def step_issues(self, state: WorkflowState, step: WorkflowStep | None = None) -> list[ValidationIssue]:
        section = STEP_SECTIONS[step or state.step]
        if section is None:
            return []
        return blocking_issues(self.issues(state), section)

    def watermark_for(self, state: WorkflowState) -> str:
        return _watermark_for(self.issues(state))

    # ========================================================================
    # Upload and edits
    # ========================================================================

    def ingest(self, state: WorkflowState, normalization: NormalizationResult) -> WorkflowState:
        """Install an extracted record; only valid on the upload step."""
        if state.step != WorkflowStep.UPLOAD:
            raise InvalidTransitionError(state.step.value, WorkflowStep.UPLOAD.value)
        updated = state.evolve(
            record=normalization.record,
            raw_text=normalization.raw_text,
            revision=state.revision + 1,
            finalized=False,
            step_entry_record=normalization.record,
        )
        logger.info(
            "Extraction ingested",
            extra={
                "session_id": state.session_id,
                "medications": len(normalization.record.medications),
                "notes": len(normalization.notes),
            },
        )
        return self._persist(updated)

    def dispatch(self, state: WorkflowState, edit: Edit) -> WorkflowState:
        """Apply one edit message and autosave.

        Raises:
            PathError: The edit addresses a path the record does not have
            WorkflowError: The review is finalized
        """
        if state.finalized:
            raise WorkflowError("Review is finalized; start a new review to make changes")
        if isinstance(edit, SetField):
            record = self._set_field(state.record, edit.path, edit.value)
        elif isinstance(edit, AppendItem):
            record = self._append(state.record, edit.collection, edit.item)
        elif isinstance(edit, RemoveItem):
            record = self._remove(state.record, edit.collection, edit.index)
        elif isinstance(edit, MoveItem):
            record = self._move(state.record, edit.collection, edit.index, edit.new_index)
        else:
            raise WorkflowError(f"Unsupported edit: {type(edit).__name__}")
        return self._persist(state.evolve(record=record, revision=state.revision + 1))

    @staticmethod
    def _set_field(record: CanonicalRecord, path: str, value: Any) -> CanonicalRecord:
        segments = parse_path(path)
        if not segments or segments[0] == "provenance":
            raise PathError(f"'{path}' is not an editable field", path=path)
        updated = set_path(record, path, value)

        provenance = dict(updated.provenance)
        key = format_path(segments)
        entry = provenance.get(key)
        if entry is not None and entry.origin != FieldOrigin.USER_EDITED:
            # Keep the extracted value and its confidence; only the origin flips.
            provenance[key] = FieldExtraction(
                confidence=entry.confidence,
                origin=FieldOrigin.USER_EDITED,
                extracted_value=entry.extracted_value,
            )
            updated = updated.model_copy(update={"provenance": provenance})

        if segments[0] == "medications" and len(segments) >= 3 and isinstance(segments[1], int):
            origin_path = f"medications[{segments[1]}].origin"
            if get_path(updated, origin_path) != FieldOrigin.USER_EDITED:
                updated = set_path(updated, origin_path, FieldOrigin.USER_EDITED)
        return updated

    @staticmethod
    def _items(record: CanonicalRecord, collection: str) -> list:
        if collection not in COLLECTIONS:
            raise PathError(f"'{collection}' is not an editable list", path=collection)
        return list(getattr(record, collection))

    def _append(self, record: CanonicalRecord, collection: str, item: Any) -> CanonicalRecord:
        items = self._items(record, collection)
        model = COLLECTIONS[collection]
        if isinstance(item, BaseModel):
            item = item.model_dump()
        try:
            entry = model.model_validate(item or {})
        except ValidationError as exc:
            raise PathError(f"Invalid {collection} item: {exc.errors()[0]['msg']}", path=collection) from exc
        items.append(entry)
        return set_path(record, collection, items)

    def _remove(self, record: CanonicalRecord, collection: str, index: int) -> CanonicalRecord:
        items = self._items(record, collection)
        if not 0 <= index < len(items):
            raise PathError(f"Index {index} out of range ({len(items)} items)", path=f"{collection}[{index}]")
        del items[index]
        return set_path(record, collection, items)

    def _move(self, record: CanonicalRecord, collection: str, index: int, new_index: int) -> CanonicalRecord:
        items = self._items(record, collection)
        for idx in (index, new_index):
            if not 0 <= idx < len(items):
                raise PathError(f"Index {idx} out of range ({len(items)} items)", path=f"{collection}[{idx}]")
        items.insert(new_index, items.pop(index))
        return set_path(record, collection, items)

    # ========================================================================
    # Navigation
    # ========================================================================

    def _enter(self, state: WorkflowState, step: WorkflowStep, focus_path: Optional[str] = None) -> WorkflowState:
        updated = state.evolve(step=step, focus_path=focus_path, step_entry_record=state.record)
        logger.info(
            "Step entered",
            extra={"session_id": state.session_id, "from": state.step.value, "to": step.value},
        )
        return self._persist(updated)

    def next(self, state: WorkflowState) -> WorkflowState:
        position = STEP_ORDER.index(state.step)
        if position == len(STEP_ORDER) - 1:
            raise InvalidTransitionError(state.step.value, "next")
        blocking = self.step_issues(state)
        if blocking:
            raise StepBlockedError(state.step.value, blocking)
        return self._enter(state, STEP_ORDER[position + 1])

    def previous(self, state: WorkflowState) -> WorkflowState:
        position = STEP_ORDER.index(state.step)
        if position == 0:
            raise InvalidTransitionError(state.step.value, "previous")
        return self._enter(state, STEP_ORDER[position - 1])

    def jump_to(self, state: WorkflowState, step: WorkflowStep | str) -> WorkflowState:
        """Direct navigation, offered only from the final review."""
        target = WorkflowStep(step)
        if state.step != WorkflowStep.FINAL_REVIEW:
            raise InvalidTransitionError(state.step.value, target.value)
        return self._enter(state, target)

    def fix_now(self, state: WorkflowState, issue: ValidationIssue) -> WorkflowState:
        """Jump to the step owning ``issue`` and focus its field."""
        return self._enter(state, step_for_path(issue.field_path), focus_path=issue.field_path)

    def discard_changes(self, state: WorkflowState) -> WorkflowState:
        """Restore the record as it was when the current step was entered."""
        if state.step_entry_record is None or state.step_entry_record == state.record:
            return state
        return self._persist(state.evolve(record=state.step_entry_record, revision=state.revision + 1))

    # ========================================================================
    # Lifecycle
    # ========================================================================

    def new_review(self, state: WorkflowState, confirm: bool = False) -> WorkflowState:
        if state.has_unfinalized_work and not confirm:
            raise UnsavedChangesError(state.session_id)
        revision = state.revision + 1
        fresh = WorkflowState(session_id=state.session_id, revision=revision, started_revision=revision)
        logger.info("New review started", extra={"session_id": state.session_id, "discarded": state.has_unfinalized_work})
        return self._persist(fresh)

    def finalize(self, state: WorkflowState) -> WorkflowState:
        """Mark the review final. Outstanding issues only affect the watermark."""
        if state.step != WorkflowStep.FINAL_REVIEW:
            raise InvalidTransitionError(state.step.value, "finalized")
        if state.finalized:
            return state
        return self._persist(state.evolve(finalized=True))


__all__ = ["COLLECTIONS", "ReviewWorkflow"]
