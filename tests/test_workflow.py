"""Tests for hmr/workflow - review state machine, edits, draft stores and autosave."""

import asyncio

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from config.settings import ReviewSettings, StoreSettings
from hmr_schemas.clinical import FieldOrigin, MedicationEntry
from hmr_schemas.workflow import WorkflowStep
from hmr.common.exceptions import (
    InvalidTransitionError,
    PathError,
    PersistenceError,
    StepBlockedError,
    UnsavedChangesError,
    WorkflowError,
)
from hmr.extraction.normalizer import normalize
from hmr.workflow.autosave import Autosaver
from hmr.workflow.draft_store import InMemoryDraftStore, SqlDraftStore, build_draft_store
from hmr.workflow.state import (
    AppendItem,
    MoveItem,
    RemoveItem,
    SetField,
    WorkflowState,
    edit_from_dict,
)
from hmr.workflow.state_machine import ReviewWorkflow


class FlakyDraftStore(InMemoryDraftStore):
    """Draft store whose saves fail while ``failing`` is set."""

    def __init__(self):
        super().__init__()
        self.failing = False

    def save(self, state):
        if self.failing:
            raise PersistenceError("database unavailable", operation="save", session_id=state.session_id)
        super().save(state)


@pytest.fixture
def store():
    return InMemoryDraftStore()


@pytest.fixture
def workflow(store):
    return ReviewWorkflow(store, ReviewSettings())


@pytest.fixture
def ingested(workflow, raw_extraction):
    state = workflow.load("session-1")
    return workflow.ingest(state, normalize(raw_extraction))


def _walk_to(workflow, state, step):
    while state.step != step:
        state = workflow.next(state)
    return state


# =============================================================================
# NAVIGATION
# =============================================================================

class TestNavigation:
    def test_fresh_session_starts_at_upload(self, workflow):
        state = workflow.load("new")
        assert state.step == WorkflowStep.UPLOAD
        assert state.revision == 0

    def test_happy_path_to_finalized(self, workflow, store, ingested):
        state = _walk_to(workflow, ingested, WorkflowStep.FINAL_REVIEW)
        # The low-confidence medication only keeps the report a draft.
        assert workflow.watermark_for(state) == "Draft"
        state = workflow.finalize(state)
        assert state.finalized
        assert store.get("session-1").finalized

    def test_blocking_issue_stops_next(self, workflow):
        state = workflow.next(workflow.load("empty"))
        assert state.step == WorkflowStep.PATIENT_INFO
        with pytest.raises(StepBlockedError) as exc_info:
            workflow.next(state)
        assert [issue.field_path for issue in exc_info.value.issues] == ["patient.name", "patient.dob"]

    def test_issue_on_another_step_does_not_block(self, workflow, ingested):
        state = workflow.dispatch(ingested, SetField("interview.smoking_status", "Current smoker"))
        state = _walk_to(workflow, state, WorkflowStep.INTERVIEW)
        with pytest.raises(StepBlockedError):
            workflow.next(state)

    def test_previous_never_blocked(self, workflow):
        state = workflow.next(workflow.load("empty"))
        assert workflow.previous(state).step == WorkflowStep.UPLOAD

    def test_no_previous_from_upload(self, workflow):
        with pytest.raises(InvalidTransitionError):
            workflow.previous(workflow.load("empty"))

    def test_no_next_from_final_review(self, workflow, ingested):
        state = _walk_to(workflow, ingested, WorkflowStep.FINAL_REVIEW)
        with pytest.raises(InvalidTransitionError):
            workflow.next(state)

    def test_jump_only_from_final_review(self, workflow, ingested):
        with pytest.raises(InvalidTransitionError):
            workflow.jump_to(ingested, WorkflowStep.INTERVIEW)
        state = _walk_to(workflow, ingested, WorkflowStep.FINAL_REVIEW)
        assert workflow.jump_to(state, "interview").step == WorkflowStep.INTERVIEW

    def test_fix_now_focuses_field(self, workflow, ingested):
        state = _walk_to(workflow, ingested, WorkflowStep.FINAL_REVIEW)
        state = workflow.dispatch(state, SetField("patient.dob", "yesterday"))
        issue = workflow.issues(state)[0]
        fixed = workflow.fix_now(state, issue)
        assert fixed.step == WorkflowStep.PATIENT_INFO
        assert fixed.focus_path == "patient.dob"

    def test_ingest_only_on_upload(self, workflow, ingested, raw_extraction):
        state = workflow.next(ingested)
        with pytest.raises(InvalidTransitionError):
            workflow.ingest(state, normalize(raw_extraction))

    def test_finalize_only_on_final_review(self, workflow, ingested):
        with pytest.raises(InvalidTransitionError):
            workflow.finalize(ingested)

    def test_resume_saved_draft(self, store, ingested):
        resumed = ReviewWorkflow(store).load("session-1")
        assert resumed.record.patient.name == "Jane Citizen"
        assert resumed.revision == ingested.revision


# =============================================================================
# EDITS
# =============================================================================

class TestEdits:
    def test_set_field_bumps_revision(self, workflow, ingested):
        state = workflow.dispatch(ingested, SetField("patient.address", "1 High St"))
        assert state.record.patient.address == "1 High St"
        assert state.revision == ingested.revision + 1

    def test_edit_flips_provenance_origin(self, workflow, ingested):
        assert ingested.record.flagged_fields(0.7) == ["patient.dob"]
        state = workflow.dispatch(ingested, SetField("patient.dob", "1945-04-03"))
        entry = state.record.provenance["patient.dob"]
        assert entry.origin == FieldOrigin.USER_EDITED
        assert entry.confidence == 0.5
        assert state.record.flagged_fields(0.7) == []

    def test_medication_edit_clears_flag(self, workflow, ingested):
        assert ingested.record.flagged_medications(0.7) == [1]
        state = workflow.dispatch(ingested, SetField("medications[1].name", "Warfarin"))
        assert state.record.medications[1].origin == FieldOrigin.USER_EDITED
        assert state.record.flagged_medications(0.7) == []
        assert workflow.issues(state) == []

    def test_provenance_not_editable(self, workflow, ingested):
        with pytest.raises(PathError):
            workflow.dispatch(ingested, SetField("provenance.patient", {}))

    def test_unknown_path(self, workflow, ingested):
        with pytest.raises(PathError):
            workflow.dispatch(ingested, SetField("patient.nickname", "Janey"))

    def test_append_remove_move(self, workflow, ingested):
        state = workflow.dispatch(ingested, AppendItem("medications", {"name": "Aspirin", "strength": "100mg"}))
        assert [m.name for m in state.record.medications] == ["Metformin", "Wafarin", "Aspirin"]
        assert state.record.medications[2].origin == FieldOrigin.USER_EDITED

        state = workflow.dispatch(state, MoveItem("medications", 2, 0))
        assert [m.name for m in state.record.medications] == ["Aspirin", "Metformin", "Wafarin"]

        state = workflow.dispatch(state, RemoveItem("medications", 2))
        assert [m.name for m in state.record.medications] == ["Aspirin", "Metformin"]

    def test_append_model_instance(self, workflow, ingested):
        state = workflow.dispatch(ingested, AppendItem("medications", MedicationEntry(name="Aspirin")))
        assert state.record.medications[-1].name == "Aspirin"

    def test_bad_list_operations(self, workflow, ingested):
        with pytest.raises(PathError):
            workflow.dispatch(ingested, RemoveItem("medications", 5))
        with pytest.raises(PathError):
            workflow.dispatch(ingested, AppendItem("patient", {}))

    def test_discard_restores_step_entry(self, workflow, ingested):
        state = workflow.next(ingested)
        edited = workflow.dispatch(state, SetField("patient.name", "Someone Else"))
        restored = workflow.discard_changes(edited)
        assert restored.record.patient.name == "Jane Citizen"
        assert restored.revision == edited.revision + 1

    def test_discard_without_changes_is_noop(self, workflow, ingested):
        state = workflow.next(ingested)
        assert workflow.discard_changes(state) is state

    def test_finalized_review_is_read_only(self, workflow, ingested):
        state = workflow.finalize(_walk_to(workflow, ingested, WorkflowStep.FINAL_REVIEW))
        with pytest.raises(WorkflowError):
            workflow.dispatch(state, SetField("patient.name", "Changed"))


class TestEditFromDict:
    @pytest.mark.parametrize(
        "payload,expected",
        [
            ({"op": "set", "path": "patient.name", "value": "Jane"}, SetField("patient.name", "Jane")),
            ({"op": "append", "collection": "medications"}, AppendItem("medications")),
            ({"op": "remove", "collection": "medications", "index": "1"}, RemoveItem("medications", 1)),
            ({"op": "move", "collection": "recommendations", "index": 0, "new_index": 2}, MoveItem("recommendations", 0, 2)),
        ],
    )
    def test_ops(self, payload, expected):
        assert edit_from_dict(payload) == expected

    def test_unknown_op(self):
        with pytest.raises(ValueError):
            edit_from_dict({"op": "rename"})


# =============================================================================
# LIFECYCLE
# =============================================================================

class TestNewReview:
    def test_unfinalized_work_needs_confirmation(self, workflow, ingested):
        with pytest.raises(UnsavedChangesError):
            workflow.new_review(ingested)
        fresh = workflow.new_review(ingested, confirm=True)
        assert fresh.step == WorkflowStep.UPLOAD
        assert fresh.record.patient.name == ""
        assert fresh.revision > ingested.revision
        # A fresh review has nothing to lose.
        assert workflow.new_review(fresh).step == WorkflowStep.UPLOAD

    def test_finalized_review_needs_no_confirmation(self, workflow, ingested):
        state = workflow.finalize(_walk_to(workflow, ingested, WorkflowStep.FINAL_REVIEW))
        assert not workflow.new_review(state).finalized


class TestPersistenceFailures:
    def test_failed_save_deferred_to_autosaver(self, raw_extraction):
        store = FlakyDraftStore()
        autosaver = Autosaver(store, interval_s=60)
        workflow = ReviewWorkflow(store, autosaver=autosaver)
        store.failing = True

        state = workflow.ingest(workflow.load("s"), normalize(raw_extraction))
        assert state.revision == 1
        assert store.get("s") is None
        assert autosaver.pending == 1

        store.failing = False
        assert autosaver.flush_sync() == 1
        assert store.get("s").revision == 1

    def test_failed_save_raises_without_autosaver(self, raw_extraction):
        store = FlakyDraftStore()
        store.failing = True
        workflow = ReviewWorkflow(store)
        with pytest.raises(PersistenceError):
            workflow.ingest(workflow.load("s"), normalize(raw_extraction))

    def test_newer_save_supersedes_deferred_snapshot(self, raw_extraction):
        store = FlakyDraftStore()
        autosaver = Autosaver(store, interval_s=60)
        workflow = ReviewWorkflow(store, autosaver=autosaver)
        state = workflow.ingest(workflow.load("s"), normalize(raw_extraction))

        store.failing = True
        state = workflow.dispatch(state, SetField("patient.name", "Edit A"))
        assert autosaver.pending == 1

        store.failing = False
        state = workflow.dispatch(state, SetField("patient.name", "Edit B"))
        assert autosaver.pending == 0
        assert autosaver.flush_sync() == 0

        resumed = workflow.load("s")
        assert resumed.revision == state.revision == 3
        assert resumed.record.patient.name == "Edit B"

    def test_late_stale_snapshot_is_ignored(self, store):
        autosaver = Autosaver(store)
        autosaver.discard_through("s", 5)
        autosaver.mark_dirty(WorkflowState(session_id="s", revision=4))
        assert autosaver.pending == 0


# =============================================================================
# DRAFT STORES
# =============================================================================

class TestSqlDraftStore:
    @pytest.fixture
    def sql_store(self):
        engine = create_engine("sqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False})
        return SqlDraftStore(engine)

    def test_roundtrip(self, sql_store, complete_record):
        state = WorkflowState(
            session_id="abc",
            step=WorkflowStep.INTERVIEW,
            record=complete_record,
            revision=4,
            step_entry_record=complete_record,
        )
        sql_store.save(state)
        loaded = sql_store.get("abc")
        assert loaded.step == WorkflowStep.INTERVIEW
        assert loaded.revision == 4
        assert loaded.record.model_dump() == complete_record.model_dump()
        assert loaded.step_entry_record.model_dump() == complete_record.model_dump()

    def test_save_is_upsert(self, sql_store):
        sql_store.save(WorkflowState(session_id="abc", revision=1))
        sql_store.save(WorkflowState(session_id="abc", revision=2, step=WorkflowStep.PATIENT_INFO))
        loaded = sql_store.get("abc")
        assert loaded.revision == 2
        assert loaded.step == WorkflowStep.PATIENT_INFO

    def test_missing_and_delete(self, sql_store):
        assert sql_store.get("nobody") is None
        sql_store.save(WorkflowState(session_id="abc"))
        sql_store.delete("abc")
        sql_store.delete("abc")
        assert sql_store.get("abc") is None

    def test_workflow_over_sql(self, sql_store, raw_extraction):
        workflow = ReviewWorkflow(sql_store)
        state = workflow.next(workflow.ingest(workflow.load("s"), normalize(raw_extraction)))
        resumed = ReviewWorkflow(sql_store).load("s")
        assert resumed.step == WorkflowStep.PATIENT_INFO
        assert resumed.record.flagged_medications(0.7) == [1]
        assert resumed.revision == state.revision


class TestBuildDraftStore:
    def test_memory_default(self):
        assert isinstance(build_draft_store(StoreSettings(backend="memory")), InMemoryDraftStore)

    def test_sql_backend(self):
        assert isinstance(build_draft_store(StoreSettings(backend="sql")), SqlDraftStore)

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            StoreSettings(backend="redis")


# =============================================================================
# AUTOSAVE
# =============================================================================

class TestAutosaver:
    def test_newest_revision_wins(self, store):
        autosaver = Autosaver(store)
        autosaver.mark_dirty(WorkflowState(session_id="s", revision=3))
        autosaver.mark_dirty(WorkflowState(session_id="s", revision=2))
        assert autosaver.pending == 1
        assert autosaver.flush_sync() == 1
        assert store.get("s").revision == 3
        assert autosaver.pending == 0

    def test_failed_flush_stays_pending(self):
        store = FlakyDraftStore()
        store.failing = True
        autosaver = Autosaver(store)
        autosaver.mark_dirty(WorkflowState(session_id="s", revision=1))
        assert autosaver.flush_sync() == 0
        assert autosaver.pending == 1

    def test_timer_flushes_and_stop_drains(self, store):
        autosaver = Autosaver(store, interval_s=0.01)

        async def _scenario():
            autosaver.start()
            autosaver.mark_dirty(WorkflowState(session_id="a", revision=1))
            await asyncio.sleep(0.1)
            saved_by_timer = store.get("a") is not None
            autosaver.mark_dirty(WorkflowState(session_id="b", revision=1))
            await autosaver.stop()
            return saved_by_timer

        assert asyncio.run(_scenario())
        assert store.get("b") is not None
        assert autosaver.pending == 0
