"""Review wizard: state machine, draft persistence and autosave."""

from .autosave import Autosaver
from .draft_store import DraftStore, InMemoryDraftStore, SqlDraftStore, build_draft_store
from .state import AppendItem, MoveItem, RemoveItem, SetField, WorkflowState, edit_from_dict
from .state_machine import ReviewWorkflow

__all__ = [
    "AppendItem",
    "Autosaver",
    "DraftStore",
    "InMemoryDraftStore",
    "MoveItem",
    "RemoveItem",
    "ReviewWorkflow",
    "SetField",
    "SqlDraftStore",
    "WorkflowState",
    "build_draft_store",
    "edit_from_dict",
]
