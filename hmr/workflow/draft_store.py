"""Draft persistence for the review workflow.

``DraftStore`` is the keyed get/put port. Saves are upserts keyed by session
id; the last write wins, so a repeated save is harmless.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from typing import Optional

from sqlalchemy import Engine
from sqlalchemy.exc import SQLAlchemyError

from config.settings import StoreSettings
from hmr.common.exceptions import PersistenceError
from hmr.workflow.db import Base, engine_for_url, sessionmaker_for
from hmr.workflow.models import ReviewDraft
from hmr.workflow.state import WorkflowState
from observability.logging_config import get_logger

logger = get_logger(__name__)


class DraftStore(ABC):
    """Repository interface for review drafts."""

    @abstractmethod
    def get(self, session_id: str) -> Optional[WorkflowState]:
        """Fetch the saved draft for a session.

        Args:
            session_id: Caller's session identifier

        Returns:
            The last saved snapshot, or None if nothing was saved
        """
        ...

    @abstractmethod
    def save(self, state: WorkflowState) -> None:
        """Insert or replace the draft for ``state.session_id``.

        Raises:
            PersistenceError: The backend rejected the write
        """
        ...

    @abstractmethod
    def delete(self, session_id: str) -> None:
        """Remove a draft; missing ids are ignored."""
        ...


# ============================================================================
# In-memory
# ============================================================================


class InMemoryDraftStore(DraftStore):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._drafts: dict[str, WorkflowState] = {}

    def get(self, session_id: str) -> Optional[WorkflowState]:
        with self._lock:
            return self._drafts.get(session_id)

    def save(self, state: WorkflowState) -> None:
        with self._lock:
            self._drafts[state.session_id] = state

    def delete(self, session_id: str) -> None:
        with self._lock:
            self._drafts.pop(session_id, None)

    def count(self) -> int:
        with self._lock:
            return len(self._drafts)


# ============================================================================
# SQLAlchemy
# ============================================================================


class SqlDraftStore(DraftStore):
    """Drafts in the ``review_drafts`` table (SQLite or Postgres)."""

    def __init__(self, engine: Engine, *, create_schema: bool = True) -> None:
        self.engine = engine
        self._session_factory = sessionmaker_for(engine)
        if create_schema:
            Base.metadata.create_all(bind=engine)

    @classmethod
    def from_url(cls, url: str, *, echo: bool = False) -> "SqlDraftStore":
        return cls(engine_for_url(url, echo))

    def get(self, session_id: str) -> Optional[WorkflowState]:
        try:
            with self._session_factory() as db:
                row = db.get(ReviewDraft, session_id)
                if row is None:
                    return None
                payload = dict(row.state_json)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not load draft: {exc}", operation="get", session_id=session_id) from exc
        return WorkflowState.model_validate(payload)

    def save(self, state: WorkflowState) -> None:
        row = ReviewDraft(
            session_id=state.session_id,
            step=state.step.value,
            revision=state.revision,
            finalized=state.finalized,
            state_json=state.model_dump(mode="json"),
            updated_at=state.updated_at,
        )
        try:
            with self._session_factory() as db:
                db.merge(row)
                db.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not save draft: {exc}", operation="save", session_id=state.session_id) from exc
        logger.debug("Draft saved", extra={"session_id": state.session_id, "revision": state.revision})

    def delete(self, session_id: str) -> None:
        try:
            with self._session_factory() as db:
                row = db.get(ReviewDraft, session_id)
                if row is not None:
                    db.delete(row)
                    db.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not delete draft: {exc}", operation="delete", session_id=session_id) from exc


def build_draft_store(settings: StoreSettings | None = None) -> DraftStore:
    settings = settings or StoreSettings()
    if settings.backend == "sql":
        return SqlDraftStore.from_url(settings.database_url, echo=settings.echo_sql)
    return InMemoryDraftStore()


__all__ = ["DraftStore", "InMemoryDraftStore", "SqlDraftStore", "build_draft_store"]
