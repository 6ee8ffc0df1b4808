"""SQLAlchemy model for persisted review drafts."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Integer, String

from hmr.workflow.db import Base, JSONType


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReviewDraft(Base):
    __tablename__ = "review_drafts"

    # One draft per session; saves are upserts.
    session_id = Column(String(128), primary_key=True)
    step = Column(String(32), nullable=False)
    revision = Column(Integer, nullable=False, default=0)
    finalized = Column(Boolean, nullable=False, default=False, index=True)

    # Full WorkflowState snapshot (record, provenance, step entry snapshot).
    state_json = Column(JSONType, nullable=False)

    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False, index=True)


__all__ = ["ReviewDraft"]
