"""Timer-driven draft saving.

The workflow saves on every edit and transition. The autosaver covers the
gaps: states handed to ``mark_dirty`` (including saves that failed) are
written on the next tick, newest snapshot per session only.
"""

from __future__ import annotations

import asyncio
import threading
from typing import Optional

from hmr.common.exceptions import PersistenceError
from hmr.workflow.draft_store import DraftStore
from hmr.workflow.state import WorkflowState
from observability.logging_config import get_logger
from observability.metrics import get_metrics_client

logger = get_logger(__name__)


class Autosaver:
    def __init__(self, store: DraftStore, interval_s: float = 30.0) -> None:
        self.store = store
        self.interval_s = interval_s
        self._lock = threading.Lock()
        self._pending: dict[str, WorkflowState] = {}
        self._saved_through: dict[str, int] = {}
        self._task: Optional[asyncio.Task] = None

    def mark_dirty(self, state: WorkflowState) -> None:
        with self._lock:
            if state.revision <= self._saved_through.get(state.session_id, -1):
                return
            current = self._pending.get(state.session_id)
            if current is None or current.revision <= state.revision:
                self._pending[state.session_id] = state

    def discard_through(self, session_id: str, revision: int) -> None:
        """Record that ``revision`` reached the store; older pending snapshots are dropped."""
        with self._lock:
            if revision > self._saved_through.get(session_id, -1):
                self._saved_through[session_id] = revision
            current = self._pending.get(session_id)
            if current is not None and current.revision <= revision:
                del self._pending[session_id]

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._pending)

    def flush_sync(self) -> int:
        """Write every pending snapshot; failures stay pending for the next tick."""
        with self._lock:
            batch = dict(self._pending)
            self._pending.clear()
        saved = 0
        for session_id, state in batch.items():
            with self._lock:
                if state.revision <= self._saved_through.get(session_id, -1):
                    continue
            try:
                self.store.save(state)
                saved += 1
                self.discard_through(session_id, state.revision)
            except PersistenceError as exc:
                logger.warning("Autosave failed", extra={"session_id": session_id, "error": str(exc)})
                self.mark_dirty(state)
        if saved:
            get_metrics_client().incr("drafts.autosaved", value=saved)
        return saved

    async def flush(self) -> int:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.flush_sync)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_s)
            await self.flush()

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self._run())
        return self._task

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self.flush()


__all__ = ["Autosaver"]
