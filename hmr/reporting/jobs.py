"""Background extraction and render jobs.

Long-running work (PDF extraction, document rendering) runs in a thread pool
so the request or event loop stays responsive. A job remembers the record
revision it was started from; ``collect`` refuses results that belong to an
older revision or to a cancelled job. Cancellation only detaches the caller:
the worker thread is allowed to finish and its result is dropped.
"""

from __future__ import annotations

import asyncio
import functools
import threading
import uuid
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable

from hmr.common.exceptions import JobNotFoundError, JobNotReadyError, StaleResultError
from observability.logging_config import get_logger
from observability.metrics import get_metrics_client
from observability.timing import timed

logger = get_logger(__name__)


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"
    STALE = "stale"


TERMINAL_STATUSES = frozenset({JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.CANCELLED, JobStatus.STALE})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Job:
    id: str
    kind: str
    revision: int | None = None
    session_id: str | None = None
    status: JobStatus = JobStatus.PENDING
    progress: list[str] = field(default_factory=list)
    result: Any = field(default=None, repr=False)
    error: BaseException | None = field(default=None, repr=False)
    created_at: datetime = field(default_factory=_utcnow)
    finished_at: datetime | None = None

    @property
    def done(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def current_step(self) -> str | None:
        return self.progress[-1] if self.progress else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind,
            "revision": self.revision,
            "status": self.status.value,
            "progress": list(self.progress),
            "current_step": self.current_step,
            "error": str(self.error) if self.error else None,
            "retryable": bool(getattr(self.error, "retryable", False)) if self.error else False,
            "created_at": self.created_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


JobFn = Callable[[Callable[[str], None]], Any]


class BackgroundJobManager:
    """Runs job callables on a thread pool and tracks their state.

    A job callable receives one argument, a progress callback taking a
    stage label.
    """

    def __init__(self, max_workers: int = 2, *, retention_s: float = 900.0, max_finished: int = 64) -> None:
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="hmr-job")
        self.retention_s = retention_s
        self.max_finished = max_finished
        self._lock = threading.Lock()
        self._jobs: dict[str, Job] = {}
        self._futures: dict[str, Future] = {}

    # ========================================================================
    # Submission
    # ========================================================================

    def submit(
        self,
        kind: str,
        fn: JobFn,
        *,
        revision: int | None = None,
        session_id: str | None = None,
    ) -> Job:
        job = Job(id=uuid.uuid4().hex, kind=kind, revision=revision, session_id=session_id)
        with self._lock:
            self._evict_finished_locked()
            self._jobs[job.id] = job
            self._futures[job.id] = self._executor.submit(self._run, job, fn)
        get_metrics_client().incr("jobs.submitted", tags={"kind": kind})
        logger.info("Job submitted", extra={"job_id": job.id, "kind": kind, "revision": revision})
        return job

    async def run_inline(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Await ``fn`` on the job pool without tracking it as a job (request-scoped work)."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, functools.partial(fn, *args, **kwargs))

    def _evict_finished_locked(self) -> None:
        # Finished jobs hold rendered documents; keep them for a while, not forever.
        finished = sorted(
            (job for job in self._jobs.values() if job.done),
            key=lambda job: job.finished_at or job.created_at,
        )
        cutoff = _utcnow() - timedelta(seconds=self.retention_s)
        expired = [job for job in finished if (job.finished_at or job.created_at) <= cutoff]
        overflow = len(finished) - len(expired) - self.max_finished
        if overflow > 0:
            expired.extend(finished[len(expired) : len(expired) + overflow])
        for job in expired:
            self._jobs.pop(job.id, None)
            self._futures.pop(job.id, None)
        if expired:
            logger.info("Finished jobs evicted", extra={"count": len(expired)})

    def _progress(self, job: Job) -> Callable[[str], None]:
        def report(label: str) -> None:
            with self._lock:
                if not job.done:
                    job.progress.append(label)

        return report

    def _run(self, job: Job, fn: JobFn) -> None:
        with self._lock:
            if job.status == JobStatus.CANCELLED:
                return
            job.status = JobStatus.RUNNING
        try:
            with timed("jobs.run", tags={"kind": job.kind}):
                result = fn(self._progress(job))
        except Exception as exc:  # recorded on the job, surfaced by collect()
            with self._lock:
                if job.status == JobStatus.RUNNING:
                    job.status = JobStatus.FAILED
                    job.error = exc
                    job.finished_at = _utcnow()
            logger.warning("Job failed", extra={"job_id": job.id, "kind": job.kind, "error": str(exc)})
            return
        with self._lock:
            if job.status != JobStatus.RUNNING:
                # Cancelled while running; the result is dropped.
                return
            job.status = JobStatus.SUCCEEDED
            job.result = result
            job.finished_at = _utcnow()
        logger.info("Job finished", extra={"job_id": job.id, "kind": job.kind})

    # ========================================================================
    # Queries
    # ========================================================================

    def get(self, job_id: str) -> Job:
        with self._lock:
            job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def wait(self, job_id: str, timeout: float | None = None) -> Job:
        """Block up to ``timeout`` seconds; a job still running is returned as-is."""
        job = self.get(job_id)
        future = self._futures.get(job_id)
        if future is not None:
            try:
                future.result(timeout=timeout)
            except FutureTimeout:
                logger.info("Job still running after wait", extra={"job_id": job_id, "timeout": timeout})
            except CancelledError:
                pass
        return job

    async def wait_async(self, job_id: str, timeout: float | None = None) -> Job:
        job = self.get(job_id)
        future = self._futures.get(job_id)
        if future is not None:
            try:
                await asyncio.wait_for(asyncio.shield(asyncio.wrap_future(future)), timeout=timeout)
            except asyncio.TimeoutError:
                logger.info("Job still running after wait", extra={"job_id": job_id, "timeout": timeout})
            except asyncio.CancelledError:
                if not future.cancelled():
                    raise
        return job

    def cancel(self, job_id: str) -> Job:
        job = self.get(job_id)
        with self._lock:
            if not job.done:
                job.status = JobStatus.CANCELLED
                job.finished_at = _utcnow()
                future = self._futures.get(job_id)
                if future is not None:
                    future.cancel()
        get_metrics_client().incr("jobs.cancelled", tags={"kind": job.kind})
        return job

    def collect(self, job_id: str, current_revision: int | None = None) -> Any:
        """Return the job's result if it still applies.

        Raises:
            JobNotReadyError: Still pending or running
            StaleResultError: Cancelled, or started from an older revision
            Exception: The job's own error, re-raised
        """
        job = self.get(job_id)
        with self._lock:
            if job.status in (JobStatus.PENDING, JobStatus.RUNNING):
                raise JobNotReadyError(job_id, job.status.value)
            if job.status == JobStatus.CANCELLED:
                raise StaleResultError(job_id, "job was cancelled")
            if job.status == JobStatus.STALE:
                raise StaleResultError(job_id, "record changed after the job started")
            if (
                current_revision is not None
                and job.revision is not None
                and job.revision != current_revision
            ):
                job.status = JobStatus.STALE
                job.result = None
                raise StaleResultError(job_id, "record changed after the job started")
            if job.status == JobStatus.FAILED and job.error is not None:
                raise job.error
            return job.result

    def forget(self, job_id: str) -> None:
        with self._lock:
            self._jobs.pop(job_id, None)
            self._futures.pop(job_id, None)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


__all__ = ["BackgroundJobManager", "Job", "JobStatus", "TERMINAL_STATUSES"]
