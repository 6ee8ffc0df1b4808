"""Background job status, result and cancellation endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response

from hmr.api.dependencies import Services, get_services, optional_session
from hmr.api.routes.generation import document_response
from hmr.common.exceptions import JobNotFoundError
from hmr.reporting.jobs import Job

router = APIRouter(prefix="/jobs", tags=["jobs"])


def _owned(services: Services, job_id: str, session_id: str | None) -> Job:
    job = services.jobs.get(job_id)
    if job.session_id and session_id and job.session_id != session_id:
        raise JobNotFoundError(job_id)
    return job


@router.get("/{job_id}")
async def job_status(
    job_id: str,
    wait: float = Query(default=0.0, ge=0.0, le=60.0),
    session_id: str | None = Depends(optional_session),
    services: Services = Depends(get_services),
) -> dict:
    """Job state; ``wait`` blocks up to that many seconds for completion."""
    _owned(services, job_id, session_id)
    job = await services.jobs.wait_async(job_id, timeout=wait) if wait else services.jobs.get(job_id)
    return job.to_dict()


@router.get("/{job_id}/document")
def job_document(
    job_id: str,
    session_id: str | None = Depends(optional_session),
    services: Services = Depends(get_services),
) -> Response:
    job = _owned(services, job_id, session_id)
    current = services.workflow.load(job.session_id).revision if job.session_id else None
    document = services.jobs.collect(job_id, current)
    return document_response(document)


@router.delete("/{job_id}")
def cancel_job(
    job_id: str,
    session_id: str | None = Depends(optional_session),
    services: Services = Depends(get_services),
) -> dict:
    _owned(services, job_id, session_id)
    return services.jobs.cancel(job_id).to_dict()
