"""Review wizard endpoints.

Each call loads the session's draft, applies one operation and returns the
new state with freshly computed validation issues.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile

from hmr.api.dependencies import Services, get_services
from hmr.api.routes.extraction import _check_size, extract_and_normalize
from hmr.api.schemas import EditBatch, FixRequest, JumpRequest, NewReviewRequest, ReviewStateResponse
from hmr.extraction.normalizer import normalize
from hmr.reporting.metadata import IssueSeverity, ValidationIssue
from hmr.workflow.state import WorkflowState, edit_from_dict

router = APIRouter(prefix="/reviews", tags=["reviews"])


def _respond(services: Services, state: WorkflowState) -> ReviewStateResponse:
    workflow = services.workflow
    issues = workflow.issues(state)
    return ReviewStateResponse.build(
        state,
        issues,
        workflow.step_issues(state),
        services.review_settings.confidence_threshold,
    )


@router.get("/{session_id}", response_model=ReviewStateResponse)
def get_review(session_id: str, services: Services = Depends(get_services)) -> ReviewStateResponse:
    return _respond(services, services.workflow.load(session_id))


@router.post("/{session_id}/upload", response_model=ReviewStateResponse)
async def upload_referral(
    session_id: str,
    file: Optional[UploadFile] = File(default=None),
    services: Services = Depends(get_services),
) -> ReviewStateResponse:
    """Install an extracted record; without a file the review starts empty."""
    workflow = services.workflow
    state = workflow.load(session_id)
    if file is None:
        result = normalize(None)
    else:
        content = await file.read()
        _check_size(services, content)
        result = await services.jobs.run_inline(extract_and_normalize, services, content, file.filename)
    return _respond(services, workflow.ingest(state, result))


@router.post("/{session_id}/edits", response_model=ReviewStateResponse)
def apply_edits(session_id: str, body: EditBatch, services: Services = Depends(get_services)) -> ReviewStateResponse:
    workflow = services.workflow
    state = workflow.load(session_id)
    for payload in body.edits:
        try:
            edit = edit_from_dict(payload)
        except (KeyError, TypeError, ValueError) as exc:
            raise HTTPException(status_code=400, detail=f"Malformed edit {payload!r}: {exc}") from exc
        state = workflow.dispatch(state, edit)
    return _respond(services, state)


@router.post("/{session_id}/next", response_model=ReviewStateResponse)
def next_step(session_id: str, services: Services = Depends(get_services)) -> ReviewStateResponse:
    workflow = services.workflow
    return _respond(services, workflow.next(workflow.load(session_id)))


@router.post("/{session_id}/previous", response_model=ReviewStateResponse)
def previous_step(session_id: str, services: Services = Depends(get_services)) -> ReviewStateResponse:
    workflow = services.workflow
    return _respond(services, workflow.previous(workflow.load(session_id)))


@router.post("/{session_id}/jump", response_model=ReviewStateResponse)
def jump(session_id: str, body: JumpRequest, services: Services = Depends(get_services)) -> ReviewStateResponse:
    workflow = services.workflow
    return _respond(services, workflow.jump_to(workflow.load(session_id), body.step))


@router.post("/{session_id}/fix", response_model=ReviewStateResponse)
def fix_now(session_id: str, body: FixRequest, services: Services = Depends(get_services)) -> ReviewStateResponse:
    workflow = services.workflow
    state = workflow.load(session_id)
    issue = next(
        (i for i in workflow.issues(state) if i.field_path == body.field_path),
        ValidationIssue("", body.field_path, IssueSeverity.INFORMATIONAL, "manual.focus"),
    )
    return _respond(services, workflow.fix_now(state, issue))


@router.post("/{session_id}/discard", response_model=ReviewStateResponse)
def discard(session_id: str, services: Services = Depends(get_services)) -> ReviewStateResponse:
    workflow = services.workflow
    return _respond(services, workflow.discard_changes(workflow.load(session_id)))


@router.post("/{session_id}/finalize", response_model=ReviewStateResponse)
def finalize(session_id: str, services: Services = Depends(get_services)) -> ReviewStateResponse:
    workflow = services.workflow
    return _respond(services, workflow.finalize(workflow.load(session_id)))


@router.post("/{session_id}/new", response_model=ReviewStateResponse)
def new_review(
    session_id: str,
    body: Optional[NewReviewRequest] = None,
    services: Services = Depends(get_services),
) -> ReviewStateResponse:
    workflow = services.workflow
    confirm = body.confirm if body is not None else False
    return _respond(services, workflow.new_review(workflow.load(session_id), confirm=confirm))
