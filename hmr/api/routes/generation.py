"""Document generation endpoints."""

from __future__ import annotations

import json
from typing import Any

from fastapi import APIRouter, Depends, Response

from hmr.api.dependencies import Services, get_services, optional_session, require_session
from hmr.api.schemas import GenerateRequest, ReviewGenerateRequest
from hmr.reporting.metadata import RenderedDocument, summary_to_dict
from hmr.reporting.renderer import FIXED_LAYOUT

router = APIRouter(tags=["generation"])


def document_response(document: RenderedDocument) -> Response:
    summary = summary_to_dict(document.summary)
    header_summary = {
        "template_id": summary.get("template_id"),
        "watermark": summary.get("watermark"),
        "pages": summary.get("pages"),
        "filled_count": summary["filled_count"],
        "unmapped": summary["unmapped"],
        "errors": [f["field_name"] for f in summary["fields"] if f["status"] == "error"],
    }
    return Response(
        content=document.content,
        media_type=document.media_type,
        headers={
            "Content-Disposition": f'attachment; filename="{document.filename}"',
            "Content-Length": str(document.content_length),
            "X-Generation-Summary": json.dumps(header_summary, separators=(",", ":")),
        },
    )


def _target(services: Services, template_id: str | None, owner_id: str | None) -> Any:
    if not template_id:
        return FIXED_LAYOUT
    return services.templates.get(template_id, owner_id)


@router.post("/generate")
async def generate(
    body: GenerateRequest,
    owner_id: str | None = Depends(optional_session),
    services: Services = Depends(get_services),
) -> Response:
    """Render synchronously and return the file.

    Custom templates need ``X-Session-Id`` so the owner check can run.
    """
    if body.template_id:
        owner_id = require_session(owner_id)
    target = _target(services, body.template_id, owner_id)
    options = body.options.to_options(services.renderer.default_options())
    document = await services.jobs.run_inline(services.renderer.render, body.record, target, body.mapping, options)
    return document_response(document)


@router.post("/reviews/{session_id}/generate", status_code=202)
def generate_for_review(
    session_id: str,
    body: ReviewGenerateRequest | None = None,
    services: Services = Depends(get_services),
) -> dict:
    """Start a background render of the review's current record."""
    body = body or ReviewGenerateRequest()
    state = services.workflow.load(session_id)
    target = _target(services, body.template_id, session_id)
    options = body.options.to_options(services.renderer.default_options())
    record = state.record

    def _job(progress):
        return services.renderer.render(record, target, None, options, progress=progress)

    job = services.jobs.submit("render", _job, revision=state.revision, session_id=session_id)
    return job.to_dict()
