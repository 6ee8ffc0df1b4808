"""Service wiring for the API.

Services are built once per application in the lifespan and stored on
``app.state.services``; route handlers reach them through ``get_services``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import lru_cache
from typing import Optional

from fastapi import Header, HTTPException, Request

from config.settings import RenderSettings, ReviewSettings, StoreSettings, TemplateSettings
from hmr.extraction.pdf_text import DocumentExtractor, PdfTextExtractor
from hmr.reporting.jobs import BackgroundJobManager
from hmr.reporting.renderer import DocumentRenderer
from hmr.templating.catalogue import get_catalogue
from hmr.templating.mapper import TemplateFieldMapper
from hmr.templating.store import InMemoryTemplateStore, TemplateStore
from hmr.workflow.autosave import Autosaver
from hmr.workflow.draft_store import DraftStore, build_draft_store
from hmr.workflow.state_machine import ReviewWorkflow
from observability.logging_config import get_logger

logger = get_logger(__name__)


@lru_cache(maxsize=1)
def get_review_settings() -> ReviewSettings:
    return ReviewSettings()


@lru_cache(maxsize=1)
def get_render_settings() -> RenderSettings:
    return RenderSettings()


@lru_cache(maxsize=1)
def get_store_settings() -> StoreSettings:
    return StoreSettings()


@lru_cache(maxsize=1)
def get_template_settings() -> TemplateSettings:
    return TemplateSettings()


@dataclass
class Services:
    review_settings: ReviewSettings
    render_settings: RenderSettings
    template_settings: TemplateSettings
    extractor: DocumentExtractor
    templates: TemplateStore
    mapper: TemplateFieldMapper
    renderer: DocumentRenderer
    drafts: DraftStore
    autosaver: Autosaver
    workflow: ReviewWorkflow
    jobs: BackgroundJobManager = field(repr=False)


def build_services(
    *,
    review_settings: Optional[ReviewSettings] = None,
    render_settings: Optional[RenderSettings] = None,
    store_settings: Optional[StoreSettings] = None,
    template_settings: Optional[TemplateSettings] = None,
    drafts: Optional[DraftStore] = None,
    extractor: Optional[DocumentExtractor] = None,
) -> Services:
    review_settings = review_settings or get_review_settings()
    render_settings = render_settings or get_render_settings()
    template_settings = template_settings or get_template_settings()
    drafts = drafts or build_draft_store(store_settings or get_store_settings())

    templates = InMemoryTemplateStore()
    mapper = TemplateFieldMapper(templates, get_catalogue(template_settings.max_list_items))
    renderer = DocumentRenderer(render_settings, review_settings, template_loader=mapper.load_document)
    autosaver = Autosaver(drafts, interval_s=review_settings.autosave_interval_s)
    workflow = ReviewWorkflow(drafts, review_settings, autosaver=autosaver)
    logger.info("Services built", extra={"draft_store": type(drafts).__name__})
    return Services(
        review_settings=review_settings,
        render_settings=render_settings,
        template_settings=template_settings,
        extractor=extractor or PdfTextExtractor(),
        templates=templates,
        mapper=mapper,
        renderer=renderer,
        drafts=drafts,
        autosaver=autosaver,
        workflow=workflow,
        jobs=BackgroundJobManager(
            max_workers=render_settings.max_workers,
            retention_s=render_settings.job_retention_s,
            max_finished=render_settings.max_finished_jobs,
        ),
    )


def get_services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Service not initialised")
    return services


def require_session(x_session_id: Optional[str] = Header(default=None)) -> str:
    """Caller identity; templates are scoped to it."""
    if not x_session_id or not x_session_id.strip():
        raise HTTPException(status_code=401, detail="X-Session-Id header is required")
    return x_session_id.strip()


def optional_session(x_session_id: Optional[str] = Header(default=None)) -> Optional[str]:
    return x_session_id.strip() if x_session_id and x_session_id.strip() else None


__all__ = [
    "Services",
    "build_services",
    "get_render_settings",
    "get_review_settings",
    "get_services",
    "get_store_settings",
    "get_template_settings",
    "optional_session",
    "require_session",
]
