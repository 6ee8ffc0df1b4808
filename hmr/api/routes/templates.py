"""Custom template upload, discovery and mapping endpoints.

Templates are owned by the uploading session (``X-Session-Id``); another
session asking for the same id gets a 404.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, File, Response, UploadFile

from hmr.api.dependencies import Services, get_services, require_session
from hmr.api.schemas import MappingRequest, TemplateResponse
from hmr.common.exceptions import UnsupportedTemplateError

router = APIRouter(prefix="/templates", tags=["templates"])


async def _read_upload(services: Services, file: UploadFile) -> bytes:
    content = await file.read()
    limit = services.template_settings.max_upload_bytes
    if len(content) > limit:
        raise UnsupportedTemplateError(f"Template exceeds {limit} bytes")
    return content


def _describe(services: Services, template_id: str, owner_id: str) -> TemplateResponse:
    descriptor = services.templates.get(template_id, owner_id)
    suggestions = services.mapper.suggest_mapping(template_id, owner_id=owner_id)
    return TemplateResponse.build(descriptor, suggestions)


@router.post("", response_model=TemplateResponse, status_code=201)
async def upload_template(
    file: UploadFile = File(...),
    owner_id: str = Depends(require_session),
    services: Services = Depends(get_services),
) -> TemplateResponse:
    content = await _read_upload(services, file)
    descriptor = services.mapper.register(owner_id, file.filename or "template", content, file.content_type)
    return _describe(services, descriptor.id, owner_id)


@router.get("/catalogue")
def catalogue(services: Services = Depends(get_services)) -> dict:
    entries = services.mapper.catalogue.entries()
    return {
        "max_list_items": services.mapper.catalogue.max_list_items,
        "paths": [
            {"path": e.path, "group": e.group, "label": e.label, "computed": e.computed}
            for e in entries
        ],
    }


@router.get("", response_model=list[TemplateResponse])
def list_templates(
    owner_id: str = Depends(require_session),
    services: Services = Depends(get_services),
) -> list[TemplateResponse]:
    return [TemplateResponse.build(d) for d in services.templates.list_for_owner(owner_id)]


@router.get("/{template_id}", response_model=TemplateResponse)
def get_template(
    template_id: str,
    owner_id: str = Depends(require_session),
    services: Services = Depends(get_services),
) -> TemplateResponse:
    return _describe(services, template_id, owner_id)


@router.delete("/{template_id}", status_code=204)
def delete_template(
    template_id: str,
    owner_id: str = Depends(require_session),
    services: Services = Depends(get_services),
) -> Response:
    services.templates.delete(template_id, owner_id)
    return Response(status_code=204)


@router.put("/{template_id}/mapping/{field_name}", response_model=TemplateResponse)
def map_field(
    template_id: str,
    field_name: str,
    body: MappingRequest,
    owner_id: str = Depends(require_session),
    services: Services = Depends(get_services),
) -> TemplateResponse:
    services.mapper.map(template_id, field_name, body.data_path, owner_id=owner_id)
    return _describe(services, template_id, owner_id)


@router.delete("/{template_id}/mapping/{field_name}", response_model=TemplateResponse)
def unmap_field(
    template_id: str,
    field_name: str,
    owner_id: str = Depends(require_session),
    services: Services = Depends(get_services),
) -> TemplateResponse:
    services.mapper.unmap(template_id, field_name, owner_id=owner_id)
    return _describe(services, template_id, owner_id)


@router.post("/{template_id}/suggestions", response_model=TemplateResponse)
def apply_suggestions(
    template_id: str,
    owner_id: str = Depends(require_session),
    services: Services = Depends(get_services),
) -> TemplateResponse:
    services.mapper.apply_suggestions(template_id, owner_id=owner_id)
    return _describe(services, template_id, owner_id)


@router.post("/{template_id}/rediscover", response_model=TemplateResponse)
async def rediscover(
    template_id: str,
    file: UploadFile | None = File(default=None),
    owner_id: str = Depends(require_session),
    services: Services = Depends(get_services),
) -> TemplateResponse:
    """Re-run discovery, optionally on a re-uploaded revision of the document."""
    content = None
    media_type = None
    if file is not None:
        content = await _read_upload(services, file)
        media_type = file.content_type
    services.mapper.rediscover(template_id, content, owner_id=owner_id, media_type=media_type)
    return _describe(services, template_id, owner_id)
