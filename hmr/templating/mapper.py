from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from hmr_schemas.templates import TemplateDescriptor, TemplateKind
from hmr.common.exceptions import PathError, TemplateMappingError
from hmr.reporting.util.path_access import format_path, parse_path
from hmr.templating.catalogue import DataPathCatalogue, get_catalogue
from hmr.templating.documents import (
    DOCX_MEDIA_TYPE,
    PDF_MEDIA_TYPE,
    TemplateDocument,
    load_template,
)
from hmr.templating.store import TemplateStore
from observability.logging_config import get_logger

logger = get_logger(__name__)

_KIND_MEDIA_TYPES = {
    TemplateKind.FORM_FILLABLE: PDF_MEDIA_TYPE,
    TemplateKind.MERGE_FIELD: DOCX_MEDIA_TYPE,
}


def _replace(descriptor: TemplateDescriptor, **changes: Any) -> TemplateDescriptor:
    # model_copy skips validation; rebuild so the mapping invariant is re-checked.
    payload = descriptor.model_dump()
    payload.update(changes)
    payload["updated_at"] = datetime.now(timezone.utc)
    return TemplateDescriptor.model_validate(payload)


class TemplateFieldMapper:
    """Discovers template fields and maintains field -> data path mappings.

    Mapping is partial by design: ``is_complete`` only tells the caller it may
    offer automatic generation, an incomplete mapping never blocks rendering.
    """

    def __init__(self, store: TemplateStore, catalogue: DataPathCatalogue | None = None) -> None:
        self.store = store
        self.catalogue = catalogue or get_catalogue()

    def discover_fields(self, document: TemplateDocument) -> list[str]:
        return document.discover_fields()

    def register(
        self,
        owner_id: str,
        source_name: str,
        content: bytes,
        media_type: str | None = None,
    ) -> TemplateDescriptor:
        """Load an upload, discover its fields and store a new descriptor."""
        document = load_template(content, media_type, source_name)
        fields = self.discover_fields(document)
        descriptor = TemplateDescriptor(
            id=uuid.uuid4().hex,
            owner_id=owner_id,
            source_name=source_name,
            kind=document.kind,
            source_document=content,
            discovered_fields=fields,
        )
        self.store.save(descriptor)
        logger.info(
            "Template registered",
            extra={"template_id": descriptor.id, "kind": document.kind.value, "fields": len(fields)},
        )
        return descriptor

    def load_document(self, descriptor: TemplateDescriptor) -> TemplateDocument:
        return load_template(
            descriptor.source_document,
            _KIND_MEDIA_TYPES[descriptor.kind],
            descriptor.source_name,
        )

    def rediscover(
        self,
        template_id: str,
        content: bytes | None = None,
        *,
        owner_id: str | None = None,
        media_type: str | None = None,
    ) -> TemplateDescriptor:
        """Re-run discovery, optionally on a re-uploaded document.

        Mappings for field names that still exist are kept; mappings for
        fields that disappeared are pruned.
        """
        descriptor = self.store.get(template_id, owner_id)
        if content is None:
            document = self.load_document(descriptor)
            content = descriptor.source_document
        else:
            document = load_template(content, media_type, descriptor.source_name)
        fields = self.discover_fields(document)
        kept = {name: path for name, path in descriptor.mapping.items() if name in fields}
        pruned = sorted(set(descriptor.mapping) - set(kept))
        updated = _replace(
            descriptor,
            kind=document.kind,
            source_document=content,
            discovered_fields=fields,
            mapping=kept,
        )
        self.store.save(updated)
        if pruned:
            logger.info("Pruned mappings for vanished fields", extra={"template_id": template_id, "pruned": pruned})
        return updated

    def map(self, template_id: str, field_name: str, data_path: str, *, owner_id: str | None = None) -> TemplateDescriptor:
        descriptor = self.store.get(template_id, owner_id)
        if field_name not in descriptor.discovered_fields:
            raise TemplateMappingError(f"Template has no field '{field_name}'", field_name=field_name)
        if not self.catalogue.is_legal(data_path):
            raise PathError(f"'{data_path}' is not a mappable data path", path=data_path)
        mapping = dict(descriptor.mapping)
        mapping[field_name] = format_path(parse_path(data_path))
        updated = _replace(descriptor, mapping=mapping)
        self.store.save(updated)
        return updated

    def unmap(self, template_id: str, field_name: str, *, owner_id: str | None = None) -> TemplateDescriptor:
        descriptor = self.store.get(template_id, owner_id)
        if field_name not in descriptor.mapping:
            return descriptor
        mapping = {k: v for k, v in descriptor.mapping.items() if k != field_name}
        updated = _replace(descriptor, mapping=mapping)
        self.store.save(updated)
        return updated

    def is_complete(self, template_id: str, *, owner_id: str | None = None) -> bool:
        descriptor = self.store.get(template_id, owner_id)
        return descriptor.mapped_count == descriptor.discovered_count

    def suggest_mapping(self, template_id: str, *, owner_id: str | None = None) -> dict[str, str]:
        """Alias-table guesses for fields that are not mapped yet."""
        descriptor = self.store.get(template_id, owner_id)
        suggestions: dict[str, str] = {}
        for name in descriptor.unmapped_fields:
            path = self.catalogue.suggest(name)
            if path is not None:
                suggestions[name] = path
        return suggestions

    def apply_suggestions(self, template_id: str, *, owner_id: str | None = None) -> TemplateDescriptor:
        descriptor = self.store.get(template_id, owner_id)
        suggestions = self.suggest_mapping(template_id, owner_id=owner_id)
        if not suggestions:
            return descriptor
        updated = _replace(descriptor, mapping={**descriptor.mapping, **suggestions})
        self.store.save(updated)
        return updated


__all__ = ["TemplateFieldMapper"]
