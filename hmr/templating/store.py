"""Template descriptor persistence.

``TemplateStore`` is the port; ``InMemoryTemplateStore`` is the adapter used
by the API and the tests. Descriptors are owner-scoped: a lookup with the
wrong owner behaves exactly like a lookup of a missing id.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod

from hmr_schemas.templates import TemplateDescriptor
from hmr.common.exceptions import TemplateNotFoundError


class TemplateStore(ABC):
    """Repository interface for custom template descriptors."""

    @abstractmethod
    def get(self, template_id: str, owner_id: str | None = None) -> TemplateDescriptor:
        """Fetch a descriptor.

        Args:
            template_id: Descriptor identifier
            owner_id: Caller's session id; None skips the ownership check
                (internal callers only)

        Raises:
            TemplateNotFoundError: Missing, or owned by someone else
        """
        ...

    @abstractmethod
    def save(self, descriptor: TemplateDescriptor) -> None:
        """Insert or replace a descriptor (keyed by ``descriptor.id``)."""
        ...

    @abstractmethod
    def delete(self, template_id: str, owner_id: str | None = None) -> None:
        """Remove a descriptor; missing ids are ignored."""
        ...

    @abstractmethod
    def list_for_owner(self, owner_id: str) -> list[TemplateDescriptor]:
        """Descriptors owned by ``owner_id``, oldest first."""
        ...


class InMemoryTemplateStore(TemplateStore):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._templates: dict[str, TemplateDescriptor] = {}

    def get(self, template_id: str, owner_id: str | None = None) -> TemplateDescriptor:
        with self._lock:
            descriptor = self._templates.get(template_id)
        if descriptor is None or (owner_id is not None and descriptor.owner_id != owner_id):
            raise TemplateNotFoundError(template_id)
        return descriptor

    def save(self, descriptor: TemplateDescriptor) -> None:
        with self._lock:
            self._templates[descriptor.id] = descriptor

    def delete(self, template_id: str, owner_id: str | None = None) -> None:
        with self._lock:
            descriptor = self._templates.get(template_id)
            if descriptor is None:
                return
            if owner_id is not None and descriptor.owner_id != owner_id:
                raise TemplateNotFoundError(template_id)
            del self._templates[template_id]

    def list_for_owner(self, owner_id: str) -> list[TemplateDescriptor]:
        with self._lock:
            owned = [d for d in self._templates.values() if d.owner_id == owner_id]
        return sorted(owned, key=lambda d: d.created_at)


__all__ = ["InMemoryTemplateStore", "TemplateStore"]
