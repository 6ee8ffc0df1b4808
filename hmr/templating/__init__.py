"""Custom template discovery, mapping and fill values."""

from .catalogue import DataPathCatalogue, get_catalogue
from .documents import FormFillablePdf, MergeFieldDocx, TemplateDocument, load_template
from .mapper import TemplateFieldMapper
from .store import InMemoryTemplateStore, TemplateStore

__all__ = [
    "DataPathCatalogue",
    "FormFillablePdf",
    "InMemoryTemplateStore",
    "MergeFieldDocx",
    "TemplateDocument",
    "TemplateFieldMapper",
    "TemplateStore",
    "get_catalogue",
    "load_template",
]
