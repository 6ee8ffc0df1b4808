"""Extraction boundary and normalizer."""

from .normalizer import normalize
from .pdf_text import DocumentExtractor, PdfTextExtractor, is_pdf
from .types import NormalizationNote, NormalizationResult

__all__ = [
    "DocumentExtractor",
    "NormalizationNote",
    "NormalizationResult",
    "PdfTextExtractor",
    "is_pdf",
    "normalize",
]
