"""Custom template documents.

Two kinds are supported and nothing else:

- ``FormFillablePdf``: AcroForm fields, read and filled with pypdf.
- ``MergeFieldDocx``: Word documents with ``{field}``, ``{{field}}``,
  ``[field]`` or ``«field»`` placeholders, content controls (tag or title)
  and legacy form fields, read and filled with python-docx.

Both expose the same two operations, so callers never branch on format.
"""

from __future__ import annotations

import io
import re
import zipfile
from abc import ABC, abstractmethod
from pathlib import PurePath
from typing import Iterator

from docx import Document
from docx.opc.exceptions import PackageNotFoundError
from docx.oxml.ns import qn
from docx.text.paragraph import Paragraph
from pypdf import PdfReader, PdfWriter
from pypdf.errors import PdfReadError

from hmr_schemas.templates import TemplateKind
from hmr.common.exceptions import TemplateError, UnsupportedTemplateError

PDF_MEDIA_TYPE = "application/pdf"
DOCX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

_TRUTHY = {"1", "true", "yes", "y", "on", "x", "checked"}

# One alternative per placeholder syntax; the name is in whichever group matched.
PLACEHOLDER = re.compile(
    r"\{\{\s*(?P<double>[A-Za-z_][\w.\[\]-]*)\s*\}\}"
    r"|\{\s*(?P<single>[A-Za-z_][\w.\[\]-]*)\s*\}"
    r"|«\s*(?P<guillemet>[^«»]+?)\s*»"
    r"|\[(?P<bracket>[A-Za-z_][\w.-]*)\]"
)


def _placeholder_name(match: re.Match[str]) -> str:
    return next(group for group in match.groups() if group)


def _dedupe(names: Iterator[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for name in names:
        if name and name not in seen:
            seen.add(name)
            out.append(name)
    return out


class TemplateDocument(ABC):
    """A loaded custom template."""

    kind: TemplateKind
    media_type: str
    extension: str

    def __init__(self, content: bytes, source_name: str = "") -> None:
        self.content = content
        self.source_name = source_name

    @abstractmethod
    def discover_fields(self) -> list[str]:
        """Opaque field names in document order, without duplicates."""
        ...

    @abstractmethod
    def fill(self, values: dict[str, str]) -> bytes:
        """Return a new document with each named field set to its value."""
        ...

    def output_filename(self) -> str:
        stem = PurePath(self.source_name).stem if self.source_name else "template"
        return f"{stem}-filled{self.extension}"


# ============================================================================
# Form-fillable PDF
# ============================================================================


class FormFillablePdf(TemplateDocument):
    kind = TemplateKind.FORM_FILLABLE
    media_type = PDF_MEDIA_TYPE
    extension = ".pdf"

    def __init__(self, content: bytes, source_name: str = "") -> None:
        super().__init__(content, source_name)
        try:
            self._reader = PdfReader(io.BytesIO(content))
            self._fields = self._reader.get_fields() or {}
        except (PdfReadError, ValueError, KeyError, TypeError, OSError) as exc:
            raise TemplateError(f"Could not read PDF template: {exc}") from exc

    def discover_fields(self) -> list[str]:
        return _dedupe(iter(self._fields))

    def _checkbox_on_states(self) -> dict[str, str]:
        states: dict[str, str] = {}
        for name, field in self._fields.items():
            if field.get("/FT") != "/Btn":
                continue
            # pypdf lists the appearance states of button fields under /_States_.
            available = field.get("/_States_") or []
            states[name] = next((str(s) for s in available if s != "/Off"), "/Yes")
        return states

    def fill(self, values: dict[str, str]) -> bytes:
        checkboxes = self._checkbox_on_states()
        resolved: dict[str, str] = {}
        for name in self._fields:
            if name not in values:
                continue
            value = values[name] or ""
            if name in checkboxes:
                resolved[name] = checkboxes[name] if value.strip().lower() in _TRUTHY else "/Off"
            else:
                resolved[name] = value
        try:
            writer = PdfWriter(clone_from=self._reader)
            for page in writer.pages:
                if "/Annots" not in page:
                    continue
                writer.update_page_form_field_values(page, resolved, auto_regenerate=False)
            writer.set_need_appearances_writer(True)
            buffer = io.BytesIO()
            writer.write(buffer)
        except (PdfReadError, ValueError, KeyError, TypeError) as exc:
            raise TemplateError(f"Could not fill PDF template: {exc}") from exc
        return buffer.getvalue()


# ============================================================================
# Merge-field DOCX
# ============================================================================


class MergeFieldDocx(TemplateDocument):
    kind = TemplateKind.MERGE_FIELD
    media_type = DOCX_MEDIA_TYPE
    extension = ".docx"

    def __init__(self, content: bytes, source_name: str = "") -> None:
        super().__init__(content, source_name)
        self._load()  # fail fast on corrupt input

    def _load(self):
        try:
            return Document(io.BytesIO(self.content))
        except (PackageNotFoundError, zipfile.BadZipFile, KeyError, ValueError) as exc:
            raise TemplateError(f"Could not read DOCX template: {exc}") from exc

    @staticmethod
    def _roots(document) -> list:
        roots = [document.element.body]
        for section in document.sections:
            for part in (section.header, section.footer, section.first_page_header, section.first_page_footer):
                if not part.is_linked_to_previous:
                    roots.append(part._element)
        return roots

    @staticmethod
    def _paragraphs(root) -> Iterator[Paragraph]:
        for p in root.iter(qn("w:p")):
            yield Paragraph(p, None)

    @staticmethod
    def _sdt_name(sdt) -> str:
        props = sdt.find(qn("w:sdtPr"))
        if props is None:
            return ""
        for tag in ("w:tag", "w:alias"):
            node = props.find(qn(tag))
            if node is not None and node.get(qn("w:val")):
                return node.get(qn("w:val"))
        return ""

    @staticmethod
    def _legacy_name(fld_char) -> str:
        node = fld_char.find(f"{qn('w:ffData')}/{qn('w:name')}")
        return node.get(qn("w:val"), "") if node is not None else ""

    def discover_fields(self) -> list[str]:
        document = self._load()

        def _names() -> Iterator[str]:
            for root in self._roots(document):
                for paragraph in self._paragraphs(root):
                    text = "".join(run.text for run in paragraph.runs)
                    for match in PLACEHOLDER.finditer(text):
                        yield _placeholder_name(match)
                for sdt in root.iter(qn("w:sdt")):
                    yield self._sdt_name(sdt)
                for fld_char in root.iter(qn("w:fldChar")):
                    if fld_char.get(qn("w:fldCharType")) == "begin":
                        yield self._legacy_name(fld_char)

        return _dedupe(_names())

    def fill(self, values: dict[str, str]) -> bytes:
        document = self._load()

        def _sub(match: re.Match[str]) -> str:
            name = _placeholder_name(match)
            return values[name] if name in values else match.group(0)

        for root in self._roots(document):
            for paragraph in self._paragraphs(root):
                self._fill_paragraph(paragraph, _sub)
            for sdt in root.iter(qn("w:sdt")):
                name = self._sdt_name(sdt)
                if name in values:
                    self._fill_content_control(sdt, values[name])
            self._fill_legacy_fields(root, values)

        buffer = io.BytesIO()
        document.save(buffer)
        return buffer.getvalue()

    @staticmethod
    def _fill_paragraph(paragraph: Paragraph, sub) -> None:
        runs = paragraph.runs
        if not runs:
            return
        # Placeholders inside a single run keep that run's formatting.
        for run in runs:
            if PLACEHOLDER.search(run.text):
                run.text = PLACEHOLDER.sub(sub, run.text)
        joined = "".join(run.text for run in runs)
        replaced = PLACEHOLDER.sub(sub, joined)
        if replaced != joined:
            # Placeholder split across runs (Word does this after edits).
            runs[0].text = replaced
            for run in runs[1:]:
                run.text = ""

    @staticmethod
    def _fill_content_control(sdt, value: str) -> None:
        content = sdt.find(qn("w:sdtContent"))
        if content is None:
            return
        texts = list(content.iter(qn("w:t")))
        if not texts:
            return
        texts[0].text = value
        for node in texts[1:]:
            node.text = ""
        props = sdt.find(qn("w:sdtPr"))
        if props is not None:
            placeholder_flag = props.find(qn("w:showingPlcHdr"))
            if placeholder_flag is not None:
                props.remove(placeholder_flag)

    def _fill_legacy_fields(self, root, values: dict[str, str]) -> None:
        current: str | None = None
        in_result = False
        written = False
        for run in root.iter(qn("w:r")):
            fld_char = run.find(qn("w:fldChar"))
            if fld_char is not None:
                kind = fld_char.get(qn("w:fldCharType"))
                if kind == "begin":
                    name = self._legacy_name(fld_char)
                    current = name if name in values else None
                    in_result = False
                    written = False
                elif kind == "separate":
                    in_result = current is not None
                elif kind == "end":
                    current = None
                    in_result = False
                continue
            if in_result and current is not None:
                for node in run.iter(qn("w:t")):
                    node.text = "" if written else values[current]
                    written = True


def _looks_like(content: bytes, media_type: str | None, filename: str | None) -> str | None:
    suffix = PurePath(filename).suffix.lower() if filename else ""
    media = (media_type or "").split(";")[0].strip().lower()
    if media == PDF_MEDIA_TYPE or suffix == ".pdf":
        return "pdf"
    if media == DOCX_MEDIA_TYPE or suffix == ".docx":
        return "docx"
    if media in ("", "application/octet-stream"):
        if content.lstrip()[:5] == b"%PDF-":
            return "pdf"
        if content[:2] == b"PK":
            return "docx"
    return None


def load_template(
    content: bytes,
    media_type: str | None = None,
    filename: str | None = None,
) -> TemplateDocument:
    """Pick the document variant for an upload.

    Raises:
        UnsupportedTemplateError: Neither a PDF form nor a DOCX.
        TemplateError: The file claims a supported type but cannot be read.
    """
    if not content:
        raise UnsupportedTemplateError("Empty template upload")
    kind = _looks_like(content, media_type, filename)
    if kind == "pdf":
        return FormFillablePdf(content, filename or "")
    if kind == "docx":
        return MergeFieldDocx(content, filename or "")
    raise UnsupportedTemplateError(
        f"Unsupported template type {media_type or filename or 'unknown'}: upload a fillable PDF or a DOCX"
    )


__all__ = [
    "DOCX_MEDIA_TYPE",
    "FormFillablePdf",
    "MergeFieldDocx",
    "PDF_MEDIA_TYPE",
    "PLACEHOLDER",
    "TemplateDocument",
    "load_template",
]
