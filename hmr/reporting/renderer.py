"""Document renderer.

Two targets share one entry point:

- ``FIXED_LAYOUT``: the HMR clinical report, composed with a Jinja template
  and laid out to PDF (``layout`` + ``pdf_writer``).
- a custom template (``TemplateDocument`` or ``TemplateDescriptor``): each
  discovered field is filled from its mapped data path. A field that cannot
  be resolved renders empty and is reported in the ``GenerationSummary``.

Any failure inside the renderer surfaces as ``RenderFailure``; no partial
document is ever returned.
"""

from __future__ import annotations

import datetime as dt
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional, Union

from jinja2 import Environment, FileSystemLoader, StrictUndefined, select_autoescape
from jinja2.exceptions import TemplateError as JinjaTemplateError

from config.settings import RenderSettings, ReviewSettings
from hmr_schemas.clinical import CanonicalRecord, MedicationEntry, REGULARITY_LABELS
from hmr_schemas.templates import TemplateDescriptor
from hmr.common.exceptions import HMRError, PathError, RenderFailure
from hmr.reporting import phrases
from hmr.reporting.layout import LayoutStyle, layout
from hmr.reporting.metadata import FieldResolution, GenerationSummary, RenderedDocument
from hmr.reporting.pdf_writer import write_pdf
from hmr.reporting.preparer import PreparerProfile, resolve_preparer
from hmr.reporting.util.path_access import resolve_path
from hmr.reporting.validation import validate, watermark_for
from hmr.templating.context import build_render_context, format_au_date, stringify
from hmr.templating.documents import PDF_MEDIA_TYPE, TemplateDocument
from observability.logging_config import get_logger
from observability.metrics import get_metrics_client
from observability.timing import timed

logger = get_logger(__name__)

_TEMPLATE_ROOT = Path(__file__).parent / "templates"
FIXED_REPORT_TEMPLATE = "hmr_report.jinja"

FIXED_LAYOUT = "fixed_layout"

PROGRESS_STEPS: tuple[str, ...] = (
    "Analyzing patient data",
    "Processing medications",
    "Generating recommendations",
    "Formatting document",
    "Finalizing PDF",
)

ProgressCallback = Callable[[str], None]
RenderTarget = Union[str, TemplateDocument, TemplateDescriptor]

_WATERMARKS = {"draft": "Draft", "final": "Final"}
_PAGE_FORMATS = {"a4": "A4", "letter": "Letter"}


@dataclass(frozen=True)
class RenderOptions:
    include_appendices: bool = False
    # None means derive it from the validation issues.
    watermark: Optional[str] = None
    page_format: str = "A4"

    @classmethod
    def from_settings(cls, settings: RenderSettings, **overrides: Any) -> "RenderOptions":
        values = {"include_appendices": settings.include_appendices, "page_format": settings.page_format}
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def normalized(self) -> "RenderOptions":
        watermark = self.watermark
        if watermark is not None:
            key = watermark.strip().lower()
            if key not in _WATERMARKS:
                raise RenderFailure(f"Unknown watermark: {watermark}")
            watermark = _WATERMARKS[key]
        page_format = _PAGE_FORMATS.get(self.page_format.strip().lower())
        if page_format is None:
            raise RenderFailure(f"Unknown page format: {self.page_format}")
        return RenderOptions(self.include_appendices, watermark, page_format)


# ============================================================================
# Jinja helpers
# ============================================================================


def _inline(value: Any) -> str:
    # Every str.splitlines boundary (\r, \x0c, \u2028, ...) becomes a markup line break.
    return "<br>".join(stringify(value).splitlines())


def _cell(value: Any) -> str:
    return _inline(value).replace("|", "/")


def _para(value: Any) -> str:
    text = _inline(value)
    # Interpolated prose must never be read as a layout directive.
    return " " + text if text.startswith("@") else text


def _placeholder(value: Any, label: str, brackets: bool = True) -> str:
    text = stringify(value).strip()
    if text:
        return text
    return f"[{label}]" if brackets else label


def _au_date(value: Any, placeholder: str = "") -> str:
    return phrases.format_date(stringify(value), placeholder)


def _administration(med: MedicationEntry) -> str:
    parts = [p for p in (med.dosage, med.frequency, med.route) if p.strip()]
    line = " ".join(parts)
    label = REGULARITY_LABELS[med.regularity]
    return f"{line}\n{label}" if line else label


def _build_env(template_root: Path) -> Environment:
    env = Environment(
        loader=FileSystemLoader(str(template_root)),
        autoescape=select_autoescape(default=False),
        undefined=StrictUndefined,
        trim_blocks=True,
        lstrip_blocks=True,
    )
    env.filters["cell"] = _cell
    env.filters["para"] = _para
    env.filters["placeholder"] = _placeholder
    env.filters["au_date"] = _au_date
    env.filters["administration"] = _administration
    env.filters["label"] = stringify
    return env


def _report_variables(
    record: CanonicalRecord,
    *,
    preparer: str,
    generated_on: dt.date,
    include_appendices: bool,
) -> dict[str, Any]:
    interview = record.interview
    name = record.patient.name.strip() or "the patient"
    interviewed = phrases.format_date(interview.interview_date, "[Date]")
    pronouns = phrases.pronouns_for(record.patient.gender)
    greeting = (
        f"Thank you for referring {name} for a Home Medication Review. "
        f"{pronouns.Subject} {'were' if pronouns.plural else 'was'} interviewed on {interviewed}."
    )
    return {
        "patient": record.patient,
        "interview": interview,
        "medications": record.medications,
        "recommendations": record.recommendations,
        "preparer": preparer,
        "report_date": format_au_date(generated_on),
        "next_review": phrases.next_review(interview),
        "allergies": phrases.allergies(record),
        "greeting": greeting,
        "include_appendices": include_appendices,
        "phrases": {
            "understanding": phrases.medication_understanding(record),
            "administration": phrases.medication_administration(record),
            "adherence": phrases.medication_adherence(record),
            "fluids": phrases.fluid_intake(record),
            "eating": phrases.eating_habits(record),
            "smoking": phrases.smoking(interview),
            "alcohol": phrases.alcohol(interview),
            "drugs": phrases.recreational_drugs(interview),
        },
    }


def _report_filename(record: CanonicalRecord, suffix: str) -> str:
    stem = re.sub(r"[^A-Za-z0-9]+", "_", record.patient.name).strip("_") or "patient"
    return f"HMR_Report_{stem}{suffix}"


# ============================================================================
# Renderer
# ============================================================================


class DocumentRenderer:
    """Renders a canonical record to the fixed report or a custom template."""

    def __init__(
        self,
        settings: RenderSettings | None = None,
        review_settings: ReviewSettings | None = None,
        *,
        template_root: Path | None = None,
        template_loader: Callable[[TemplateDescriptor], TemplateDocument] | None = None,
    ) -> None:
        self.settings = settings or RenderSettings()
        self.review_settings = review_settings or ReviewSettings()
        root = template_root
        template_name = FIXED_REPORT_TEMPLATE
        if root is None and self.settings.report_template is not None:
            root = self.settings.report_template.parent
            template_name = self.settings.report_template.name
        self.template_name = template_name
        self.env = _build_env(root or _TEMPLATE_ROOT)
        self._template_loader = template_loader

    def default_options(self) -> RenderOptions:
        return RenderOptions.from_settings(self.settings)

    def resolve_preparer(self, record: CanonicalRecord, profile: str | PreparerProfile | None = None) -> str:
        return resolve_preparer(record.interview.pharmacist_name, profile, self.review_settings.default_preparer)

    def _watermark(
        self,
        record: CanonicalRecord,
        options: RenderOptions,
        profile: str | PreparerProfile | None,
    ) -> str:
        if options.watermark is not None:
            return options.watermark
        issues = validate(
            record,
            profile_name=profile,
            static_default=self.review_settings.default_preparer,
            threshold=self.review_settings.confidence_threshold,
        )
        return watermark_for(issues)

    def render(
        self,
        record: CanonicalRecord,
        target: RenderTarget = FIXED_LAYOUT,
        mapping: dict[str, str] | None = None,
        options: RenderOptions | None = None,
        *,
        profile: str | PreparerProfile | None = None,
        generated_on: dt.date | None = None,
        progress: ProgressCallback | None = None,
    ) -> RenderedDocument:
        """Render ``record`` to ``target``.

        Args:
            record: Snapshot to render
            target: ``FIXED_LAYOUT``, a loaded ``TemplateDocument`` or a
                stored ``TemplateDescriptor``
            mapping: Field -> data path; defaults to the descriptor's mapping
            options: Appendices, watermark and page format
            profile: Signed-in pharmacist, second link of the preparer chain
            generated_on: Report date (defaults to today)
            progress: Called with each stage label as rendering advances

        Raises:
            RenderFailure: Anything went wrong; no partial artifact exists.
        """
        options = (options or self.default_options()).normalized()
        generated_on = generated_on or dt.date.today()
        report = progress or (lambda _label: None)
        kind = "fixed" if isinstance(target, str) else "custom"

        try:
            with timed("render.document", tags={"kind": kind}) as timer:
                if isinstance(target, str):
                    if target != FIXED_LAYOUT:
                        raise RenderFailure(f"Unknown render target: {target}")
                    document = self._render_fixed(record, options, profile, generated_on, report)
                else:
                    document = self._render_custom(record, target, mapping, options, profile, generated_on, report)
        except RenderFailure:
            get_metrics_client().incr("render.failure", tags={"kind": kind})
            raise
        except (
            HMRError,
            JinjaTemplateError,
            ValueError,
            KeyError,
            IndexError,
            AttributeError,
            TypeError,
            OSError,
        ) as exc:
            get_metrics_client().incr("render.failure", tags={"kind": kind})
            logger.exception("Render failed", extra={"kind": kind})
            raise RenderFailure(f"Could not render document: {exc}") from exc

        logger.info(
            "Document rendered",
            extra={
                "kind": kind,
                "bytes": document.content_length,
                "watermark": document.summary.watermark,
                "elapsed_ms": round(timer.elapsed_ms, 2),
            },
        )
        return document

    def _render_fixed(
        self,
        record: CanonicalRecord,
        options: RenderOptions,
        profile: str | PreparerProfile | None,
        generated_on: dt.date,
        report: ProgressCallback,
    ) -> RenderedDocument:
        report(PROGRESS_STEPS[0])
        preparer = self.resolve_preparer(record, profile)
        watermark = self._watermark(record, options, profile)

        report(PROGRESS_STEPS[1])
        variables = _report_variables(
            record,
            preparer=preparer,
            generated_on=generated_on,
            include_appendices=options.include_appendices,
        )

        report(PROGRESS_STEPS[2])
        markup = self.env.get_template(self.template_name).render(**variables)

        report(PROGRESS_STEPS[3])
        style = LayoutStyle(page_format=options.page_format, body_size=self.settings.font_size)
        pages = layout(markup, style)

        report(PROGRESS_STEPS[4])
        content = write_pdf(
            pages,
            page_format=options.page_format,
            watermark=watermark,
            margin=style.margin,
            font_size=style.body_size,
        )
        summary = GenerationSummary(template_id=None, watermark=watermark, pages=len(pages))
        return RenderedDocument(
            content=content,
            media_type=PDF_MEDIA_TYPE,
            filename=_report_filename(record, ".pdf"),
            summary=summary,
        )

    def _load_target(self, target: TemplateDocument | TemplateDescriptor) -> tuple[TemplateDocument, str | None, dict[str, str]]:
        if isinstance(target, TemplateDescriptor):
            if self._template_loader is None:
                raise RenderFailure("No template loader configured for stored templates")
            return self._template_loader(target), target.id, dict(target.mapping)
        return target, None, {}

    def _render_custom(
        self,
        record: CanonicalRecord,
        target: TemplateDocument | TemplateDescriptor,
        mapping: dict[str, str] | None,
        options: RenderOptions,
        profile: str | PreparerProfile | None,
        generated_on: dt.date,
        report: ProgressCallback,
    ) -> RenderedDocument:
        report(PROGRESS_STEPS[0])
        document, template_id, stored_mapping = self._load_target(target)
        mapping = stored_mapping if mapping is None else mapping
        watermark = self._watermark(record, options, profile)
        context = build_render_context(
            record,
            preparer=self.resolve_preparer(record, profile),
            watermark=watermark,
            generated_on=generated_on,
        )

        report(PROGRESS_STEPS[1])
        values, resolutions = fill_values(document.discover_fields(), mapping, context)

        report(PROGRESS_STEPS[3])
        content = document.fill(values)

        report(PROGRESS_STEPS[4])
        summary = GenerationSummary(template_id=template_id, fields=resolutions, watermark=watermark)
        if summary.errors:
            logger.warning(
                "Template fields could not be resolved",
                extra={"template_id": template_id, "fields": [f.field_name for f in summary.errors]},
            )
        return RenderedDocument(
            content=content,
            media_type=document.media_type,
            filename=document.output_filename(),
            summary=summary,
        )


def fill_values(
    fields: list[str],
    mapping: dict[str, str],
    context: dict[str, Any],
) -> tuple[dict[str, str], list[FieldResolution]]:
    """Resolve every discovered field; every field gets a value, possibly ``""``."""
    values: dict[str, str] = {}
    resolutions: list[FieldResolution] = []
    for name in fields:
        path = mapping.get(name)
        if not path:
            values[name] = ""
            resolutions.append(FieldResolution(name, None, "unmapped"))
            continue
        try:
            value = resolve_path(context, path)
        except PathError as exc:
            values[name] = ""
            resolutions.append(FieldResolution(name, path, "error", str(exc)))
            continue
        text = stringify(value)
        values[name] = text
        resolutions.append(FieldResolution(name, path, "filled" if text else "empty"))
    return values, resolutions


_default_renderer: DocumentRenderer | None = None


def get_renderer() -> DocumentRenderer:
    global _default_renderer
    if _default_renderer is None:
        _default_renderer = DocumentRenderer()
    return _default_renderer


def render(
    record: CanonicalRecord,
    target: RenderTarget = FIXED_LAYOUT,
    mapping: dict[str, str] | None = None,
    options: RenderOptions | None = None,
    **kwargs: Any,
) -> RenderedDocument:
    return get_renderer().render(record, target, mapping, options, **kwargs)


__all__ = [
    "DocumentRenderer",
    "FIXED_LAYOUT",
    "PROGRESS_STEPS",
    "RenderOptions",
    "fill_values",
    "get_renderer",
    "render",
]
