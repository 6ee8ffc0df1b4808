"""CLI for extraction, validation and document rendering."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from config.settings import RenderSettings, ReviewSettings
from hmr_schemas.clinical import CanonicalRecord
from hmr.common.exceptions import HMRError
from hmr.extraction.normalizer import normalize
from hmr.extraction.pdf_text import PdfTextExtractor
from hmr.reporting.metadata import ValidationIssue
from hmr.reporting.renderer import FIXED_LAYOUT, DocumentRenderer, RenderOptions
from hmr.reporting.validation import validate
from hmr.templating.catalogue import get_catalogue
from hmr.templating.documents import load_template
from observability.logging_config import configure_logging

app = typer.Typer(help="Home Medication Review document tools")
console = Console()

EXISTING_FILE = typer.Argument(..., exists=True, dir_okay=False)


@app.callback()
def _cli_entry(
    _: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level."),
) -> None:
    configure_logging("DEBUG" if verbose else "WARNING", structured=False)


def _load_record(path: Path, raw: bool) -> CanonicalRecord:
    payload = json.loads(path.read_text(encoding="utf-8"))
    if raw:
        return normalize(payload).record
    try:
        return CanonicalRecord.model_validate(payload)
    except ValidationError as exc:
        console.print(f"[red]Not a canonical record:[/red] {exc.errors()[0]['msg']} (use --raw for extractor output)")
        raise typer.Exit(code=2) from exc


def _fail(exc: HMRError) -> None:
    console.print(f"[red]{type(exc).__name__}:[/red] {exc}")
    raise typer.Exit(code=1)


@app.command("extract")
def extract(
    pdf_path: Path = EXISTING_FILE,
    json_output: bool = typer.Option(False, "--json", help="Emit the normalized record as JSON"),
) -> None:
    """Extract and normalize a referral PDF."""
    try:
        raw = PdfTextExtractor().extract(pdf_path.read_bytes(), filename=pdf_path.name)
    except HMRError as exc:
        _fail(exc)
    result = normalize(raw)
    if json_output:
        typer.echo(result.record.model_dump_json(indent=2))
        return

    threshold = ReviewSettings().confidence_threshold
    flagged = set(result.flagged_medications(threshold))
    patient = Table(title="Patient", show_header=False)
    patient.add_column("Field", style="cyan")
    patient.add_column("Value")
    for name, value in result.record.patient.model_dump().items():
        if value:
            patient.add_row(name, value)
    console.print(patient)

    meds = Table(title="Medications")
    for column in ("#", "Name", "Strength", "Directions", "Confidence"):
        meds.add_column(column)
    for idx, med in enumerate(result.record.medications):
        style = "yellow" if idx in flagged else None
        meds.add_row(
            str(idx),
            med.name,
            med.strength,
            " ".join(p for p in (med.dosage, med.frequency) if p),
            f"{med.confidence:.2f}",
            style=style,
        )
    console.print(meds)
    if flagged:
        console.print(f"[yellow]{len(flagged)} medication(s) need review[/yellow]")


def _print_issues(issues: list[ValidationIssue]) -> None:
    table = Table(title="Validation issues")
    table.add_column("Severity")
    table.add_column("Field", style="cyan")
    table.add_column("Message")
    for issue in issues:
        colour = "red" if issue.blocking else "yellow"
        table.add_row(f"[{colour}]{issue.severity.value}[/{colour}]", issue.field_path, issue.message)
    console.print(table)


@app.command("validate")
def validate_cmd(
    record_path: Path = EXISTING_FILE,
    raw: bool = typer.Option(False, "--raw", help="Input is extractor output, normalize it first"),
) -> None:
    """Validate a record; exits 1 when blocking issues remain."""
    record = _load_record(record_path, raw)
    settings = ReviewSettings()
    issues = validate(
        record,
        static_default=settings.default_preparer,
        threshold=settings.confidence_threshold,
    )
    if not issues:
        console.print("[green]No issues[/green]")
        return
    _print_issues(issues)
    if any(issue.blocking for issue in issues):
        raise typer.Exit(code=1)


@app.command("render")
def render(
    record_path: Path = EXISTING_FILE,
    output: Path = typer.Option(..., "--out", "-o", help="Output file"),
    template: Optional[Path] = typer.Option(None, "--template", exists=True, help="Custom PDF form or DOCX"),
    mapping_path: Optional[Path] = typer.Option(None, "--mapping", exists=True, help="JSON {field: data path}"),
    suggest: bool = typer.Option(False, "--suggest", help="Map unmapped template fields by name"),
    watermark: Optional[str] = typer.Option(None, "--watermark", help="Draft or Final"),
    page_format: Optional[str] = typer.Option(None, "--page-format", help="A4 or Letter"),
    appendices: Optional[bool] = typer.Option(None, "--appendices/--no-appendices"),
    raw: bool = typer.Option(False, "--raw", help="Input is extractor output, normalize it first"),
) -> None:
    """Render the fixed HMR report, or fill a custom template."""
    record = _load_record(record_path, raw)
    renderer = DocumentRenderer(RenderSettings(), ReviewSettings())
    options = RenderOptions.from_settings(
        renderer.settings,
        watermark=watermark,
        page_format=page_format,
        include_appendices=appendices,
    )
    mapping: dict[str, str] | None = None
    target = FIXED_LAYOUT
    try:
        if template is not None:
            target = load_template(template.read_bytes(), None, template.name)
            mapping = json.loads(mapping_path.read_text(encoding="utf-8")) if mapping_path else {}
            if suggest:
                catalogue = get_catalogue()
                for name in target.discover_fields():
                    guess = catalogue.suggest(name)
                    if name not in mapping and guess:
                        mapping[name] = guess
        document = renderer.render(record, target, mapping, options)
    except HMRError as exc:
        _fail(exc)

    output.write_bytes(document.content)
    summary = document.summary
    console.print(f"[green]Wrote[/green] {output} ({document.content_length} bytes, watermark {summary.watermark})")
    if summary.fields:
        table = Table(title="Template fields")
        table.add_column("Field", style="cyan")
        table.add_column("Path")
        table.add_column("Status")
        for resolution in summary.fields:
            table.add_row(resolution.field_name, resolution.data_path or "", resolution.status)
        console.print(table)


@app.command("fields")
def fields(template: Path = EXISTING_FILE) -> None:
    """List a template's fields and the data path each would map to."""
    try:
        document = load_template(template.read_bytes(), None, template.name)
        names = document.discover_fields()
    except HMRError as exc:
        _fail(exc)
    catalogue = get_catalogue()
    table = Table(title=f"{template.name} ({document.kind.value})")
    table.add_column("Field", style="cyan")
    table.add_column("Suggested path")
    for name in names:
        table.add_row(name, catalogue.suggest(name) or "")
    console.print(table)
    if not names:
        console.print("[yellow]No fields found[/yellow]")


@app.command("catalogue")
def catalogue_cmd(
    group: Optional[str] = typer.Option(None, "--group", help="Only this group (patient, summary, ...)"),
    max_items: int = typer.Option(1, "--max-items", min=1, help="List slots to show per collection"),
) -> None:
    """Print the data paths a template field can be mapped to."""
    table = Table(title="Data paths")
    table.add_column("Path", style="cyan")
    table.add_column("Label")
    for entry in get_catalogue(max_items).entries():
        if group and entry.group != group:
            continue
        table.add_row(entry.path, entry.label)
    console.print(table)


def main() -> None:  # pragma: no cover - CLI entry point
    app()


if __name__ == "__main__":  # pragma: no cover - CLI
    main()
