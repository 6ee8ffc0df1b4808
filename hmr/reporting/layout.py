"""Line-markup layout for the fixed HMR report.

The report template renders to a small line-oriented markup; this module
turns that markup into positioned text and vector ops, page by page. Lines
starting with ``@`` are directives:

    @title Text                 large bold line
    @subtitle Text              italic line under the title
    @heading Text               section heading with a rule beneath
    @subheading Text            bold paragraph lead
    @columns 25,15,30,30        column widths (percent) for following rows
    @th a | b | c               table header row (bold, shaded)
    @tr a | b | c               table row; ``<br>`` breaks a line inside a cell
    @kv Label | Value | ...     label/value grid row (labels bold)
    @rule                       horizontal divider
    @space                      half a line of vertical space
    @pagebreak                  start a new page

Any other non-blank line is a wrapped paragraph; ``- `` starts a bullet.
"""

from __future__ import annotations

import textwrap
from dataclasses import dataclass, field

PAGE_SIZES: dict[str, tuple[float, float]] = {
    "A4": (595.28, 841.89),
    "Letter": (612.0, 792.0),
}

FONT_REGULAR = "F1"
FONT_BOLD = "F2"
FONT_OBLIQUE = "F3"

# Helvetica averages a little over half an em per character.
_CHAR_WIDTH_EM = 0.52
_CELL_PAD = 3.0


@dataclass(frozen=True)
class TextLine:
    font: str
    size: float
    x: float
    y: float
    text: str


@dataclass
class PageLayout:
    lines: list[TextLine] = field(default_factory=list)
    draw_ops: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class LayoutStyle:
    page_format: str = "A4"
    margin: float = 50.0
    body_size: float = 10.0

    @property
    def leading(self) -> float:
        return round(self.body_size * 1.3, 2)


def max_chars(width: float, size: float) -> int:
    return max(8, int(width / (size * _CHAR_WIDTH_EM)))


def wrap(text: str, width: float, size: float) -> list[str]:
    out: list[str] = []
    for part in text.split("<br>"):
        part = part.strip()
        if not part:
            out.append("")
            continue
        out.extend(textwrap.wrap(part, width=max_chars(width, size), break_on_hyphens=False) or [""])
    return out


class _Cursor:
    def __init__(self, style: LayoutStyle) -> None:
        self.style = style
        self.width, self.height = PAGE_SIZES[style.page_format]
        self.x0 = style.margin
        self.x1 = self.width - style.margin
        # Room for the footer.
        self.bottom = style.margin + style.body_size * 2
        self.pages: list[PageLayout] = []
        self.columns: list[float] = [50.0, 50.0]
        self.new_page()

    @property
    def page(self) -> PageLayout:
        return self.pages[-1]

    @property
    def content_width(self) -> float:
        return self.x1 - self.x0

    def new_page(self) -> None:
        self.pages.append(PageLayout())
        self.y = self.height - self.style.margin

    def ensure(self, needed: float) -> None:
        if self.y - needed < self.bottom and self.page.lines:
            self.new_page()

    def text(self, font: str, size: float, text: str, x: float | None = None, advance: float | None = None) -> None:
        self.page.lines.append(TextLine(font, size, float(self.x0 if x is None else x), float(self.y), text))
        self.y -= advance if advance is not None else size * 1.3

    def rule(self, gray: float = 0.75) -> None:
        y = self.y + self.style.body_size * 0.6
        self.page.draw_ops.append(f"{gray:.2f} G 0.8 w {self.x0:.2f} {y:.2f} m {self.x1:.2f} {y:.2f} l S")


def _split_cells(payload: str) -> list[str]:
    return [cell.strip() for cell in payload.split("|")]


def _row(cursor: _Cursor, cells: list[str], *, header: bool) -> None:
    style = cursor.style
    size = style.body_size - 1
    leading = size * 1.3
    widths = [cursor.content_width * pct / 100.0 for pct in cursor.columns]
    if len(cells) < len(widths):
        cells = cells + [""] * (len(widths) - len(cells))
    wrapped = [wrap(cell, w - 2 * _CELL_PAD, size) for cell, w in zip(cells, widths)]
    height = max(len(lines) for lines in wrapped) * leading + 2 * _CELL_PAD
    cursor.ensure(height)

    top = cursor.y + leading - _CELL_PAD
    x = cursor.x0
    if header:
        cursor.page.draw_ops.append(
            f"0.92 g {cursor.x0:.2f} {top - height:.2f} {cursor.content_width:.2f} {height:.2f} re f 0 g"
        )
    for lines, w in zip(wrapped, widths):
        cursor.page.draw_ops.append(f"0.6 G 0.5 w {x:.2f} {top - height:.2f} {w:.2f} {height:.2f} re S")
        font = FONT_BOLD if header else FONT_REGULAR
        y = cursor.y - _CELL_PAD
        for line in lines:
            if line:
                cursor.page.lines.append(TextLine(font, size, x + _CELL_PAD, y, line))
            y -= leading
        x += w
    cursor.y -= height


def _kv_row(cursor: _Cursor, cells: list[str]) -> None:
    size = cursor.style.body_size - 1
    leading = size * 1.3
    pairs = [(cells[i], cells[i + 1] if i + 1 < len(cells) else "") for i in range(0, len(cells), 2)]
    pair_width = cursor.content_width / max(1, len(pairs))
    label_width = pair_width * 0.4
    wrapped = [(wrap(label, label_width - _CELL_PAD, size), wrap(value, pair_width - label_width - _CELL_PAD, size)) for label, value in pairs]
    height = max(max(len(a), len(b)) for a, b in wrapped) * leading + _CELL_PAD
    cursor.ensure(height)
    for idx, (labels, values) in enumerate(wrapped):
        x = cursor.x0 + idx * pair_width
        y = cursor.y
        for line in labels:
            cursor.page.lines.append(TextLine(FONT_BOLD, size, x, y, line))
            y -= leading
        y = cursor.y
        for line in values:
            cursor.page.lines.append(TextLine(FONT_REGULAR, size, x + label_width, y, line))
            y -= leading
    cursor.y -= height


def _paragraph(cursor: _Cursor, text: str, *, font: str = FONT_REGULAR, indent: float = 0.0) -> None:
    style = cursor.style
    bullet = text.startswith("- ")
    body = text[2:] if bullet else text
    hang = 10.0 if bullet else 0.0
    lines = wrap(body, cursor.content_width - indent - hang, style.body_size)
    for idx, line in enumerate(lines):
        cursor.ensure(style.leading)
        if bullet and idx == 0:
            cursor.text(font, style.body_size, "-", x=cursor.x0 + indent, advance=0)
        cursor.text(font, style.body_size, line, x=cursor.x0 + indent + hang, advance=style.leading)


def layout(markup: str, style: LayoutStyle | None = None) -> list[PageLayout]:
    """Lay out report markup into pages."""
    style = style or LayoutStyle()
    if style.page_format not in PAGE_SIZES:
        raise ValueError(f"Unknown page format: {style.page_format}")
    cursor = _Cursor(style)
    size = style.body_size

    for raw in markup.split("\n"):
        line = raw.rstrip()
        if not line.strip():
            continue
        # Directives start in the first column; indented text is always prose.
        if not line.startswith("@"):
            _paragraph(cursor, line.strip())
            continue

        directive, _, payload = line[1:].partition(" ")
        payload = payload.strip()
        if directive == "title":
            cursor.ensure(size * 2.4)
            cursor.text(FONT_BOLD, size * 1.8, payload, advance=size * 2.2)
        elif directive == "subtitle":
            cursor.text(FONT_OBLIQUE, size * 1.1, payload, advance=size * 1.8)
        elif directive == "heading":
            cursor.ensure(size * 4)
            cursor.y -= size * 0.6
            cursor.text(FONT_BOLD, size * 1.25, payload, advance=size * 1.0)
            cursor.rule(gray=0.4)
            cursor.y -= size * 0.6
        elif directive == "subheading":
            cursor.ensure(size * 3)
            cursor.y -= size * 0.3
            _paragraph(cursor, payload, font=FONT_BOLD)
        elif directive == "columns":
            widths = [float(part) for part in payload.split(",") if part.strip()]
            total = sum(widths) or 1.0
            cursor.columns = [w * 100.0 / total for w in widths]
        elif directive == "th":
            _row(cursor, _split_cells(payload), header=True)
        elif directive == "tr":
            _row(cursor, _split_cells(payload), header=False)
        elif directive == "kv":
            _kv_row(cursor, _split_cells(payload))
        elif directive == "rule":
            cursor.rule()
            cursor.y -= size * 0.5
        elif directive == "space":
            cursor.y -= size * 0.6
        elif directive == "pagebreak":
            if cursor.page.lines:
                cursor.new_page()
        else:
            raise ValueError(f"Unknown layout directive: @{directive}")

    return cursor.pages


__all__ = ["LayoutStyle", "PAGE_SIZES", "PageLayout", "TextLine", "layout", "wrap"]
