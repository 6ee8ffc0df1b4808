"""Write laid-out report pages to PDF with pypdf.

Uses the standard 14 Type1 fonts so nothing is embedded. Text is encoded as
WinAnsi; characters outside it are replaced rather than failing the render.
"""

from __future__ import annotations

import io

from pypdf import PdfWriter
from pypdf.generic import DecodedStreamObject, DictionaryObject, NameObject

from hmr.reporting.layout import FONT_OBLIQUE, PAGE_SIZES, PageLayout, TextLine

_FONTS = {
    "/F1": "/Helvetica",
    "/F2": "/Helvetica-Bold",
    "/F3": "/Helvetica-Oblique",
}

FINAL_NOTE = "Final report"


def _pdf_escape(text: str) -> str:
    # PDF string literals use parentheses. Escape what could break them.
    return text.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")


def _encode(text: str) -> bytes:
    return text.encode("cp1252", errors="replace")


def _watermark_ops(text: str, width: float, height: float) -> list[bytes]:
    # 45 degree rotation: cos = sin = 0.7071.
    x = width * 0.22
    y = height * 0.3
    return [
        b"q\n0.85 g\nBT\n",
        f"/F2 96.00 Tf\n0.7071 0.7071 -0.7071 0.7071 {x:.2f} {y:.2f} Tm\n".encode("ascii"),
        b"(" + _encode(_pdf_escape(text.upper())) + b") Tj\n",
        b"ET\nQ\n",
    ]


def _build_content_stream(
    lines: list[TextLine],
    draw_ops: list[str],
    *,
    watermark: str | None,
    page_size: tuple[float, float],
) -> bytes:
    ops: list[bytes] = []
    if watermark:
        # Drawn first so body text sits on top.
        ops.extend(_watermark_ops(watermark, *page_size))
    ops.append(b"q\n")

    # Vector ops (lines, rectangles) live outside BT/ET.
    for op in draw_ops:
        ops.append(op.rstrip("\n").encode("ascii") + b"\n")

    ops.append(b"0 g\nBT\n")
    for line in lines:
        ops.append(f"/{line.font} {line.size:.2f} Tf\n".encode("ascii"))
        ops.append(f"1 0 0 1 {line.x:.2f} {line.y:.2f} Tm\n".encode("ascii"))
        ops.append(b"(" + _encode(_pdf_escape(line.text)) + b") Tj\n")
    ops.append(b"ET\nQ\n")
    return b"".join(ops)


def _footer(index: int, total: int, *, margin: float, size: float, final: bool) -> list[TextLine]:
    y = margin - size
    footer = [TextLine(FONT_OBLIQUE, size - 2, margin, y, f"Page {index} of {total}")]
    if final:
        footer.append(TextLine(FONT_OBLIQUE, size - 2, margin + 120, y, FINAL_NOTE))
    return footer


def write_pdf(
    pages: list[PageLayout],
    *,
    page_format: str = "A4",
    watermark: str | None = None,
    margin: float = 50.0,
    font_size: float = 10.0,
) -> bytes:
    """Serialize pages; ``watermark="Draft"`` stamps every page, "Final" adds a footer note."""
    width, height = PAGE_SIZES[page_format]
    writer = PdfWriter()

    font_refs = {}
    for alias, base in _FONTS.items():
        font = DictionaryObject(
            {
                NameObject("/Type"): NameObject("/Font"),
                NameObject("/Subtype"): NameObject("/Type1"),
                NameObject("/BaseFont"): NameObject(base),
                NameObject("/Encoding"): NameObject("/WinAnsiEncoding"),
            }
        )
        font_refs[NameObject(alias)] = writer._add_object(font)

    stamp = watermark if watermark and watermark.lower() == "draft" else None
    final = bool(watermark) and watermark.lower() == "final"
    total = len(pages)
    for index, layout_page in enumerate(pages, start=1):
        page = writer.add_blank_page(width=width, height=height)
        resources = DictionaryObject()
        resources[NameObject("/Font")] = DictionaryObject(font_refs)
        page[NameObject("/Resources")] = resources

        lines = layout_page.lines + _footer(index, total, margin=margin, size=font_size, final=final)
        stream = DecodedStreamObject()
        stream.set_data(
            _build_content_stream(lines, layout_page.draw_ops, watermark=stamp, page_size=(width, height))
        )
        page[NameObject("/Contents")] = writer._add_object(stream)

    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


__all__ = ["FINAL_NOTE", "write_pdf"]
