"""Overlay drawing: render with reportlab, stamp onto existing pages with pypdf."""

import io
import re
from typing import Callable

from pypdf import PdfReader, PdfWriter, Transformation
from reportlab.lib.colors import Color
from reportlab.pdfgen import canvas

_HEX_COLOR = re.compile(r"^#?([a-f\d]{2})([a-f\d]{2})([a-f\d]{2})$", re.IGNORECASE)

GREY = Color(0.4, 0.4, 0.4)

# (canvas, page width, page height, 0-indexed page number)
DrawFn = Callable[[canvas.Canvas, float, float, int], None]


def parse_color(value: str | None, default: tuple[int, int, int] = (0, 0, 0)) -> Color:
    """`#rrggbb` (hash optional) to a reportlab colour; anything else gives `default`."""
    m = _HEX_COLOR.match((value or "").strip())
    r, g, b = (int(m.group(i), 16) for i in (1, 2, 3)) if m else default
    return Color(r / 255, g / 255, b / 255)


def render_overlay(width: float, height: float, draw: Callable[[canvas.Canvas], None]):
    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=(width, height))
    draw(c)
    c.showPage()
    c.save()
    buf.seek(0)
    return PdfReader(buf).pages[0]


def stamp_pages(reader: PdfReader, indices: list[int], draw: DrawFn) -> PdfWriter:
    """Copy the document and draw over each page in `indices`, leaving content beneath intact."""
    writer = PdfWriter(clone_from=reader)
    for i in indices:
        page = writer.pages[i]
        box = page.mediabox
        width, height = float(box.width), float(box.height)
        overlay = render_overlay(width, height, lambda c: draw(c, width, height, i))
        page.merge_transformed_page(
            overlay,
            Transformation().translate(float(box.left), float(box.bottom)),
        )
    return writer
