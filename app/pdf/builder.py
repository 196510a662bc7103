"""Export an editor document to PDF with reportlab."""

import base64
import io
import re
from xml.sax.saxutils import escape

from reportlab.lib.colors import Color
from reportlab.lib.enums import TA_CENTER, TA_JUSTIFY, TA_LEFT, TA_RIGHT
from reportlab.lib.pagesizes import A4, LEGAL, LETTER, TABLOID, landscape
from reportlab.lib.styles import ParagraphStyle
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas
from reportlab.platypus import Paragraph

from app.core.logging import get_logger
from app.pdf.document_model import (
    EditorDocument,
    ImageElement,
    LineElement,
    ShapeElement,
    TextElement,
)
from app.pdf.drawing import parse_color

log = get_logger(__name__)

PAGE_SIZES = {"letter": LETTER, "a4": A4, "legal": LEGAL, "tabloid": TABLOID}
FOOTER_GREY = Color(128 / 255, 128 / 255, 128 / 255)

_ALIGN = {"left": TA_LEFT, "center": TA_CENTER, "right": TA_RIGHT, "justify": TA_JUSTIFY}
_FONTS = {
    "helvetica": ("Helvetica", "Helvetica-Bold"),
    "arial": ("Helvetica", "Helvetica-Bold"),
    "times": ("Times-Roman", "Times-Bold"),
    "times new roman": ("Times-Roman", "Times-Bold"),
    "courier": ("Courier", "Courier-Bold"),
}
_DATA_URL = re.compile(r"^data:image/[\w.+-]+;base64,(.*)$", re.DOTALL)


def page_dimensions(doc: EditorDocument) -> tuple[float, float]:
    size = PAGE_SIZES[doc.settings.page_size]
    return landscape(size) if doc.settings.orientation == "landscape" else size


def _font(element: TextElement) -> str:
    regular, bold = _FONTS.get(element.font_family.lower(), _FONTS["helvetica"])
    return bold if element.font_weight == "bold" else regular


def _rotate_about_centre(c: canvas.Canvas, x: float, y: float, w: float, h: float, degrees: float) -> None:
    # Editor rotation is clockwise; reportlab rotates counter-clockwise
    if degrees:
        c.translate(x + w / 2, y + h / 2)
        c.rotate(-degrees)
        c.translate(-(x + w / 2), -(y + h / 2))


def _draw_text(c: canvas.Canvas, el: TextElement, page_h: float) -> None:
    if not el.content:
        return
    style = ParagraphStyle(
        f"el-{el.id}",
        fontName=_font(el),
        fontSize=el.font_size,
        leading=el.font_size * 1.2,
        textColor=parse_color(el.color),
        alignment=_ALIGN[el.align],
    )
    para = Paragraph(escape(el.content).replace("\n", "<br/>"), style)
    _, used_h = para.wrap(el.width, page_h)
    para.drawOn(c, el.x, page_h - el.y - used_h)


def _image_reader(url: str | None) -> ImageReader | None:
    if not url:
        return None
    m = _DATA_URL.match(url.strip())
    if not m:
        # Remote URLs are not fetched during export
        return None
    try:
        return ImageReader(io.BytesIO(base64.b64decode(m.group(1))))
    except Exception as e:  # reportlab re-raises PIL errors with varying types
        log.info("export_image_unreadable", error=str(e))
        return None


def _draw_image(c: canvas.Canvas, el: ImageElement, page_h: float) -> None:
    x, y, w, h = el.x, page_h - el.y - el.height, el.width, el.height
    reader = _image_reader(el.image_url)
    if reader is None:
        c.setFillColor(Color(240 / 255, 240 / 255, 240 / 255))
        c.rect(x, y, w, h, stroke=0, fill=1)
        c.setFont("Helvetica", 10)
        c.setFillColor(FOOTER_GREY)
        c.drawCentredString(x + w / 2, y + h / 2, "Image")
        return
    if el.image_fit == "fill":
        c.drawImage(reader, x, y, width=w, height=h, mask="auto")
        return
    iw, ih = reader.getSize()
    scale = min(w / iw, h / ih) if el.image_fit == "contain" else max(w / iw, h / ih)
    dw, dh = iw * scale, ih * scale
    if el.image_fit == "cover":
        path = c.beginPath()
        path.rect(x, y, w, h)
        c.clipPath(path, stroke=0, fill=0)
    c.drawImage(reader, x + (w - dw) / 2, y + (h - dh) / 2, width=dw, height=dh, mask="auto")


def _draw_shape(c: canvas.Canvas, el: ShapeElement, page_h: float) -> None:
    x, y, w, h = el.x, page_h - el.y - el.height, el.width, el.height
    c.setFillColor(parse_color(el.fill, default=(204, 204, 204)))
    c.setStrokeColor(parse_color(el.stroke))
    c.setLineWidth(el.stroke_width)
    stroke = 1 if el.stroke_width > 0 else 0
    if el.shape == "circle":
        r = min(w, h) / 2
        # Anchored at the element's top-left corner
        c.circle(x + r, y + h - r, r, stroke=stroke, fill=1)
    elif el.shape == "triangle":
        path = c.beginPath()
        path.moveTo(x + w / 2, y + h)
        path.lineTo(x, y)
        path.lineTo(x + w, y)
        path.close()
        c.drawPath(path, stroke=stroke, fill=1)
    else:
        c.rect(x, y, w, h, stroke=stroke, fill=1)


def _draw_line(c: canvas.Canvas, el: LineElement, page_h: float) -> None:
    c.setStrokeColor(parse_color(el.stroke))
    c.setLineWidth(el.stroke_width)
    c.line(el.x, page_h - el.y, el.x + el.width, page_h - el.y - el.height)


_RENDERERS = {
    "text": _draw_text,
    "image": _draw_image,
    "shape": _draw_shape,
    "line": _draw_line,
}


def render_document(doc: EditorDocument) -> bytes:
    """Draw every page; elements in ascending z_index, ties in insertion order."""
    width, height = page_dimensions(doc)
    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=(width, height))
    c.setTitle(doc.title)
    total = len(doc.pages)
    for number, page in enumerate(doc.pages, start=1):
        # sorted() is stable
        for el in sorted(page.elements, key=lambda e: e.z_index):
            c.saveState()
            c.setFillAlpha(el.opacity)
            c.setStrokeAlpha(el.opacity)
            _rotate_about_centre(c, el.x, height - el.y - el.height, el.width, el.height, el.rotation)
            _RENDERERS[el.type](c, el, height)
            c.restoreState()
        if total > 1:
            c.setFont("Helvetica", 10)
            c.setFillColor(FOOTER_GREY)
            c.drawCentredString(width / 2, 30, f"Page {number} of {total}")
        c.showPage()
    c.save()
    return buf.getvalue()
