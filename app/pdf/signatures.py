"""Visible signatures, initials, date stamps and certificate boxes."""

import base64
import hashlib
import io
import re
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from reportlab.lib.colors import Color
from reportlab.lib.utils import ImageReader
from reportlab.pdfbase.pdfmetrics import stringWidth

from app.core.exceptions import TransformError, ValidationError
from app.pdf.drawing import parse_color, stamp_pages
from app.pdf.pages import open_pdf, write_pdf

_DATA_URL_PREFIX = re.compile(r"^data:image/\w+;base64,")

NAVY = (0, 0, 128)
CERT_BLUE = Color(0.2, 0.4, 0.8)


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class SignatureSpec(_CamelModel):
    type: Literal["draw", "type", "image"]
    data: str
    x: float
    y: float
    width: float = 150
    height: float = 50
    page: int = 1
    font_size: float = Field(24, alias="fontSize")
    color: str = "#000080"
    include_date: bool = Field(False, alias="includeDate")
    include_time: bool = Field(False, alias="includeTime")
    name: str | None = None
    title: str | None = None
    reason: str | None = None


class InitialsSpec(_CamelModel):
    text: str
    x: float
    y: float
    page: int = 1
    font_size: float = Field(14, alias="fontSize")
    color: str = "#000080"


def hash_document(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def format_date(now: datetime, fmt: str = "full", include_time: bool = False) -> str:
    """US-style date: short (1/5/26), full (Monday, January 5, 2026) or iso (2026-01-05)."""
    if fmt == "short":
        text = f"{now.month}/{now.day}/{now:%y}"
    elif fmt == "iso":
        text = now.date().isoformat()
    else:
        text = f"{now:%A}, {now:%B} {now.day}, {now.year}"
    if include_time:
        text += " at " + now.strftime("%I:%M %p")
    return text


def decode_image(data: str) -> ImageReader:
    """Base64 or data-URL PNG/JPEG to something reportlab can draw."""
    try:
        raw = base64.b64decode(_DATA_URL_PREFIX.sub("", data.strip()), validate=False)
        return ImageReader(io.BytesIO(raw))
    except Exception as e:  # reportlab re-raises PIL errors with varying types
        raise ValidationError(f"Invalid signature image: {e}") from e


def _page_index(page: int, total: int) -> int:
    if not 1 <= page <= total:
        raise TransformError(f"Invalid page number: {page}")
    return page - 1


def sign(data: bytes, spec: SignatureSpec, now: datetime | None = None) -> bytes:
    reader = open_pdf(data)
    index = _page_index(spec.page, len(reader.pages))
    now = now or datetime.now()
    image = decode_image(spec.data) if spec.type in ("draw", "image") and spec.data else None
    ink = parse_color(spec.color, default=NAVY)

    def draw(c, width, height, i):
        if image is not None:
            c.drawImage(image, spec.x, spec.y, width=spec.width, height=spec.height, mask="auto")
        elif spec.type == "type":
            c.setFont("Times-Italic", spec.font_size)
            c.setFillColor(ink)
            c.drawString(spec.x, spec.y, spec.data)

        line_y = spec.y - 15
        c.setStrokeColor(Color(0.4, 0.4, 0.4))
        c.setLineWidth(0.5)
        c.line(spec.x, line_y, spec.x + spec.width, line_y)

        y = line_y - 12
        if spec.name:
            c.setFont("Helvetica", 9)
            c.setFillColor(Color(0.3, 0.3, 0.3))
            c.drawString(spec.x, y, spec.name)
            y -= 11
        if spec.title:
            c.setFont("Helvetica", 8)
            c.setFillColor(Color(0.4, 0.4, 0.4))
            c.drawString(spec.x, y, spec.title)
            y -= 11
        c.setFillColor(Color(0.5, 0.5, 0.5))
        if spec.include_date:
            stamp = f"{now:%B} {now.day}, {now.year}"
            if spec.include_time:
                stamp += " " + now.strftime("%I:%M %p")
            c.setFont("Helvetica", 8)
            c.drawString(spec.x, y, f"Signed: {stamp}")
            y -= 11
        if spec.reason:
            c.setFont("Helvetica", 7)
            c.drawString(spec.x, y, f"Reason: {spec.reason}")

    return write_pdf(stamp_pages(reader, [index], draw))


def add_initials(data: bytes, marks: list[InitialsSpec]) -> tuple[bytes, int]:
    """Circled initials at each location; marks on pages the document lacks are skipped."""
    if not marks:
        raise ValidationError("At least one initials location required")
    reader = open_pdf(data)
    total = len(reader.pages)
    by_page: dict[int, list[InitialsSpec]] = {}
    for mark in marks:
        if 1 <= mark.page <= total:
            by_page.setdefault(mark.page - 1, []).append(mark)
    if not by_page:
        raise ValidationError(f"No initials location falls within the document's {total} pages")

    def draw(c, width, height, i):
        for mark in by_page[i]:
            ink = parse_color(mark.color, default=NAVY)
            text_width = stringWidth(mark.text, "Times-Bold", mark.font_size)
            radius = max(text_width, mark.font_size) / 2 + 5
            c.setStrokeColor(ink)
            c.setLineWidth(1)
            c.circle(mark.x + text_width / 2, mark.y + mark.font_size / 3, radius, stroke=1, fill=0)
            c.setFont("Times-Bold", mark.font_size)
            c.setFillColor(ink)
            c.drawString(mark.x, mark.y, mark.text)

    placed = sum(len(v) for v in by_page.values())
    return write_pdf(stamp_pages(reader, sorted(by_page), draw)), placed


def add_date_stamp(
    data: bytes,
    x: float = 400,
    y: float = 50,
    page: int = 1,
    fmt: str = "full",
    include_time: bool = False,
    now: datetime | None = None,
) -> tuple[bytes, str]:
    """Boxed date at (x, y). Returns (pdf, the text that was stamped)."""
    reader = open_pdf(data)
    index = _page_index(page, len(reader.pages))
    text = format_date(now or datetime.now(), fmt, include_time)
    padding = 8

    def draw(c, width, height, i):
        text_width = stringWidth(text, "Helvetica", 10)
        c.setStrokeColor(Color(0.4, 0.4, 0.4))
        c.setFillColor(Color(0.98, 0.98, 0.98))
        c.setLineWidth(0.5)
        c.rect(x - padding, y - 5, text_width + padding * 2, 20, stroke=1, fill=1)
        c.setFont("Helvetica", 10)
        c.setFillColor(Color(0.2, 0.2, 0.2))
        c.drawString(x, y, text)

    return write_pdf(stamp_pages(reader, [index], draw)), text


def stamp_certificate(
    data: bytes,
    certificate_id: str,
    signer_name: str,
    reason: str,
    issued_at: datetime,
    x: float = 400,
    y: float = 100,
    page: int = 1,
) -> bytes:
    """Draw the "DIGITALLY CERTIFIED" box carrying the certificate id."""
    reader = open_pdf(data)
    index = _page_index(page, len(reader.pages))
    box_w, box_h = 180, 80
    reason_text = reason if len(reason) <= 30 else reason[:27] + "..."

    def draw(c, width, height, i):
        c.setStrokeColor(CERT_BLUE)
        c.setFillColor(Color(0.95, 0.97, 1))
        c.setLineWidth(2)
        c.rect(x, y, box_w, box_h, stroke=1, fill=1)

        c.setFont("Helvetica-Bold", 10)
        c.setFillColor(CERT_BLUE)
        c.drawString(x + 10, y + box_h - 18, "DIGITALLY CERTIFIED")
        c.setStrokeColor(Color(0.6, 0.7, 0.9))
        c.setLineWidth(0.5)
        c.line(x + 10, y + box_h - 22, x + box_w - 10, y + box_h - 22)

        c.setFont("Helvetica", 8)
        c.setFillColor(Color(0.3, 0.3, 0.3))
        c.drawString(x + 10, y + box_h - 38, f"Signed by: {signer_name[:25]}")
        c.drawString(x + 10, y + box_h - 50, f"Date: {issued_at:%m/%d/%Y}")
        c.drawString(x + 10, y + box_h - 62, f"Reason: {reason_text}")

        c.setFont("Helvetica", 6)
        c.setFillColor(Color(0.5, 0.5, 0.5))
        c.drawString(x + 10, y + 8, f"Cert ID: {certificate_id}")

    return write_pdf(stamp_pages(reader, [index], draw))
