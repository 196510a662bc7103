"""Page-level transforms: merge, split, rotate, delete, reorder, compress, protect."""

import io
import zipfile
from dataclasses import dataclass

from pypdf import PdfWriter
from reportlab.pdfbase.pdfmetrics import stringWidth

from app.core.exceptions import TransformError, ValidationError
from app.core.logging import get_logger
from app.pdf.drawing import GREY, parse_color, stamp_pages
from app.pdf.pages import copy_pages, open_pdf, parse_order, parse_page_range, select_pages, write_pdf

log = get_logger(__name__)

ROTATION_ANGLES = (90, 180, 270, -90, -180, -270)
WATERMARK_POSITIONS = ("center", "diagonal", "header", "footer")
PAGE_NUMBER_POSITIONS = ("bottom-center", "bottom-left", "bottom-right", "top-center", "top-left", "top-right")
SPLIT_MODES = ("all", "range", "single", "every-n")
COMPRESSION_QUALITY = {"low": 50, "medium": 75, "high": 90}

PAGE_NUMBER_FONT_SIZE = 10


@dataclass(frozen=True)
class SplitResult:
    content: bytes
    archive: bool  # True when content is a ZIP of several PDFs
    parts: int
    total_pages: int


def merge(documents: list[bytes]) -> tuple[bytes, int]:
    """Concatenate every page of every document in input order. Returns (pdf, total pages)."""
    if len(documents) < 2:
        raise ValidationError("At least 2 PDF files required for merge")
    writer = PdfWriter()
    for idx, data in enumerate(documents):
        try:
            reader = open_pdf(data)
        except TransformError as e:
            raise TransformError(f"PDF #{idx + 1}: {e.message}") from e
        for page in reader.pages:
            writer.add_page(page)
    total = len(writer.pages)
    log.debug("pdf_merged", inputs=len(documents), total_pages=total)
    return write_pdf(writer), total


def extract_pages(data: bytes, range_expr: str) -> tuple[bytes, int, int]:
    """Pages named by `range_expr`, always in ascending order. Returns (pdf, extracted, total)."""
    reader = open_pdf(data)
    total = len(reader.pages)
    indices = parse_page_range(range_expr, total)
    return copy_pages(reader, indices), len(indices), total


def split(
    data: bytes,
    mode: str = "all",
    range_expr: str | None = None,
    page_number: int = 1,
    every_n: int = 1,
) -> SplitResult:
    """Split a document.

    `single` and `range` return one PDF; `all` (one file per page) and `every-n`
    (chunks of n pages) return a ZIP archive.
    """
    reader = open_pdf(data)
    total = len(reader.pages)
    if mode == "single":
        if not 1 <= page_number <= total:
            raise ValidationError(f"Page {page_number} out of range (document has {total})")
        return SplitResult(copy_pages(reader, [page_number - 1]), archive=False, parts=1, total_pages=total)
    if mode == "range":
        indices = parse_page_range(range_expr or "", total)
        return SplitResult(copy_pages(reader, indices), archive=False, parts=1, total_pages=total)
    if mode not in ("all", "every-n"):
        raise ValidationError(f"Unknown split mode: {mode}")

    chunk = 1 if mode == "all" else every_n
    if chunk < 1:
        raise ValidationError("everyN must be at least 1")
    buf = io.BytesIO()
    parts = 0
    with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as archive:
        for start in range(0, total, chunk):
            end = min(start + chunk, total)
            name = f"page_{start + 1}.pdf" if end - start == 1 else f"pages_{start + 1}-{end}.pdf"
            archive.writestr(name, copy_pages(reader, list(range(start, end))))
            parts += 1
    return SplitResult(buf.getvalue(), archive=True, parts=parts, total_pages=total)


def rotate(data: bytes, angle: int, selector: str = "all") -> tuple[bytes, int]:
    """Add `angle` to the rotation of the selected pages. Returns (pdf, pages rotated)."""
    if angle not in ROTATION_ANGLES:
        raise ValidationError("Invalid rotation angle. Use 90, 180, or 270 degrees")
    reader = open_pdf(data)
    indices = select_pages(selector, len(reader.pages))
    writer = PdfWriter(clone_from=reader)
    for i in indices:
        page = writer.pages[i]
        page.rotation = (page.rotation + angle) % 360
    return write_pdf(writer), len(indices)


def delete_pages(data: bytes, range_expr: str) -> tuple[bytes, int, int]:
    """Drop the pages named by `range_expr`. Returns (pdf, deleted, remaining)."""
    reader = open_pdf(data)
    total = len(reader.pages)
    doomed = set(parse_page_range(range_expr, total))
    keep = [i for i in range(total) if i not in doomed]
    if not keep:
        raise ValidationError("Cannot delete all pages")
    return copy_pages(reader, keep), len(doomed), len(keep)


def reorder_pages(data: bytes, order_expr: str) -> tuple[bytes, int]:
    reader = open_pdf(data)
    total = len(reader.pages)
    order = parse_order(order_expr, total)
    return copy_pages(reader, order), total


def compress(data: bytes, quality: str = "medium") -> bytes:
    """Recompress content streams and images, drop duplicate objects and metadata."""
    if quality not in COMPRESSION_QUALITY:
        raise ValidationError("Quality must be low, medium or high")
    reader = open_pdf(data)
    writer = PdfWriter()
    for page in reader.pages:
        writer.add_page(page)
    jpeg_quality = COMPRESSION_QUALITY[quality]
    for page in writer.pages:
        for image in page.images:
            try:
                image.replace(image.image, quality=jpeg_quality)
            except (OSError, ValueError, NotImplementedError, KeyError) as e:
                log.debug("image_recompress_skipped", image=image.name, error=str(e))
        page.compress_content_streams()
    writer.compress_identical_objects(remove_identicals=True, remove_orphans=True)
    writer.add_metadata({"/Producer": "PDF Builder Pro"})
    return write_pdf(writer)


def protect(data: bytes, password: str, owner_password: str | None = None) -> bytes:
    """Encrypt with AES-256; the owner password defaults to the user password."""
    if not password:
        raise ValidationError("Password required")
    reader = open_pdf(data)
    writer = PdfWriter(clone_from=reader)
    writer.encrypt(user_password=password, owner_password=owner_password or password, algorithm="AES-256")
    return write_pdf(writer)


def unlock(data: bytes, password: str) -> bytes:
    """Remove encryption from a document, given its password."""
    if not password:
        raise ValidationError("Password required")
    reader = open_pdf(data, password=password)
    writer = PdfWriter(clone_from=reader)
    return write_pdf(writer)


def add_page_numbers(
    data: bytes,
    position: str = "bottom-center",
    fmt: str = "Page {n} of {total}",
    start_number: int = 1,
) -> tuple[bytes, int]:
    """Number every page; `{n}` and `{total}` in `fmt` are substituted."""
    if position not in PAGE_NUMBER_POSITIONS:
        raise ValidationError(f"Invalid position: {position}")
    reader = open_pdf(data)
    total = len(reader.pages)
    last = total + start_number - 1

    def draw(c, width, height, index):
        text = fmt.replace("{n}", str(start_number + index)).replace("{total}", str(last))
        text_width = stringWidth(text, "Helvetica", PAGE_NUMBER_FONT_SIZE)
        vertical, horizontal = position.split("-")
        y = 30 if vertical == "bottom" else height - 30
        if horizontal == "left":
            x = 40
        elif horizontal == "right":
            x = width - text_width - 40
        else:
            x = width / 2 - text_width / 2
        c.setFont("Helvetica", PAGE_NUMBER_FONT_SIZE)
        c.setFillColor(GREY)
        c.drawString(x, y, text)

    writer = stamp_pages(reader, list(range(total)), draw)
    return write_pdf(writer), total


def watermark(
    data: bytes,
    text: str = "CONFIDENTIAL",
    position: str = "center",
    opacity: float = 0.3,
    font_size: int = 48,
    color: str = "#888888",
    selector: str = "all",
) -> tuple[bytes, int]:
    """Draw `text` over the selected pages. Returns (pdf, pages watermarked)."""
    if not text:
        raise ValidationError("Watermark text required")
    if position not in WATERMARK_POSITIONS:
        raise ValidationError(f"Invalid position: {position}")
    if not 0 <= opacity <= 1:
        raise ValidationError("Opacity must be between 0 and 1")
    reader = open_pdf(data)
    indices = select_pages(selector, len(reader.pages))
    fill = parse_color(color, default=(128, 128, 128))

    def draw(c, width, height, index):
        c.saveState()
        c.setFont("Helvetica", font_size)
        c.setFillColor(fill)
        c.setFillAlpha(opacity)
        if position == "diagonal":
            c.translate(width / 2, height / 2)
            c.rotate(45)
            c.drawCentredString(0, 0, text)
        elif position == "header":
            c.drawCentredString(width / 2, height - 50, text)
        elif position == "footer":
            c.drawCentredString(width / 2, 30, text)
        else:
            c.drawCentredString(width / 2, height / 2, text)
        c.restoreState()

    writer = stamp_pages(reader, indices, draw)
    return write_pdf(writer), len(indices)
