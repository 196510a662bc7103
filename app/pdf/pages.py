"""Page selection helpers and pypdf load/save wrappers shared by every transform."""

import io
import re

from pypdf import PdfReader, PdfWriter
from pypdf.errors import PdfReadError

from app.core.exceptions import TransformError, ValidationError

_RANGE_TOKEN = re.compile(r"^(\d+)\s*(?:-\s*(\d+))?$")


def parse_page_range(expr: str, total_pages: int) -> list[int]:
    """Resolve "1-3,5,7-9" against a document of `total_pages` pages.

    Returns 0-indexed positions, ascending and without duplicates. Pages outside
    the document are dropped; an expression that selects nothing is an error.
    """
    if not expr or not expr.strip():
        raise ValidationError("Page range required")
    selected: set[int] = set()
    for part in expr.split(","):
        token = part.strip()
        if not token:
            continue
        m = _RANGE_TOKEN.match(token)
        if not m:
            raise ValidationError(f"Invalid page range segment: {token!r}")
        start = int(m.group(1))
        end = int(m.group(2)) if m.group(2) else start
        for page in range(max(start, 1), min(end, total_pages) + 1):
            selected.add(page - 1)
    if not selected:
        raise ValidationError(
            f"Page range {expr!r} selects no pages (document has {total_pages})",
            details={"totalPages": total_pages},
        )
    return sorted(selected)


def select_pages(selector: str, total_pages: int) -> list[int]:
    """`all`, `odd`, `even` (1-indexed parity) or a page-range expression."""
    selector = (selector or "all").strip().lower()
    if selector == "all":
        return list(range(total_pages))
    if selector == "odd":
        return list(range(0, total_pages, 2))
    if selector == "even":
        return list(range(1, total_pages, 2))
    return parse_page_range(selector, total_pages)


def parse_order(expr: str, total_pages: int) -> list[int]:
    """Validate a permutation like "3,1,2,4" and return it 0-indexed."""
    try:
        order = [int(p.strip()) for p in expr.split(",") if p.strip()]
    except ValueError as e:
        raise ValidationError(f"Invalid page order: {expr!r}") from e
    if len(order) != total_pages:
        raise ValidationError(
            f"Order must include all {total_pages} pages",
            details={"totalPages": total_pages, "given": len(order)},
        )
    if sorted(order) != list(range(1, total_pages + 1)):
        raise ValidationError(
            "Order must list every page exactly once",
            details={"totalPages": total_pages},
        )
    return [p - 1 for p in order]


def open_pdf(data: bytes, password: str | None = None) -> PdfReader:
    """Load a PDF; unreadable input and locked documents are client errors."""
    try:
        reader = PdfReader(io.BytesIO(data))
    except (PdfReadError, ValueError, OSError) as e:
        raise TransformError(f"Could not read PDF: {e}") from e
    if reader.is_encrypted:
        if password is None:
            # Owner-password-only documents open with an empty user password
            if not reader.decrypt(""):
                raise TransformError("PDF is password protected")
        elif not reader.decrypt(password):
            raise ValidationError("Incorrect password")
    try:
        len(reader.pages)
    except (PdfReadError, ValueError, KeyError) as e:
        raise TransformError(f"Could not read PDF pages: {e}") from e
    return reader


def page_count(data: bytes) -> int:
    return len(open_pdf(data).pages)


def write_pdf(writer: PdfWriter) -> bytes:
    buf = io.BytesIO()
    writer.write(buf)
    return buf.getvalue()


def copy_pages(reader: PdfReader, indices: list[int]) -> bytes:
    """New document holding `indices` of `reader`, in the given order."""
    writer = PdfWriter()
    for i in indices:
        writer.add_page(reader.pages[i])
    return write_pdf(writer)


def stem(filename: str | None, default: str = "document") -> str:
    """File name without a trailing .pdf, for naming outputs."""
    if not filename:
        return default
    name = filename.rsplit("/", 1)[-1]
    if name.lower().endswith(".pdf"):
        name = name[:-4]
    return name or default
