"""Operation registry: name -> credit cost and handler. Immutable after import."""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

from app.core.exceptions import InvalidOperationError
from app.services.handlers import HANDLERS, ParseFn, RunFn

CREDIT_COSTS: Mapping[str, int] = MappingProxyType(
    {
        "merge": 2,
        "split": 2,
        "rotate": 1,
        "compress": 3,
        "watermark": 2,
        "protect": 2,
        "unlock": 3,
        "extract_pages": 1,
        "add_page_numbers": 1,
        "delete_pages": 1,
        "reorder_pages": 1,
        "sign": 3,
        "add_initials": 2,
        "add_date_stamp": 1,
        "add_certificate": 5,
        "verify": 1,
        "fill": 3,
        "create_form": 5,
        "flatten_form": 2,
        "extract_fields": 1,
        "images-to-pdf": 2,
        "html-to-pdf": 3,
        "markdown-to-pdf": 2,
        "text-to-pdf": 1,
    }
)

# Short names clients of the forms endpoint used
ALIASES: Mapping[str, str] = MappingProxyType({"create": "create_form", "flatten": "flatten_form"})

USAGE: dict[str, dict[str, Any]] = {
    "merge": {
        "description": "Combine multiple PDFs into one",
        "parameters": ["files (multiple)"],
        "example": "FormData with files[]",
    },
    "split": {
        "description": "Split PDF into separate pages or ranges",
        "parameters": ["file", "mode (all/range/single/every-n)", "range", "pageNumber", "everyN"],
        "example": "mode=range&range=1-3,5,7-9",
    },
    "rotate": {
        "description": "Rotate PDF pages",
        "parameters": ["file", "angle (90/180/270, negative allowed)", "pages (all/odd/even/1,3,5)"],
        "example": "angle=90&pages=all",
    },
    "compress": {
        "description": "Reduce PDF file size",
        "parameters": ["file", "quality (low/medium/high)"],
        "example": "quality=medium",
    },
    "watermark": {
        "description": "Add text watermark to PDF",
        "parameters": ["file", "text", "position (center/diagonal/header/footer)", "opacity", "fontSize", "color", "pages"],
        "example": "text=CONFIDENTIAL&position=diagonal&opacity=0.3",
    },
    "protect": {
        "description": "Encrypt PDF with a password (AES-256)",
        "parameters": ["file", "password", "ownerPassword (optional)"],
        "example": "password=secret",
    },
    "unlock": {
        "description": "Remove password protection",
        "parameters": ["file", "password"],
        "example": "password=secret",
    },
    "extract_pages": {
        "description": "Extract specific pages from PDF",
        "parameters": ["file", "range"],
        "example": "range=1-3,5,7-9",
    },
    "add_page_numbers": {
        "description": "Add page numbers to PDF",
        "parameters": ["file", "position", "format", "startNumber"],
        "example": "position=bottom-center&format=Page {n} of {total}",
    },
    "delete_pages": {
        "description": "Remove pages from PDF",
        "parameters": ["file", "pages"],
        "example": "pages=2,4,6",
    },
    "reorder_pages": {
        "description": "Rearrange page order",
        "parameters": ["file", "order"],
        "example": "order=3,1,2,4",
    },
    "sign": {
        "description": "Add signature to PDF",
        "parameters": ["file", "signature (JSON)"],
        "example": {
            "signature": {
                "type": "type",
                "data": "John Doe",
                "x": 100,
                "y": 100,
                "page": 1,
                "includeDate": True,
                "name": "John Doe",
                "title": "CEO",
            }
        },
    },
    "add_initials": {
        "description": "Add initials to multiple locations",
        "parameters": ["file", "initials (JSON array)"],
        "example": {"initials": '[{"text": "JD", "x": 50, "y": 700, "page": 1}]'},
    },
    "add_date_stamp": {
        "description": "Add date stamp to PDF",
        "parameters": ["file", "x", "y", "page", "format (short/full/iso)", "includeTime"],
        "example": "format=full&includeTime=true",
    },
    "add_certificate": {
        "description": "Add digital certificate stamp; creates a verifiable certificate record",
        "parameters": ["file", "x", "y", "page", "signerName", "reason"],
        "example": "signerName=Jane Doe&reason=Approved",
    },
    "verify": {
        "description": "Verify document certificate and integrity",
        "parameters": ["file", "certificateId (optional)"],
        "example": "certificateId=CERT-AB12-CD34-EF56",
    },
    "fill": {
        "description": "Fill an existing PDF form",
        "parameters": ["file", "fields (JSON array of {name, value}) or one form field per PDF field"],
        "example": '[{"name": "fullName", "value": "Jane Doe"}]',
    },
    "create_form": {
        "description": "Create a fillable PDF form",
        "parameters": ["fields (JSON array)", "title", "file (optional base PDF)"],
        "example": '[{"name": "email", "type": "text", "x": 50, "y": 600, "width": 200, "height": 20}]',
    },
    "flatten_form": {
        "description": "Make form fields non-editable",
        "parameters": ["file"],
        "example": "FormData with file",
    },
    "extract_fields": {
        "description": "List form fields with types, values and positions",
        "parameters": ["file"],
        "example": "FormData with file",
    },
    "images-to-pdf": {
        "description": "Combine PNG/JPEG images into a PDF, one per page",
        "parameters": ["files (multiple)", "pageSize (letter/a4/legal)", "title"],
        "example": "pageSize=a4&title=Photos",
    },
    "html-to-pdf": {
        "description": "Convert HTML text content to PDF",
        "parameters": ["html", "title", "pageSize"],
        "example": "html=<h1>Hello</h1><p>World</p>",
    },
    "markdown-to-pdf": {
        "description": "Convert Markdown to PDF",
        "parameters": ["markdown", "title", "pageSize"],
        "example": "markdown=# Title\n- item",
    },
    "text-to-pdf": {
        "description": "Convert plain text to PDF",
        "parameters": ["text", "title", "pageSize"],
        "example": "text=Hello world",
    },
}


@dataclass(frozen=True)
class OperationDescriptor:
    name: str
    cost: int
    family: str
    parse: ParseFn
    run: RunFn
    description: str = ""
    parameters: list[str] = field(default_factory=list)
    example: Any = None


def _build() -> Mapping[str, OperationDescriptor]:
    table = {}
    for name, handler in HANDLERS.items():
        if name not in CREDIT_COSTS:
            continue
        usage = USAGE.get(name, {})
        table[name] = OperationDescriptor(
            name=name,
            cost=CREDIT_COSTS[name],
            family=handler.family,
            parse=handler.parse,
            run=handler.run,
            description=usage.get("description", ""),
            parameters=list(usage.get("parameters", [])),
            example=usage.get("example"),
        )
    return MappingProxyType(table)


OPERATIONS: Mapping[str, OperationDescriptor] = _build()


def resolve(name: str | None) -> OperationDescriptor:
    """Look up an operation by name or alias. No I/O."""
    key = ALIASES.get(name, name) if name else name
    descriptor = OPERATIONS.get(key) if key else None
    if descriptor is None:
        raise InvalidOperationError(name, list(OPERATIONS))
    return descriptor


def validate_registry() -> None:
    """Every costed name has a handler and every handler a positive integer cost."""
    missing_handlers = sorted(set(CREDIT_COSTS) - set(HANDLERS))
    missing_costs = sorted(set(HANDLERS) - set(CREDIT_COSTS))
    bad_costs = sorted(n for n, c in CREDIT_COSTS.items() if not isinstance(c, int) or isinstance(c, bool) or c <= 0)
    if missing_handlers or missing_costs or bad_costs:
        raise RuntimeError(
            "Operation registry is inconsistent: "
            f"no handler for {missing_handlers}, no cost for {missing_costs}, invalid cost for {bad_costs}"
        )


def describe(family: str | None = None) -> dict[str, Any]:
    ops = [d for d in OPERATIONS.values() if family is None or d.family == family]
    return {
        "operations": {d.name: d.cost for d in ops},
        "usage": {
            d.name: {"description": d.description, "parameters": d.parameters, "example": d.example, "family": d.family}
            for d in ops
        },
    }
