"""Per-operation parameter parsing and adapters over the app.pdf transforms.

Every operation has a `parse` step, which validates uploads and form fields and
raises before any credit is checked, and a `run` step, which produces an
OperationResult. `run` is either a plain function (executed in a worker thread)
or a coroutine function when it needs the database.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Literal

from fastapi.concurrency import run_in_threadpool
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from app.core.audit import log_event
from app.core.exceptions import ValidationError
from app.deps import AuthUser
from app.pdf import convert, forms, organize, signatures
from app.pdf.forms import FormFieldDefinition
from app.pdf.pages import stem
from app.pdf.signatures import InitialsSpec, SignatureSpec
from app.services import certificates

PDF = "application/pdf"
ZIP = "application/zip"


@dataclass(frozen=True)
class Upload:
    filename: str
    content: bytes


@dataclass
class OperationRequest:
    user: AuthUser
    files: list[Upload] = field(default_factory=list)
    fields: dict[str, str] = field(default_factory=dict)
    client: dict[str, str] = field(default_factory=dict)


@dataclass
class Parsed:
    request: OperationRequest
    params: BaseModel

    @property
    def file(self) -> Upload:
        return self.request.files[0]


@dataclass
class OperationResult:
    message: str
    content: bytes | None = None
    filename: str | None = None
    media_type: str = PDF
    data: dict[str, Any] | None = None
    headers: dict[str, str] = field(default_factory=dict)
    # Side effects that must only happen once the operation is paid for
    commit: Callable[[], Awaitable[None]] | None = None


ParseFn = Callable[[OperationRequest], Parsed]
RunFn = Callable[[Parsed], OperationResult | Awaitable[OperationResult]]


class Params(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", str_strip_whitespace=True)


def _validation_message(exc: PydanticValidationError) -> str:
    err = exc.errors()[0]
    loc = ".".join(str(p) for p in err.get("loc", ()) if p != "__root__")
    return f"{loc}: {err['msg']}" if loc else err["msg"]


def validate_params(model: type[Params], values: dict[str, Any]) -> Params:
    try:
        return model.model_validate(values)
    except PydanticValidationError as e:
        raise ValidationError(
            _validation_message(e),
            details={"errors": jsonable_encoder(e.errors(include_url=False, include_context=False))},
        ) from e


def _json_field(req: OperationRequest, name: str, adapter: TypeAdapter, required: bool = True):
    raw = req.fields.get(name)
    if not raw:
        if required:
            raise ValidationError(f"{name} is required")
        return None
    try:
        return adapter.validate_json(raw)
    except PydanticValidationError as e:
        raise ValidationError(
            f"Invalid {name}: {_validation_message(e)}",
            details={"errors": jsonable_encoder(e.errors(include_url=False, include_context=False))},
        ) from e


def _require_pdf(req: OperationRequest) -> None:
    if not req.files:
        raise ValidationError("PDF file required")


def _parser(model: type[Params], needs_file: bool = True) -> ParseFn:
    def parse(req: OperationRequest) -> Parsed:
        if needs_file:
            _require_pdf(req)
        return Parsed(req, validate_params(model, req.fields))

    return parse


def format_bytes(n: int) -> str:
    size = float(n)
    for unit in ("B", "KB", "MB"):
        if size < 1024:
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GB"


# Organize


class NoParams(Params):
    pass


def parse_merge(req: OperationRequest) -> Parsed:
    if len(req.files) < 2:
        raise ValidationError("At least 2 PDF files required for merge")
    return Parsed(req, NoParams())


def run_merge(p: Parsed) -> OperationResult:
    files = p.request.files
    content, total = organize.merge([f.content for f in files])
    return OperationResult(
        content=content,
        filename=f"merged_{len(files)}_documents.pdf",
        message=f"Successfully merged {len(files)} PDFs ({total} total pages)",
    )


class SplitParams(Params):
    mode: Literal["all", "range", "single", "every-n"] = "all"
    range: str | None = None
    every_n: int = Field(1, alias="everyN", ge=1)
    page_number: int = Field(1, alias="pageNumber", ge=1)

    @model_validator(mode="after")
    def _range_for_range_mode(self):
        if self.mode == "range" and not self.range:
            raise ValueError("range is required when mode is range")
        return self


def run_split(p: Parsed) -> OperationResult:
    params: SplitParams = p.params
    name = stem(p.file.filename)
    result = organize.split(p.file.content, params.mode, params.range, params.page_number, params.every_n)
    if result.archive:
        return OperationResult(
            content=result.content,
            filename=f"{name}_split.zip",
            media_type=ZIP,
            message=f"Split {result.total_pages} pages into {result.parts} files",
        )
    if params.mode == "single":
        return OperationResult(
            content=result.content,
            filename=f"page_{params.page_number}.pdf",
            message=f"Extracted page {params.page_number} of {result.total_pages}",
        )
    label = re.sub(r"[^\d-]+", "_", params.range or "").strip("_")
    return OperationResult(
        content=result.content,
        filename=f"pages_{label}.pdf",
        message=f"Extracted pages {params.range} of {result.total_pages}",
    )


class RotateParams(Params):
    angle: int = 90
    pages: str = "all"

    @field_validator("angle")
    @classmethod
    def _valid_angle(cls, v: int) -> int:
        if v not in organize.ROTATION_ANGLES:
            raise ValueError("Invalid rotation angle. Use 90, 180, or 270 degrees")
        return v


def run_rotate(p: Parsed) -> OperationResult:
    params: RotateParams = p.params
    content, rotated = organize.rotate(p.file.content, params.angle, params.pages)
    return OperationResult(
        content=content,
        filename=f"{stem(p.file.filename)}_rotated_{params.angle}deg.pdf",
        message=f"Rotated {rotated} pages by {params.angle}°",
    )


class CompressParams(Params):
    quality: Literal["low", "medium", "high"] = "medium"


def run_compress(p: Parsed) -> OperationResult:
    params: CompressParams = p.params
    original = len(p.file.content)
    content = organize.compress(p.file.content, params.quality)
    reduction = max(0.0, (original - len(content)) / original * 100) if original else 0.0
    return OperationResult(
        content=content,
        filename=f"{stem(p.file.filename)}_compressed.pdf",
        message=f"Compressed from {format_bytes(original)} to {format_bytes(len(content))} ({reduction:.1f}% reduction)",
    )


class WatermarkParams(Params):
    text: str = Field("CONFIDENTIAL", min_length=1)
    position: Literal["center", "diagonal", "header", "footer"] = "center"
    opacity: float = Field(0.3, ge=0, le=1)
    font_size: int = Field(48, alias="fontSize", gt=0)
    color: str = "#888888"
    pages: str = "all"


def run_watermark(p: Parsed) -> OperationResult:
    params: WatermarkParams = p.params
    content, count = organize.watermark(
        p.file.content,
        text=params.text,
        position=params.position,
        opacity=params.opacity,
        font_size=params.font_size,
        color=params.color,
        selector=params.pages,
    )
    return OperationResult(
        content=content,
        filename=f"{stem(p.file.filename)}_watermarked.pdf",
        message=f'Added "{params.text}" watermark to {count} pages',
    )


class ProtectParams(Params):
    password: str = Field(min_length=1)
    owner_password: str | None = Field(None, alias="ownerPassword")


def run_protect(p: Parsed) -> OperationResult:
    params: ProtectParams = p.params
    content = organize.protect(p.file.content, params.password, params.owner_password)
    return OperationResult(
        content=content,
        filename=f"{stem(p.file.filename)}_protected.pdf",
        message="PDF protected with password",
    )


class UnlockParams(Params):
    password: str = Field(min_length=1)


def run_unlock(p: Parsed) -> OperationResult:
    content = organize.unlock(p.file.content, p.params.password)
    return OperationResult(
        content=content,
        filename=f"{stem(p.file.filename)}_unlocked.pdf",
        message="Password protection removed",
    )


class RangeParams(Params):
    range: str = Field(min_length=1)


def run_extract_pages(p: Parsed) -> OperationResult:
    content, extracted, total = organize.extract_pages(p.file.content, p.params.range)
    return OperationResult(
        content=content,
        filename=f"{stem(p.file.filename)}_extracted.pdf",
        message=f"Extracted {extracted} pages from {total} total",
    )


class PageNumberParams(Params):
    position: Literal["bottom-center", "bottom-left", "bottom-right", "top-center", "top-left", "top-right"] = (
        "bottom-center"
    )
    format: str = Field("Page {n} of {total}", min_length=1)
    start_number: int = Field(1, alias="startNumber", ge=0)


def run_add_page_numbers(p: Parsed) -> OperationResult:
    params: PageNumberParams = p.params
    content, total = organize.add_page_numbers(p.file.content, params.position, params.format, params.start_number)
    return OperationResult(
        content=content,
        filename=f"{stem(p.file.filename)}_numbered.pdf",
        message=f"Added page numbers to {total} pages",
    )


class DeletePagesParams(Params):
    pages: str = Field(min_length=1)


def run_delete_pages(p: Parsed) -> OperationResult:
    content, deleted, remaining = organize.delete_pages(p.file.content, p.params.pages)
    return OperationResult(
        content=content,
        filename=f"{stem(p.file.filename)}_modified.pdf",
        message=f"Deleted {deleted} pages, {remaining} remaining",
    )


class ReorderParams(Params):
    order: str = Field(min_length=1)


def run_reorder_pages(p: Parsed) -> OperationResult:
    content, total = organize.reorder_pages(p.file.content, p.params.order)
    return OperationResult(
        content=content,
        filename=f"{stem(p.file.filename)}_reordered.pdf",
        message=f"Reordered {total} pages",
    )


# Signatures

_signature_adapter = TypeAdapter(SignatureSpec)
_initials_adapter = TypeAdapter(list[InitialsSpec])


class SignParams(Params):
    signature: SignatureSpec


def parse_sign(req: OperationRequest) -> Parsed:
    _require_pdf(req)
    spec = _json_field(req, "signature", _signature_adapter)
    return Parsed(req, SignParams(signature=spec))


def _audit(p: Parsed, operation: str, extra: dict[str, Any]) -> Callable[[], Awaitable[None]]:
    async def commit() -> None:
        await log_event(
            p.request.user.id,
            f"pdf_{operation}",
            "document",
            extra.get("certificate_id") or extra.get("document_hash"),
            {"operation": operation, "filename": p.file.filename, **p.request.client, **extra},
        )

    return commit


def run_sign(p: Parsed) -> OperationResult:
    spec: SignatureSpec = p.params.signature
    content = signatures.sign(p.file.content, spec)
    return OperationResult(
        content=content,
        filename=f"{stem(p.file.filename)}_signed.pdf",
        message=f"Document signed on page {spec.page}",
        commit=_audit(p, "sign", {"page": spec.page, "document_hash": signatures.hash_document(content)}),
    )


class InitialsParams(Params):
    initials: list[InitialsSpec]


def parse_add_initials(req: OperationRequest) -> Parsed:
    _require_pdf(req)
    marks = _json_field(req, "initials", _initials_adapter)
    if not marks:
        raise ValidationError("At least one initials location required")
    return Parsed(req, InitialsParams(initials=marks))


def run_add_initials(p: Parsed) -> OperationResult:
    content, placed = signatures.add_initials(p.file.content, p.params.initials)
    return OperationResult(
        content=content,
        filename=f"{stem(p.file.filename)}_initialed.pdf",
        message=f"Added initials to {placed} location(s)",
    )


class DateStampParams(Params):
    x: float = 400
    y: float = 50
    page: int = Field(1, ge=1)
    format: Literal["short", "full", "iso"] = "full"
    include_time: bool = Field(False, alias="includeTime")


def run_add_date_stamp(p: Parsed) -> OperationResult:
    params: DateStampParams = p.params
    content, text = signatures.add_date_stamp(
        p.file.content, params.x, params.y, params.page, params.format, params.include_time
    )
    return OperationResult(
        content=content,
        filename=f"{stem(p.file.filename)}_dated.pdf",
        message=f"Added date stamp: {text}",
    )


class CertificateParams(Params):
    x: float = 400
    y: float = 100
    page: int = Field(1, ge=1)
    signer_name: str | None = Field(None, alias="signerName")
    reason: str = "Document certification"


async def run_add_certificate(p: Parsed) -> OperationResult:
    params: CertificateParams = p.params
    user = p.request.user
    signer = params.signer_name or user.email or user.id
    certificate_id = certificates.generate_certificate_id()
    issued_at = datetime.utcnow()
    content = await run_in_threadpool(
        signatures.stamp_certificate,
        p.file.content,
        certificate_id,
        signer,
        params.reason,
        issued_at,
        params.x,
        params.y,
        params.page,
    )
    document_hash = signatures.hash_document(content)
    audit = _audit(p, "add_certificate", {"certificate_id": certificate_id, "document_hash": document_hash})

    async def commit() -> None:
        await certificates.issue(
            certificate_id,
            user.id,
            signer,
            params.reason,
            document_hash,
            issued_at,
            signer_email=user.email,
            document_name=p.file.filename,
            client=p.request.client,
        )
        await audit()

    return OperationResult(
        content=content,
        filename=f"{stem(p.file.filename)}_certified.pdf",
        message=f"Document certified. Certificate ID: {certificate_id}",
        headers={"X-Certificate-Id": certificate_id},
        commit=commit,
    )


class VerifyParams(Params):
    certificate_id: str | None = Field(None, alias="certificateId")


async def run_verify(p: Parsed) -> OperationResult:
    document_hash = signatures.hash_document(p.file.content)
    data, message = await certificates.verify(document_hash, p.params.certificate_id)
    return OperationResult(data={**data, "documentHash": document_hash}, message=message)


# Forms

_fill_adapter = TypeAdapter(list[dict[str, Any]] | dict[str, Any])
_definitions_adapter = TypeAdapter(list[FormFieldDefinition])
_RESERVED_FIELDS = {"fields", "file", "files", "files[]", "operation", "type"}


class FillParams(Params):
    values: dict[str, Any]


def parse_fill(req: OperationRequest) -> Parsed:
    _require_pdf(req)
    raw = _json_field(req, "fields", _fill_adapter, required=False)
    if raw is None:
        # Individual form fields named after the PDF's fields
        values = {k: v for k, v in req.fields.items() if k not in _RESERVED_FIELDS}
    elif isinstance(raw, dict):
        values = raw
    else:
        values = {}
        for item in raw:
            if "name" not in item or "value" not in item:
                raise ValidationError("Each field needs a name and a value")
            values[str(item["name"])] = item["value"]
    return Parsed(req, validate_params(FillParams, {"values": values}))


def run_fill(p: Parsed) -> OperationResult:
    content, filled = forms.fill_form(p.file.content, p.params.values)
    return OperationResult(
        content=content,
        filename=f"{stem(p.file.filename)}_filled.pdf",
        message=f"Filled {filled} form fields",
    )


class CreateFormParams(Params):
    fields: list[FormFieldDefinition]
    title: str = "Form"


def parse_create_form(req: OperationRequest) -> Parsed:
    definitions = _json_field(req, "fields", _definitions_adapter)
    if not definitions:
        raise ValidationError("Form field definitions required")
    title = (req.fields.get("title") or "Form").strip() or "Form"
    return Parsed(req, CreateFormParams(fields=definitions, title=title))


def run_create_form(p: Parsed) -> OperationResult:
    params: CreateFormParams = p.params
    base = p.request.files[0].content if p.request.files else None
    content, created = forms.create_form(params.fields, params.title, base)
    return OperationResult(
        content=content,
        filename=f"{convert.file_title(params.title)}_form.pdf",
        message=f"Created fillable form with {created} fields",
    )


def run_flatten_form(p: Parsed) -> OperationResult:
    content, count = forms.flatten_form(p.file.content)
    return OperationResult(
        content=content,
        filename=f"{stem(p.file.filename)}_flattened.pdf",
        message=f"Flattened {count} form fields (now non-editable)",
    )


def run_extract_fields(p: Parsed) -> OperationResult:
    info = forms.extract_fields(p.file.content)
    return OperationResult(
        data={"fileName": p.file.filename, **info},
        message=f"Found {info['fieldCount']} form fields",
    )


# Conversions


class ConversionParams(Params):
    title: str = Field("Document", min_length=1)
    page_size: Literal["letter", "a4", "legal"] = Field("letter", alias="pageSize")


class ImagesParams(ConversionParams):
    title: str = Field("Images", min_length=1)


class TextParams(ConversionParams):
    text: str = Field(min_length=1)


class MarkdownParams(ConversionParams):
    markdown: str = Field(min_length=1)


class HtmlParams(ConversionParams):
    html: str = Field(min_length=1)


def parse_images_to_pdf(req: OperationRequest) -> Parsed:
    if not req.files:
        raise ValidationError("At least one image required")
    return Parsed(req, validate_params(ImagesParams, req.fields))


def run_images_to_pdf(p: Parsed) -> OperationResult:
    params: ImagesParams = p.params
    images = [(f.filename, f.content) for f in p.request.files]
    content, added = convert.images_to_pdf(images, params.page_size, params.title)
    return OperationResult(
        content=content,
        filename=f"{convert.file_title(params.title)}.pdf",
        message=f"Created PDF with {added} images",
    )


def _conversion(render: Callable[..., bytes], attr: str, label: str) -> Callable[[Parsed], OperationResult]:
    def run(p: Parsed) -> OperationResult:
        params = p.params
        content = render(getattr(params, attr), params.title, params.page_size)
        return OperationResult(
            content=content,
            filename=f"{convert.file_title(params.title)}.pdf",
            message=f"Converted {label} to PDF",
        )

    return run


run_html_to_pdf = _conversion(convert.html_to_pdf, "html", "HTML")
run_markdown_to_pdf = _conversion(convert.markdown_to_pdf, "markdown", "Markdown")
run_text_to_pdf = _conversion(convert.text_to_pdf, "text", "text")


@dataclass(frozen=True)
class Handler:
    family: str
    parse: ParseFn
    run: RunFn


HANDLERS: dict[str, Handler] = {
    # organize
    "merge": Handler("organize", parse_merge, run_merge),
    "split": Handler("organize", _parser(SplitParams), run_split),
    "rotate": Handler("organize", _parser(RotateParams), run_rotate),
    "compress": Handler("organize", _parser(CompressParams), run_compress),
    "watermark": Handler("organize", _parser(WatermarkParams), run_watermark),
    "protect": Handler("organize", _parser(ProtectParams), run_protect),
    "unlock": Handler("organize", _parser(UnlockParams), run_unlock),
    "extract_pages": Handler("organize", _parser(RangeParams), run_extract_pages),
    "add_page_numbers": Handler("organize", _parser(PageNumberParams), run_add_page_numbers),
    "delete_pages": Handler("organize", _parser(DeletePagesParams), run_delete_pages),
    "reorder_pages": Handler("organize", _parser(ReorderParams), run_reorder_pages),
    # signatures
    "sign": Handler("signatures", parse_sign, run_sign),
    "add_initials": Handler("signatures", parse_add_initials, run_add_initials),
    "add_date_stamp": Handler("signatures", _parser(DateStampParams), run_add_date_stamp),
    "add_certificate": Handler("signatures", _parser(CertificateParams), run_add_certificate),
    "verify": Handler("signatures", _parser(VerifyParams), run_verify),
    # forms
    "fill": Handler("forms", parse_fill, run_fill),
    "create_form": Handler("forms", parse_create_form, run_create_form),
    "flatten_form": Handler("forms", _parser(NoParams), run_flatten_form),
    "extract_fields": Handler("forms", _parser(NoParams), run_extract_fields),
    # conversions
    "images-to-pdf": Handler("conversions", parse_images_to_pdf, run_images_to_pdf),
    "html-to-pdf": Handler("conversions", _parser(HtmlParams, needs_file=False), run_html_to_pdf),
    "markdown-to-pdf": Handler("conversions", _parser(MarkdownParams, needs_file=False), run_markdown_to_pdf),
    "text-to-pdf": Handler("conversions", _parser(TextParams, needs_file=False), run_text_to_pdf),
}

