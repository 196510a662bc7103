"""AcroForm support: fill, create, flatten and inspect form fields."""

import io
import re
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pypdf import PdfReader, PdfWriter
from pypdf.generic import DecodedStreamObject, DictionaryObject, IndirectObject, NameObject
from reportlab.lib.colors import Color, black, white
from reportlab.lib.pagesizes import letter
from reportlab.pdfgen import canvas

from app.core.exceptions import ValidationError
from app.core.logging import get_logger
from app.pdf.pages import open_pdf, write_pdf

log = get_logger(__name__)

FIELD_BORDER = Color(0.6, 0.6, 0.6)
LABEL_GREY = Color(0.3, 0.3, 0.3)

# Field flag bits (PDF 1.7, 12.7.4)
_FF_RADIO = 1 << 15
_FF_PUSHBUTTON = 1 << 16
_FF_COMBO = 1 << 17
_ANNOT_HIDDEN = 1 << 1

_TRUTHY = {"true", "yes", "1", "on", "checked"}


class FormFieldDefinition(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = Field(min_length=1)
    type: Literal["text", "checkbox", "dropdown", "radio", "signature", "date"]
    x: float
    y: float
    width: float | None = None
    height: float | None = None
    page: int = Field(1, ge=1)
    required: bool = False
    default_value: str | None = Field(None, alias="defaultValue")
    options: list[str] = Field(default_factory=list)
    max_length: int | None = Field(None, alias="maxLength")
    font_size: float | None = Field(None, alias="fontSize")
    multiline: bool = False


def _field_kind(field: dict) -> str:
    ft = field.get("/FT")
    flags = int(field.get("/Ff", 0))
    if ft == "/Tx":
        return "text"
    if ft == "/Sig":
        return "signature"
    if ft == "/Ch":
        return "dropdown" if flags & _FF_COMBO else "listbox"
    if ft == "/Btn":
        if flags & _FF_RADIO:
            return "radio"
        if flags & _FF_PUSHBUTTON:
            return "button"
        return "checkbox"
    return "unknown"


def _on_state(field: dict) -> str:
    for state in field.get("/_States_", []):
        if state != "/Off":
            return state
    return "/Yes"


def _as_name(value: str) -> str:
    return value if value.startswith("/") else f"/{value}"


def fill_form(data: bytes, values: dict[str, str | bool]) -> tuple[bytes, int]:
    """Set fields by their declared type. Names the form lacks are skipped; returns (pdf, filled)."""
    reader = open_pdf(data)
    fields = reader.get_fields() or {}
    resolved: dict[str, str] = {}
    for name, value in values.items():
        field = fields.get(name)
        if field is None:
            log.debug("form_field_missing", field=name)
            continue
        kind = _field_kind(field)
        if kind == "checkbox":
            checked = value is True or str(value).strip().lower() in _TRUTHY
            resolved[name] = _on_state(field) if checked else "/Off"
        elif kind == "radio":
            resolved[name] = _as_name(str(value))
        elif kind in ("text", "dropdown", "listbox"):
            resolved[name] = str(value)
        else:
            log.debug("form_field_unsupported", field=name, kind=kind)

    writer = PdfWriter(clone_from=reader)
    if resolved:
        for page in writer.pages:
            if "/Annots" in page:
                writer.update_page_form_field_values(page, resolved)
    return write_pdf(writer), len(resolved)


def _label_for(name: str) -> str:
    spaced = re.sub(r"([A-Z])", r" \1", name.replace("_", " "))
    return re.sub(r"\s+", " ", spaced).strip() + ":"


def _draw_field(c: canvas.Canvas, field: FormFieldDefinition) -> bool:
    form = c.acroForm
    kind = field.type
    if kind in ("text", "date"):
        form.textfield(
            name=field.name,
            tooltip=field.name,
            x=field.x,
            y=field.y,
            width=field.width or 200,
            height=field.height or 20,
            value=field.default_value or "",
            maxlen=field.max_length or 1000,
            fontSize=field.font_size or 10,
            fieldFlags="multiline" if field.multiline else "",
            borderColor=FIELD_BORDER,
            fillColor=white,
            forceBorder=True,
        )
    elif kind == "checkbox":
        form.checkbox(
            name=field.name,
            tooltip=field.name,
            x=field.x,
            y=field.y,
            size=field.width or 20,
            checked=(field.default_value or "").lower() in ("true", "checked"),
            buttonStyle="check",
            borderColor=FIELD_BORDER,
            fillColor=white,
            forceBorder=True,
        )
    elif kind == "dropdown":
        if not field.options:
            return False
        form.choice(
            name=field.name,
            tooltip=field.name,
            x=field.x,
            y=field.y,
            width=field.width or 150,
            height=field.height or 20,
            options=field.options,
            value=field.default_value if field.default_value in field.options else field.options[0],
            fieldFlags="combo",
            borderColor=FIELD_BORDER,
            fillColor=white,
            forceBorder=True,
        )
    elif kind == "radio":
        if not field.options:
            return False
        for idx, option in enumerate(field.options):
            form.radio(
                name=field.name,
                tooltip=option,
                value=option,
                selected=option == field.default_value,
                x=field.x,
                y=field.y - idx * 25,
                size=15,
                buttonStyle="circle",
                borderColor=FIELD_BORDER,
                fillColor=white,
                forceBorder=True,
            )
            c.setFont("Helvetica", 9)
            c.setFillColor(LABEL_GREY)
            c.drawString(field.x + 20, field.y - idx * 25 + 4, option)
    elif kind == "signature":
        form.textfield(
            name=field.name,
            tooltip="Sign here",
            x=field.x,
            y=field.y,
            width=field.width or 200,
            height=field.height or 50,
            borderColor=black,
            borderWidth=1,
            fillColor=Color(0.98, 0.98, 0.98),
            forceBorder=True,
        )
        c.setFont("Helvetica", 8)
        c.setFillColor(Color(0.5, 0.5, 0.5))
        c.drawString(field.x, field.y - 15, "Sign Here")

    height = field.height or (20 if kind != "signature" else 50)
    c.setFont("Helvetica", 10)
    c.setFillColor(LABEL_GREY)
    c.drawString(field.x, field.y + height + 5, _label_for(field.name))
    return True


def create_form(
    fields: list[FormFieldDefinition],
    title: str = "Form",
    base: bytes | None = None,
) -> tuple[bytes, int]:
    """Lay out fillable widgets, on a new Letter document or over the pages of `base`.

    Returns (pdf, number of fields created). Fields on pages past the end of the
    document get blank Letter pages appended.
    """
    if not fields:
        raise ValidationError("Form field definitions required")
    names = [f.name for f in fields]
    if len(set(names)) != len(names):
        raise ValidationError("Form field names must be unique")

    base_reader = open_pdf(base) if base is not None else None
    sizes = [(float(p.mediabox.width), float(p.mediabox.height)) for p in base_reader.pages] if base_reader else []
    page_total = max([len(sizes) or 1] + [f.page for f in fields])

    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=letter)
    c.setTitle(title)
    created = 0
    for index in range(page_total):
        c.setPageSize(sizes[index] if index < len(sizes) else letter)
        if base_reader is None and index == 0:
            c.setFont("Helvetica-Bold", 24)
            c.setFillColor(black)
            c.drawString(50, 742, title)
        for field in fields:
            if field.page - 1 == index and _draw_field(c, field):
                created += 1
        c.showPage()
    c.save()

    writer = PdfWriter(clone_from=PdfReader(io.BytesIO(buf.getvalue())))
    if base_reader is not None:
        for index, base_page in enumerate(base_reader.pages):
            writer.pages[index].merge_page(base_page, over=False)
    return write_pdf(writer), created


def _append_content(page, data: bytes) -> None:
    """Wrap the existing page content in q/Q and draw `data` after it."""
    contents = page.get_contents()
    existing = contents.get_data() if contents is not None else b""
    stream = DecodedStreamObject()
    stream.set_data(b"q\n" + existing + b"\nQ\n" + data)
    page.replace_contents(stream)


def _appearance(annot: DictionaryObject) -> IndirectObject | None:
    ap = annot.get("/AP")
    if not ap:
        return None
    ap = ap.get_object()
    if "/N" not in ap:
        return None
    normal = ap.raw_get("/N")
    resolved = normal.get_object()
    if "/BBox" not in resolved:
        # Per-state dictionary (checkboxes, radios): use the current /AS
        state = annot.get("/AS")
        if state is None or state not in resolved:
            return None
        normal = resolved.raw_get(state)
    return normal if isinstance(normal, IndirectObject) else None


def flatten_form(data: bytes) -> tuple[bytes, int]:
    """Burn widget appearances into page content and drop the interactive form."""
    reader = open_pdf(data)
    field_count = len(reader.get_fields() or {})
    writer = PdfWriter(clone_from=reader)

    for page in writer.pages:
        if "/Annots" not in page:
            continue
        ops: list[str] = []
        if "/Resources" not in page:
            page[NameObject("/Resources")] = DictionaryObject()
        resources = page["/Resources"]
        if "/XObject" not in resources:
            resources[NameObject("/XObject")] = DictionaryObject()
        xobjects = resources["/XObject"]

        for ref in page["/Annots"]:
            annot = ref.get_object()
            if annot.get("/Subtype") != "/Widget" or int(annot.get("/F", 0)) & _ANNOT_HIDDEN:
                continue
            stream_ref = _appearance(annot)
            if stream_ref is None:
                continue
            stream = stream_ref.get_object()
            x0, y0, x1, y1 = (float(v) for v in annot["/Rect"])
            bx0, by0, bx1, by1 = (float(v) for v in stream["/BBox"])
            sx = (abs(x1 - x0) / (bx1 - bx0)) if bx1 != bx0 else 1.0
            sy = (abs(y1 - y0) / (by1 - by0)) if by1 != by0 else 1.0
            tx, ty = min(x0, x1) - bx0 * sx, min(y0, y1) - by0 * sy
            # One name per widget; radio kids share a field name
            name = f"/FlatWidget{len(ops)}"
            xobjects[NameObject(name)] = stream_ref
            ops.append(f"q {sx:.4f} 0 0 {sy:.4f} {tx:.4f} {ty:.4f} cm {name} Do Q")

        if ops:
            _append_content(page, "\n".join(ops).encode("latin-1"))

    writer.remove_annotations(subtypes=["/Widget"])
    for page in writer.pages:
        if "/Annots" in page and not page["/Annots"]:
            del page["/Annots"]
    if "/AcroForm" in writer.root_object:
        del writer.root_object["/AcroForm"]
    return write_pdf(writer), field_count


def _widget_positions(reader: PdfReader) -> dict[str, dict]:
    positions: dict[str, dict] = {}
    for page_no, page in enumerate(reader.pages, start=1):
        for ref in page.get("/Annots") or []:
            annot = ref.get_object()
            if annot.get("/Subtype") != "/Widget":
                continue
            name = annot.get("/T")
            if name is None and "/Parent" in annot:
                name = annot["/Parent"].get("/T")
            if name is None or str(name) in positions:
                continue
            x0, y0, x1, y1 = (float(v) for v in annot["/Rect"])
            positions[str(name)] = {
                "page": page_no,
                "x": min(x0, x1),
                "y": min(y0, y1),
                "width": abs(x1 - x0),
                "height": abs(y1 - y0),
            }
    return positions


def _options(field: dict) -> list[str]:
    out = []
    for opt in field.get("/Opt", []):
        opt = opt.get_object() if hasattr(opt, "get_object") else opt
        # [export, display] pairs or plain strings
        out.append(str(opt[-1]) if isinstance(opt, list) else str(opt))
    return out


def extract_fields(data: bytes) -> dict:
    reader = open_pdf(data)
    fields = reader.get_fields() or {}
    positions = _widget_positions(reader)
    out = []
    for name, field in fields.items():
        kind = _field_kind(field)
        raw = field.get("/V")
        info: dict = {"name": name, "type": kind}
        if kind == "checkbox":
            info["value"] = raw is not None and raw != "/Off"
        elif kind == "radio":
            info["value"] = str(raw).lstrip("/") if raw not in (None, "/Off") else None
            info["options"] = [s.lstrip("/") for s in field.get("/_States_", []) if s != "/Off"]
        elif kind in ("dropdown", "listbox"):
            info["value"] = str(raw) if raw is not None else None
            info["options"] = _options(field)
        else:
            info["value"] = str(raw) if raw is not None else ""
            if "/MaxLen" in field:
                info["maxLength"] = int(field["/MaxLen"])
        position = positions.get(name.rsplit(".", 1)[-1])
        if position:
            info["position"] = position
        out.append(info)
    return {"pageCount": len(reader.pages), "fieldCount": len(out), "fields": out}
