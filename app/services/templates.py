"""Template library: built-in and user templates, and PDF generation from field values.

A template is a list of fields plus an optional editor layout whose text elements
carry `{{field_name}}` placeholders. Templates without a layout render as a simple
labelled document.
"""

import math
import re
from typing import Any

from beanie import PydanticObjectId
from bson import ObjectId
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, field_validator
from pymongo import DESCENDING

from app.core.audit import log_event
from app.core.exceptions import NotFoundError, ValidationError
from app.core.logging import get_logger
from app.models.pdf_template import PdfTemplate, TemplateField
from app.pdf.builder import render_document
from app.pdf.document_model import EditorDocument, EditorPage, TextElement

log = get_logger(__name__)

CATEGORIES: list[dict[str, Any]] = [
    {
        "id": "business",
        "name": "Business",
        "subcategories": ["Proposals", "Contracts", "Reports", "Presentations", "Letterheads", "Business Cards"],
    },
    {
        "id": "legal",
        "name": "Legal",
        "subcategories": [
            "NDAs",
            "Employment Contracts",
            "Service Agreements",
            "Terms of Service",
            "Privacy Policies",
            "Waivers",
        ],
    },
    {
        "id": "finance",
        "name": "Finance",
        "subcategories": ["Invoices", "Quotes", "Purchase Orders", "Receipts", "Financial Reports", "Expense Reports"],
    },
    {
        "id": "hr",
        "name": "HR & Employment",
        "subcategories": [
            "Offer Letters",
            "Employment Agreements",
            "Performance Reviews",
            "Onboarding Docs",
            "Policies",
            "Job Descriptions",
        ],
    },
    {
        "id": "marketing",
        "name": "Marketing",
        "subcategories": ["Brochures", "Flyers", "Case Studies", "Whitepapers", "Media Kits", "Sales Sheets"],
    },
    {
        "id": "education",
        "name": "Education",
        "subcategories": ["Certificates", "Transcripts", "Lesson Plans", "Course Materials", "Syllabi", "Diplomas"],
    },
    {
        "id": "real-estate",
        "name": "Real Estate",
        "subcategories": [
            "Lease Agreements",
            "Purchase Agreements",
            "Disclosure Forms",
            "Inspection Reports",
            "Property Listings",
        ],
    },
    {
        "id": "healthcare",
        "name": "Healthcare",
        "subcategories": ["Patient Forms", "Consent Forms", "Medical Records", "Prescriptions", "HIPAA Forms"],
    },
    {
        "id": "personal",
        "name": "Personal",
        "subcategories": ["Resumes", "Cover Letters", "Reference Letters", "Wills", "Power of Attorney"],
    },
]
CATEGORY_IDS = frozenset(c["id"] for c in CATEGORIES)


class BuiltinTemplate(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    category: str
    subcategory: str
    description: str
    pages: int
    fields: list[TemplateField]
    premium: bool = False


def _f(name: str, label: str, kind: str = "text", required: bool = False, **extra: Any) -> TemplateField:
    return TemplateField(name=name, label=label, type=kind, required=required, **extra)


BUILT_IN_TEMPLATES: dict[str, BuiltinTemplate] = {
    t.id: t
    for t in [
        BuiltinTemplate(
            id="proposal-professional",
            name="Professional Proposal",
            category="business",
            subcategory="Proposals",
            description="Clean, modern business proposal template",
            pages=5,
            fields=[
                _f("company_name", "Your Company Name", required=True),
                _f("client_name", "Client Name", required=True),
                _f("project_title", "Project Title", required=True),
                _f("proposal_date", "Date", "date", required=True),
                _f("executive_summary", "Executive Summary", "textarea", required=True),
                _f("scope_of_work", "Scope of Work", "textarea", required=True),
                _f("timeline", "Timeline", "textarea"),
                _f("pricing", "Pricing", "number", required=True),
                _f("terms", "Terms & Conditions", "textarea"),
            ],
        ),
        BuiltinTemplate(
            id="nda-mutual",
            name="Mutual NDA",
            category="legal",
            subcategory="NDAs",
            description="Standard mutual non-disclosure agreement",
            pages=3,
            fields=[
                _f("party_a_name", "Party A (Disclosing Party)", required=True),
                _f("party_a_address", "Party A Address", "textarea", required=True),
                _f("party_b_name", "Party B (Receiving Party)", required=True),
                _f("party_b_address", "Party B Address", "textarea", required=True),
                _f("effective_date", "Effective Date", "date", required=True),
                _f("confidential_info", "Definition of Confidential Info", "textarea"),
                _f("term_years", "Term (Years)", "number", required=True),
                _f("governing_law", "Governing Law (State)", required=True),
            ],
        ),
        BuiltinTemplate(
            id="invoice-detailed",
            name="Detailed Invoice",
            category="finance",
            subcategory="Invoices",
            description="Professional invoice with itemized billing",
            pages=1,
            fields=[
                _f("invoice_number", "Invoice Number", required=True),
                _f("invoice_date", "Invoice Date", "date", required=True),
                _f("due_date", "Due Date", "date", required=True),
                _f("from_company", "From Company", required=True),
                _f("from_address", "From Address", "textarea", required=True),
                _f("to_company", "Bill To", required=True),
                _f("to_address", "Bill To Address", "textarea", required=True),
                _f("items", "Line Items", "table", required=True),
                _f("subtotal", "Subtotal", "number", calculated=True),
                _f("tax_rate", "Tax Rate (%)", "number"),
                _f("total", "Total", "number", calculated=True),
                _f("notes", "Notes", "textarea"),
            ],
        ),
        BuiltinTemplate(
            id="employment-offer",
            name="Employment Offer Letter",
            category="hr",
            subcategory="Offer Letters",
            description="Professional job offer letter template",
            pages=2,
            premium=True,
            fields=[
                _f("company_name", "Company Name", required=True),
                _f("candidate_name", "Candidate Name", required=True),
                _f("position", "Position Title", required=True),
                _f("department", "Department"),
                _f("start_date", "Start Date", "date", required=True),
                _f("salary", "Annual Salary", "number", required=True),
                _f("pay_frequency", "Pay Frequency", "select", options=["Weekly", "Bi-weekly", "Monthly"]),
                _f("benefits", "Benefits Summary", "textarea"),
                _f("reporting_to", "Reports To"),
                _f("expiration_date", "Offer Expires", "date"),
            ],
        ),
        BuiltinTemplate(
            id="lease-residential",
            name="Residential Lease Agreement",
            category="real-estate",
            subcategory="Lease Agreements",
            description="Standard residential rental agreement",
            pages=8,
            premium=True,
            fields=[
                _f("landlord_name", "Landlord Name", required=True),
                _f("tenant_name", "Tenant Name", required=True),
                _f("property_address", "Property Address", "textarea", required=True),
                _f("lease_start", "Lease Start Date", "date", required=True),
                _f("lease_end", "Lease End Date", "date", required=True),
                _f("monthly_rent", "Monthly Rent", "number", required=True),
                _f("security_deposit", "Security Deposit", "number", required=True),
                _f("utilities", "Utilities Included", "textarea"),
                _f("pet_policy", "Pet Policy", "textarea"),
                _f("late_fee", "Late Fee", "number"),
            ],
        ),
        BuiltinTemplate(
            id="resume-modern",
            name="Modern Resume",
            category="personal",
            subcategory="Resumes",
            description="Clean, ATS-friendly resume template",
            pages=1,
            fields=[
                _f("full_name", "Full Name", required=True),
                _f("email", "Email", "email", required=True),
                _f("phone", "Phone"),
                _f("location", "Location"),
                _f("linkedin", "LinkedIn URL"),
                _f("summary", "Professional Summary", "textarea"),
                _f("experience", "Work Experience", "repeater"),
                _f("education", "Education", "repeater"),
                _f("skills", "Skills", "tags"),
            ],
        ),
    ]
}


class TemplateCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    category: str
    subcategory: str | None = None
    description: str | None = Field(None, max_length=2000)
    fields: list[TemplateField] = Field(min_length=1)
    template_data: dict[str, Any] | None = None
    public: bool = False

    @field_validator("category")
    @classmethod
    def _known_category(cls, v: str) -> str:
        if v not in CATEGORY_IDS:
            raise ValueError(f"Unknown category: {v}")
        return v

    @field_validator("fields")
    @classmethod
    def _unique_names(cls, v: list[TemplateField]) -> list[TemplateField]:
        names = [f.name for f in v]
        if len(names) != len(set(names)):
            raise ValueError("Field names must be unique")
        return v

    @field_validator("template_data")
    @classmethod
    def _valid_layout(cls, v: dict[str, Any] | None) -> dict[str, Any] | None:
        if v is not None:
            EditorDocument.model_validate(v)
        return v


def _builtin_out(t: BuiltinTemplate) -> dict[str, Any]:
    return {**t.model_dump(), "builtIn": True, "public": True, "downloads": None}


def template_out(t: PdfTemplate) -> dict[str, Any]:
    return {
        "id": str(t.id),
        "name": t.name,
        "category": t.category,
        "subcategory": t.subcategory,
        "description": t.description,
        "fields": [f.model_dump() for f in t.fields],
        "premium": False,
        "builtIn": False,
        "public": t.public,
        "downloads": t.downloads,
        "ownerId": t.user_id,
        "hasLayout": t.template_data is not None,
        "createdAt": t.created_at.isoformat(),
    }


async def _stored(template_id: str) -> PdfTemplate | None:
    if not ObjectId.is_valid(template_id):
        return None
    return await PdfTemplate.get(PydanticObjectId(template_id))


async def _visible(template_id: str, user_id: str | None) -> BuiltinTemplate | PdfTemplate:
    """Built-in, public, or owned by `user_id`; anything else is reported as missing."""
    builtin = BUILT_IN_TEMPLATES.get(template_id)
    if builtin is not None:
        return builtin
    stored = await _stored(template_id)
    if stored is None or not (stored.public or stored.user_id == user_id):
        raise NotFoundError("Template not found")
    return stored


def _out(t: BuiltinTemplate | PdfTemplate) -> dict[str, Any]:
    return _builtin_out(t) if isinstance(t, BuiltinTemplate) else template_out(t)


async def list_templates(
    category: str | None = None,
    subcategory: str | None = None,
    premium: bool | None = None,
    search: str | None = None,
) -> list[dict[str, Any]]:
    """Built-ins first, then public user templates by downloads; filters combine with AND."""
    public = await PdfTemplate.find(PdfTemplate.public == True).sort([("downloads", DESCENDING)]).to_list()  # noqa: E712
    templates = [_builtin_out(t) for t in BUILT_IN_TEMPLATES.values()] + [template_out(t) for t in public]
    if category:
        templates = [t for t in templates if t["category"] == category]
    if subcategory:
        templates = [t for t in templates if t["subcategory"] == subcategory]
    if premium is not None:
        templates = [t for t in templates if t["premium"] == premium]
    if search:
        needle = search.lower()
        templates = [
            t for t in templates if needle in t["name"].lower() or needle in (t["description"] or "").lower()
        ]
    return templates


async def get_template(template_id: str, user_id: str | None = None) -> dict[str, Any]:
    return _out(await _visible(template_id, user_id))


async def create_template(user_id: str, body: TemplateCreate) -> dict[str, Any]:
    template = PdfTemplate(user_id=user_id, **body.model_dump())
    await template.insert()
    await log_event(user_id, "template_created", "template", str(template.id), {"name": template.name})
    log.info("template_created", template_id=str(template.id), user_id=user_id)
    return template_out(template)


async def duplicate_template(user_id: str, template_id: str, new_name: str | None = None) -> dict[str, Any]:
    source = await _visible(template_id, user_id)
    copy = PdfTemplate(
        user_id=user_id,
        name=new_name or f"{source.name} (Copy)",
        category=source.category,
        subcategory=source.subcategory,
        description=source.description,
        fields=list(source.fields),
        template_data=getattr(source, "template_data", None),
        public=False,
    )
    await copy.insert()
    log.info("template_duplicated", template_id=template_id, copy_id=str(copy.id), user_id=user_id)
    return template_out(copy)


def _is_blank(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


def format_value(value: Any) -> str:
    """Field value as display text: lists become lines (tables/repeaters) or a comma list (tags)."""
    if _is_blank(value):
        return ""
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, dict):
        return "; ".join(f"{k}: {format_value(v)}" for k, v in value.items())
    if isinstance(value, list):
        if any(isinstance(v, (dict, list)) for v in value):
            return "\n".join(format_value(v) for v in value)
        return ", ".join(format_value(v) for v in value)
    return str(value)


_PLACEHOLDER = re.compile(r"\{\{\s*(\w+)\s*\}\}")

# Letter page, one-inch margins
_LEFT = 72
_TOP = 72
_BOTTOM = 720
_WIDTH = 468
_CHARS_PER_LINE = 80


def _text_height(text: str, font_size: float) -> float:
    lines = sum(max(1, math.ceil(len(line) / _CHARS_PER_LINE)) for line in text.split("\n"))
    return lines * font_size * 1.2


def _default_layout(name: str, description: str | None, fields: list[TemplateField], values: dict) -> EditorDocument:
    """Title, description, then `Label` over value for every field that has one."""
    pages: list[EditorPage] = [EditorPage(elements=[])]
    y = _TOP

    def place(element_id: str, text: str, size: float, weight: str = "normal", color: str = "#000000") -> None:
        nonlocal y
        height = _text_height(text, size)
        if y + height > _BOTTOM:
            pages.append(EditorPage(elements=[]))
            y = _TOP
        pages[-1].elements.append(
            TextElement(
                id=element_id,
                content=text,
                x=_LEFT,
                y=y,
                width=_WIDTH,
                height=height,
                font_size=size,
                font_weight=weight,
                color=color,
            )
        )
        y += height + 6

    place("title", name, 20, "bold")
    if description:
        place("description", description, 11, color="#555555")
    y += 12
    for field in fields:
        text = format_value(values.get(field.name))
        if not text:
            continue
        place(f"{field.name}-label", field.label, 10, "bold", "#333333")
        place(f"{field.name}-value", text, 11)
        y += 4
    return EditorDocument(title=name, pages=pages)


def _fill_layout(layout: dict[str, Any], values: dict[str, Any]) -> EditorDocument:
    doc = EditorDocument.model_validate(layout)
    for page in doc.pages:
        for element in page.elements:
            if isinstance(element, TextElement):
                element.content = _PLACEHOLDER.sub(lambda m: format_value(values.get(m.group(1))), element.content)
    return doc


async def generate(user_id: str, template_id: str, field_values: dict[str, Any]) -> tuple[bytes, str]:
    """Validate required fields and render. Returns (pdf, template name)."""
    template = await _visible(template_id, user_id)
    missing = [f.label for f in template.fields if f.required and _is_blank(field_values.get(f.name))]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}", details={"missing": missing})

    layout = getattr(template, "template_data", None)
    try:
        doc = (
            _fill_layout(layout, field_values)
            if layout
            else _default_layout(template.name, template.description, template.fields, field_values)
        )
    except PydanticValidationError as e:
        raise ValidationError("Template layout is invalid") from e
    content = await run_in_threadpool(render_document, doc)

    if isinstance(template, PdfTemplate):
        await template.inc({PdfTemplate.downloads: 1})
    await log_event(user_id, "template_generated", "template", template_id, {"fields": sorted(field_values)})
    log.info("template_generated", template_id=template_id, user_id=user_id, pages=len(doc.pages))
    return content, template.name
