from datetime import datetime
from typing import Any, Literal

from beanie import Document
from pydantic import BaseModel, Field


class TemplateField(BaseModel):
    """One fillable value of a template; `{{name}}` in the layout is replaced by it."""
    name: str = Field(min_length=1, pattern=r"^\w+$")
    label: str = Field(min_length=1)
    type: Literal["text", "textarea", "date", "number", "email", "select", "table", "repeater", "tags"] = "text"
    required: bool = False
    options: list[str] = Field(default_factory=list)
    calculated: bool = False


class PdfTemplate(Document):
    """User-authored template; public ones are listed for everyone."""
    user_id: str
    name: str
    category: str
    subcategory: str | None = None
    description: str | None = None
    fields: list[TemplateField]
    template_data: dict[str, Any] | None = None  # editor document layout
    public: bool = False
    downloads: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "pdf_templates"
        indexes = [
            [("public", 1), ("downloads", -1)],
            [("user_id", 1), ("created_at", -1)],
        ]
