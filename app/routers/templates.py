from typing import Any

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel, Field

from app.deps import AuthUser, get_current_user, get_optional_user
from app.services import templates as templates_service
from app.services.dispatcher import header_safe

router = APIRouter()


class DuplicateRequest(BaseModel):
    new_name: str | None = Field(default=None, max_length=200)


class GenerateRequest(BaseModel):
    field_values: dict[str, Any]


@router.get("/categories")
async def template_categories():
    return {"categories": templates_service.CATEGORIES}


@router.get("")
async def templates_list(
    category: str | None = None,
    subcategory: str | None = None,
    premium: bool | None = None,
    search: str | None = Query(None, max_length=100),
):
    templates = await templates_service.list_templates(category, subcategory, premium, search)
    return {"templates": templates, "total": len(templates), "categories": templates_service.CATEGORIES}


@router.get("/{template_id}")
async def template_get(template_id: str, user: AuthUser | None = Depends(get_optional_user)):
    return {"template": await templates_service.get_template(template_id, user.id if user else None)}


@router.post("")
async def template_create(body: templates_service.TemplateCreate, user: AuthUser = Depends(get_current_user)):
    template = await templates_service.create_template(user.id, body)
    return {"success": True, "template": template, "message": "Template created"}


@router.post("/{template_id}/duplicate")
async def template_duplicate(
    template_id: str,
    body: DuplicateRequest | None = None,
    user: AuthUser = Depends(get_current_user),
):
    template = await templates_service.duplicate_template(user.id, template_id, body.new_name if body else None)
    return {"success": True, "template": template, "message": "Template duplicated"}


@router.post("/{template_id}/generate")
async def template_generate(template_id: str, body: GenerateRequest, user: AuthUser = Depends(get_current_user)):
    """Render the template with `field_values`. Not metered."""
    content, name = await templates_service.generate(user.id, template_id, body.field_values)
    filename = header_safe(f"{name}.pdf")
    return Response(
        content=content,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"', "X-Template-Id": template_id},
    )
