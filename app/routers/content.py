from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from app.deps import AuthUser, get_current_user
from app.services import content as content_service

router = APIRouter()


class GenerateContentRequest(BaseModel):
    prompt: str = Field(min_length=1, max_length=4000)
    template: str | None = None


@router.post("/generate")
async def content_generate(body: GenerateContentRequest, user: AuthUser = Depends(get_current_user)):
    """Draft document sections for the editor."""
    sections = await content_service.generate_sections(body.prompt, body.template)
    return {"success": True, "sections": sections}
