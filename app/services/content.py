"""Draft document sections with an OpenAI chat completion."""

import json
from typing import Any

from openai import AsyncOpenAI, OpenAIError

from app.core.config import get_settings
from app.core.exceptions import AppError, BadRequestError
from app.core.logging import get_logger

log = get_logger(__name__)

SYSTEM_PROMPT = """You are a professional document writer. Generate well-structured, professional content based on the user's request. The template type is: {template}.

Format your response as a JSON array of sections, where each section has:
- "content": the actual text content
- "isHeading": true if this is a heading/title, false for body text

Example response:
[
  {{"content": "Executive Summary", "isHeading": true}},
  {{"content": "This report provides an overview of...", "isHeading": false}}
]

Provide 3-5 sections of content that are professional, clear, and well-written."""


def get_client() -> AsyncOpenAI:
    settings = get_settings()
    if not settings.openai_api_key:
        raise BadRequestError("Content generation not configured")
    return AsyncOpenAI(api_key=settings.openai_api_key)


def parse_sections(text: str) -> list[dict[str, Any]]:
    """JSON array of {content, isHeading}; anything else becomes one heading plus the raw reply."""
    try:
        data = json.loads(text)
    except ValueError:
        data = None
    if isinstance(data, dict):
        # json_object style replies wrap the array
        data = data.get("sections")
    if isinstance(data, list):
        sections = [
            {"content": str(item["content"]), "isHeading": bool(item.get("isHeading", False))}
            for item in data
            if isinstance(item, dict) and item.get("content")
        ]
        if sections:
            return sections
    return [
        {"content": "Generated Content", "isHeading": True},
        {"content": text, "isHeading": False},
    ]


async def generate_sections(prompt: str, template: str | None = None, client: AsyncOpenAI | None = None) -> list[dict[str, Any]]:
    if not prompt or not prompt.strip():
        raise BadRequestError("Prompt is required")
    client = client or get_client()
    try:
        completion = await client.chat.completions.create(
            model=get_settings().openai_model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT.format(template=template or "general")},
                {"role": "user", "content": prompt},
            ],
            temperature=0.7,
            max_tokens=1000,
        )
    except OpenAIError as e:
        log.error("content_generation_failed", error=str(e))
        raise AppError("Content generation failed", code="CONTENT_GENERATION_FAILED", status_code=502) from e

    text = completion.choices[0].message.content if completion.choices else None
    if not text:
        raise AppError("No content generated", code="CONTENT_GENERATION_FAILED", status_code=502)
    sections = parse_sections(text)
    log.info("content_generated", template=template, sections=len(sections))
    return sections
