import json
from types import SimpleNamespace

import pytest
from openai import OpenAIError

from app.core.exceptions import AppError, BadRequestError
from app.services import content as content_service
from conftest import auth_headers


class FakeCompletions:
    def __init__(self, reply: str | None = None, error: Exception | None = None):
        self.reply = reply
        self.error = error
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error:
            raise self.error
        message = SimpleNamespace(content=self.reply)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def fake_client(reply=None, error=None):
    return SimpleNamespace(chat=SimpleNamespace(completions=FakeCompletions(reply, error)))


SECTIONS = [
    {"content": "Executive Summary", "isHeading": True},
    {"content": "Revenue grew.", "isHeading": False},
]


async def test_generate_sections_parses_json():
    client = fake_client(json.dumps(SECTIONS))
    sections = await content_service.generate_sections("Quarterly report", "report", client=client)
    assert sections == SECTIONS
    call = client.chat.completions.calls[0]
    assert "report" in call["messages"][0]["content"]
    assert call["messages"][1] == {"role": "user", "content": "Quarterly report"}


async def test_generate_sections_falls_back_on_plain_text():
    client = fake_client("Just some prose.")
    sections = await content_service.generate_sections("Anything", client=client)
    assert sections == [
        {"content": "Generated Content", "isHeading": True},
        {"content": "Just some prose.", "isHeading": False},
    ]


def test_parse_sections_accepts_wrapped_object():
    assert content_service.parse_sections(json.dumps({"sections": SECTIONS})) == SECTIONS


async def test_generate_sections_provider_error():
    client = fake_client(error=OpenAIError("rate limited"))
    with pytest.raises(AppError) as exc:
        await content_service.generate_sections("Anything", client=client)
    assert exc.value.status_code == 502


async def test_missing_api_key(settings):
    settings(openai_api_key="")
    with pytest.raises(BadRequestError):
        await content_service.generate_sections("Anything")


async def test_generate_endpoint(client, monkeypatch):
    monkeypatch.setattr(content_service, "get_client", lambda: fake_client(json.dumps(SECTIONS)))
    r = await client.post(
        "/v1/content/generate",
        json={"prompt": "Quarterly report", "template": "report"},
        headers=auth_headers(),
    )
    assert r.status_code == 200
    assert r.json() == {"success": True, "sections": SECTIONS}


async def test_generate_endpoint_requires_auth(client):
    r = await client.post("/v1/content/generate", json={"prompt": "x"})
    assert r.status_code == 401
