import io
import math
import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from mongomock_motor import AsyncMongoMockClient
from reportlab.lib.pagesizes import LETTER
from reportlab.pdfgen import canvas

# Use test DB
os.environ.setdefault("MONGODB_URI", "mongodb://localhost:27017")
os.environ.setdefault("MONGODB_DB_NAME", "pdfbuilder_test")
os.environ.setdefault("SECRET_KEY", "test-secret-key-min-32-characters-long")
os.environ.setdefault("RAZORPAY_WEBHOOK_SECRET", "whsec-test")

USER_ID = "user-123"
USER_EMAIL = "jane@example.com"


def make_pdf(pages: int = 3, label: str = "Page") -> bytes:
    """Letter-size document with one line of text per page: '<label> <n>'."""
    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=LETTER)
    for n in range(1, pages + 1):
        c.setFont("Helvetica", 14)
        c.drawString(72, 720, f"{label} {n}")
        c.showPage()
    c.save()
    return buf.getvalue()


def make_png(width: int = 40, height: int = 20, color: str = "red") -> bytes:
    from PIL import Image

    buf = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format="PNG")
    return buf.getvalue()


def shown_strings(page) -> list[str]:
    """Operands of every Tj operator on the page, in content order."""
    return [str(operands[0]) for operands, op in page.get_contents().operations if op == b"Tj"]


def has_rotated_drawing(page, degrees: float) -> bool:
    """True when some `cm` on the page rotates by `degrees`."""
    cos, sin = math.cos(math.radians(degrees)), math.sin(math.radians(degrees))
    for operands, op in page.get_contents().operations:
        if op != b"cm":
            continue
        a, b, c, d = (float(v) for v in operands[:4])
        if all(math.isclose(x, y, abs_tol=1e-3) for x, y in ((a, cos), (b, sin), (c, -sin), (d, cos))):
            return True
    return False


def auth_headers(user_id: str = USER_ID, email: str | None = USER_EMAIL) -> dict[str, str]:
    from app.core.security import create_access_token

    return {"Authorization": f"Bearer {create_access_token(user_id, email)}"}


@pytest_asyncio.fixture(autouse=True)
async def db():
    """Fresh in-memory MongoDB bound to the beanie documents for every test."""
    from app.db.init import init_db

    mongo = AsyncMongoMockClient()
    await init_db(mongo)
    yield mongo


@pytest.fixture
def settings(monkeypatch):
    """Settings object; attributes set through monkeypatch are restored after the test."""
    from app.core.config import get_settings

    s = get_settings()

    def override(**values):
        for key, value in values.items():
            monkeypatch.setattr(s, key, value)
        return s

    return override


@pytest.fixture
def sample_pdf() -> bytes:
    return make_pdf(3)


@pytest_asyncio.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    from app.main import app
    async with AsyncClient(
        transport=ASGITransport(app=app, raise_app_exceptions=False),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest_asyncio.fixture
async def funded_user():
    """USER_ID with 10 credits."""
    from app.services import credits as credits_service

    await credits_service.grant(USER_ID, 10, "test top-up")
    return USER_ID
