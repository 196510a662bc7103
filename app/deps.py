"""Shared FastAPI dependencies."""

from dataclasses import dataclass

from fastapi import Request

from app.core.exceptions import UnauthorizedError
from app.core.logging import bind_user_id
from app.core.security import extract_bearer_token, verify_access_token


@dataclass(frozen=True)
class AuthUser:
    """Identity resolved from a bearer token; the id is opaque to this service."""

    id: str
    email: str | None = None


async def get_current_user(request: Request) -> AuthUser:
    """Dependency: verify the bearer token and return the caller's identity."""
    token = extract_bearer_token(request.headers.get("Authorization"))
    if not token:
        raise UnauthorizedError("Unauthorized - No auth token provided")
    payload = verify_access_token(token)
    if not payload:
        raise UnauthorizedError("Unauthorized - Invalid token")
    user = AuthUser(id=str(payload["user_id"]), email=payload.get("email"))
    bind_user_id(user.id)
    return user


async def get_optional_user(request: Request) -> AuthUser | None:
    """Like get_current_user, but anonymous callers get None instead of a 401."""
    if not request.headers.get("Authorization"):
        return None
    return await get_current_user(request)
