"""Audit trail for signing, certification and payment events."""

from typing import Any

from fastapi import Request

from app.models.audit_log import AuditLog


def client_metadata(request: Request | None) -> dict[str, str]:
    """IP address and user agent of the caller, as recorded next to signatures."""
    if request is None:
        return {"ip_address": "unknown", "user_agent": "unknown"}
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ip = forwarded.split(",")[0].strip()
    elif request.client:
        ip = request.client.host
    else:
        ip = "unknown"
    return {"ip_address": ip, "user_agent": request.headers.get("user-agent") or "unknown"}


async def log_event(
    user_id: str | None,
    event_type: str,
    entity_type: str,
    entity_id: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> None:
    """Append to audit_logs collection."""
    await AuditLog(
        user_id=user_id,
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        metadata=metadata or {},
    ).insert()
