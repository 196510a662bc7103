from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from app.deps import AuthUser, get_current_user
from app.models.certificate_record import CertificateRecord
from app.services import certificates as certificates_service

router = APIRouter()


class RevokeRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


def _out(c: CertificateRecord) -> dict:
    return {
        "certificateId": c.certificate_id,
        "signerName": c.signer_name,
        "reason": c.reason,
        "documentName": c.document_name,
        "documentHash": c.document_hash,
        "signedAt": c.created_at.isoformat(),
        "expiresAt": c.expires_at.isoformat() if c.expires_at else None,
        "revokedAt": c.revoked_at.isoformat() if c.revoked_at else None,
    }


@router.get("")
async def certificates_list(
    user: AuthUser = Depends(get_current_user),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    """Certificates issued by the current user (newest first)."""
    items = await certificates_service.list_for_user(user.id, limit=limit, offset=offset)
    return {"certificates": [_out(c) for c in items], "limit": limit, "offset": offset}


@router.post("/{certificate_id}/revoke")
async def certificate_revoke(
    certificate_id: str,
    body: RevokeRequest | None = None,
    user: AuthUser = Depends(get_current_user),
):
    record = await certificates_service.revoke(certificate_id, user.id, body.reason if body else None)
    return _out(record)
