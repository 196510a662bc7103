"""Certificate records: issue, verify against a presented document, revoke."""

import secrets
import string
from datetime import datetime, timedelta
from typing import Any

from pymongo import DESCENDING

from app.core.audit import log_event
from app.core.config import get_settings
from app.core.exceptions import ConflictError, ForbiddenError, NotFoundError
from app.core.logging import get_logger
from app.models.certificate_record import CertificateRecord

log = get_logger(__name__)

_ALPHABET = string.ascii_uppercase + string.digits


def generate_certificate_id() -> str:
    """CERT-XXXX-XXXX-XXXX from [A-Z0-9]."""
    groups = ("".join(secrets.choice(_ALPHABET) for _ in range(4)) for _ in range(3))
    return "CERT-" + "-".join(groups)


async def issue(
    certificate_id: str,
    user_id: str,
    signer_name: str,
    reason: str,
    document_hash: str,
    issued_at: datetime,
    signer_email: str | None = None,
    document_name: str | None = None,
    client: dict[str, str] | None = None,
) -> CertificateRecord:
    """Store the record for a document that was stamped with `certificate_id`."""
    days = get_settings().certificate_validity_days
    client = client or {}
    record = CertificateRecord(
        certificate_id=certificate_id,
        user_id=user_id,
        signer_name=signer_name,
        signer_email=signer_email,
        reason=reason,
        document_hash=document_hash,
        document_name=document_name,
        ip_address=client.get("ip_address"),
        user_agent=client.get("user_agent"),
        created_at=issued_at,
        expires_at=issued_at + timedelta(days=days) if days > 0 else None,
    )
    await record.insert()
    log.info("certificate_issued", certificate_id=certificate_id, user_id=user_id)
    return record


def evaluate(record: CertificateRecord, presented_hash: str, now: datetime | None = None) -> dict[str, Any]:
    """Validity of `record` for a presented document. Derived on every call, never stored."""
    now = now or datetime.utcnow()
    hash_match = record.document_hash == presented_hash
    revoked = record.revoked_at is not None
    expired = record.expires_at is not None and record.expires_at <= now
    if revoked:
        warning = "Certificate has been revoked"
    elif expired:
        warning = "Certificate has expired"
    elif not hash_match:
        warning = "Document has been modified since signing"
    else:
        warning = None
    return {
        "valid": hash_match and not revoked and not expired,
        "certificateId": record.certificate_id,
        "signerName": record.signer_name,
        "signedAt": record.created_at.isoformat(),
        "reason": record.reason,
        "hashMatch": hash_match,
        "revoked": revoked,
        "expired": expired,
        "expiresAt": record.expires_at.isoformat() if record.expires_at else None,
        "warning": warning,
    }


def _summary(record: CertificateRecord) -> dict[str, Any]:
    return {
        "certificateId": record.certificate_id,
        "signerName": record.signer_name,
        "signedAt": record.created_at.isoformat(),
        "reason": record.reason,
        "revoked": record.revoked_at is not None,
    }


async def verify(document_hash: str, certificate_id: str | None = None) -> tuple[dict[str, Any], str]:
    """Returns (data, message).

    With an id, checks that one certificate against the document; without, lists
    every certificate issued for exactly these bytes.
    """
    if certificate_id:
        record = await CertificateRecord.find_one(CertificateRecord.certificate_id == certificate_id)
        if record is None:
            return (
                {"valid": False, "reason": "Certificate not found", "certificateId": certificate_id},
                "Certificate verification failed",
            )
        data = evaluate(record, document_hash)
        if data["valid"]:
            return data, "Certificate verified successfully"
        return data, data["warning"]

    records = await CertificateRecord.find(CertificateRecord.document_hash == document_hash).to_list()
    if records:
        return (
            {"hasSignatures": True, "certificates": [_summary(r) for r in records]},
            f"Found {len(records)} certificate(s) for this document",
        )
    return (
        {"hasSignatures": False, "message": "No certificates found for this document"},
        "No signatures found",
    )


async def revoke(certificate_id: str, user_id: str, reason: str | None = None) -> CertificateRecord:
    record = await CertificateRecord.find_one(CertificateRecord.certificate_id == certificate_id)
    if record is None:
        raise NotFoundError("Certificate not found")
    if record.user_id != user_id:
        raise ForbiddenError("Only the issuer can revoke this certificate")
    if record.revoked_at is not None:
        raise ConflictError("Certificate already revoked", details={"revokedAt": record.revoked_at.isoformat()})
    record.revoked_at = datetime.utcnow()
    record.revocation_reason = reason
    await record.save()
    await log_event(user_id, "certificate_revoked", "certificate", certificate_id, {"reason": reason})
    log.info("certificate_revoked", certificate_id=certificate_id, user_id=user_id)
    return record


async def list_for_user(user_id: str, limit: int = 50, offset: int = 0) -> list[CertificateRecord]:
    return (
        await CertificateRecord.find(CertificateRecord.user_id == user_id)
        .sort([("created_at", DESCENDING), ("_id", DESCENDING)])
        .skip(offset)
        .limit(limit)
        .to_list()
    )
