from datetime import datetime
from typing import Any

from beanie import Document, Indexed
from pydantic import Field


class CertificateRecord(Document):
    """Attestation binding a signer and reason to the hash of a certified document."""
    certificate_id: Indexed(str, unique=True)
    user_id: str
    signer_name: str
    signer_email: str | None = None
    reason: str = ""
    document_hash: Indexed(str)
    document_name: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    expires_at: datetime | None = None
    revoked_at: datetime | None = None
    revocation_reason: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    class Settings:
        name = "certificate_records"
        indexes = [[("user_id", 1), ("created_at", -1)]]
