import re
from datetime import datetime, timedelta

import pytest

from app.core.exceptions import ConflictError, ForbiddenError, NotFoundError
from app.models.audit_log import AuditLog
from app.services import certificates

ISSUED = datetime(2026, 1, 5, 12, 0)


async def _issue(certificate_id="CERT-AAAA-BBBB-CCCC", document_hash="a" * 64, **kwargs):
    return await certificates.issue(
        certificate_id, kwargs.pop("user_id", "owner"), "Jane Doe", "Approval", document_hash, ISSUED, **kwargs
    )


def test_generate_certificate_id_format():
    ids = {certificates.generate_certificate_id() for _ in range(20)}
    assert len(ids) == 20
    assert all(re.fullmatch(r"CERT-[A-Z0-9]{4}-[A-Z0-9]{4}-[A-Z0-9]{4}", i) for i in ids)


async def test_issue_without_expiry_by_default():
    record = await _issue()
    assert record.expires_at is None


async def test_issue_with_validity_window(settings):
    settings(certificate_validity_days=30)
    record = await _issue()
    assert record.expires_at == ISSUED + timedelta(days=30)


async def test_verify_matching_document():
    await _issue()
    data, message = await certificates.verify("a" * 64, "CERT-AAAA-BBBB-CCCC")
    assert data["valid"] is True
    assert data["hashMatch"] is True
    assert data["warning"] is None
    assert message == "Certificate verified successfully"


async def test_verify_modified_document():
    await _issue()
    data, message = await certificates.verify("b" * 64, "CERT-AAAA-BBBB-CCCC")
    assert data["valid"] is False
    assert data["hashMatch"] is False
    assert message == "Document has been modified since signing"


async def test_verify_unknown_certificate():
    data, message = await certificates.verify("a" * 64, "CERT-ZZZZ-ZZZZ-ZZZZ")
    assert data["valid"] is False
    assert message == "Certificate verification failed"


async def test_verify_by_hash_lists_certificates():
    await _issue()
    await _issue("CERT-DDDD-EEEE-FFFF")
    data, message = await certificates.verify("a" * 64)
    assert data["hasSignatures"] is True
    assert {c["certificateId"] for c in data["certificates"]} == {"CERT-AAAA-BBBB-CCCC", "CERT-DDDD-EEEE-FFFF"}
    assert message == "Found 2 certificate(s) for this document"

    data, message = await certificates.verify("c" * 64)
    assert data["hasSignatures"] is False
    assert message == "No signatures found"


async def test_validity_is_derived_from_current_state():
    record = await _issue()
    assert certificates.evaluate(record, "a" * 64, now=ISSUED)["valid"]

    record.expires_at = ISSUED + timedelta(days=1)
    later = certificates.evaluate(record, "a" * 64, now=ISSUED + timedelta(days=2))
    assert later["expired"] is True
    assert later["valid"] is False

    record.expires_at = None
    record.revoked_at = ISSUED
    revoked = certificates.evaluate(record, "a" * 64, now=ISSUED)
    assert revoked["revoked"] is True
    assert revoked["valid"] is False
    assert revoked["warning"] == "Certificate has been revoked"


async def test_revoke_by_owner():
    await _issue()
    record = await certificates.revoke("CERT-AAAA-BBBB-CCCC", "owner", "Superseded")
    assert record.revoked_at is not None
    assert record.revocation_reason == "Superseded"
    data, _ = await certificates.verify("a" * 64, "CERT-AAAA-BBBB-CCCC")
    assert data["valid"] is False
    assert await AuditLog.find(AuditLog.event_type == "certificate_revoked").count() == 1


async def test_revoke_rules():
    await _issue()
    with pytest.raises(NotFoundError):
        await certificates.revoke("CERT-NOPE-NOPE-NOPE", "owner")
    with pytest.raises(ForbiddenError):
        await certificates.revoke("CERT-AAAA-BBBB-CCCC", "someone-else")
    await certificates.revoke("CERT-AAAA-BBBB-CCCC", "owner")
    with pytest.raises(ConflictError):
        await certificates.revoke("CERT-AAAA-BBBB-CCCC", "owner")


async def test_list_for_user():
    await _issue()
    await _issue("CERT-DDDD-EEEE-FFFF", user_id="other")
    records = await certificates.list_for_user("owner")
    assert [r.certificate_id for r in records] == ["CERT-AAAA-BBBB-CCCC"]
