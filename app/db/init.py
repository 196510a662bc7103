from typing import Any

import certifi
from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient

from app.core.config import get_settings
from app.core.logging import get_logger
from app.models.audit_log import AuditLog
from app.models.certificate_record import CertificateRecord
from app.models.credit_balance import CreditBalance
from app.models.credit_ledger import CreditTransaction
from app.models.payment_event import PaymentEvent
from app.models.payment_order import PaymentOrder
from app.models.pdf_template import PdfTemplate

DOCUMENT_MODELS = [
    CreditBalance,
    CreditTransaction,
    CertificateRecord,
    PaymentOrder,
    PaymentEvent,
    PdfTemplate,
    AuditLog,
]

log = get_logger(__name__)

_database: Any = None


def _use_tls(uri: str) -> bool:
    """True if URI uses TLS (Atlas or explicit tls=true). Avoids TLS for plain mongodb:// in CI."""
    return "mongodb+srv://" in uri or "tls=true" in uri.lower()


def create_client() -> AsyncIOMotorClient:
    settings = get_settings()
    # Atlas in Docker: tlsCAFile + tlsDisableOCSPEndpointCheck avoid TLSV1_ALERT_INTERNAL_ERROR
    kwargs: dict[str, Any] = {}
    if _use_tls(settings.mongodb_uri):
        kwargs["tlsCAFile"] = certifi.where()
        kwargs["tlsDisableOCSPEndpointCheck"] = True
    return AsyncIOMotorClient(settings.mongodb_uri, **kwargs)


async def init_db(client: Any | None = None) -> None:
    """Bind beanie documents to the configured database (or to the given client)."""
    settings = get_settings()
    if client is None:
        client = create_client()
    global _database
    database = client[settings.mongodb_db_name]
    _database = database
    await init_beanie(database=database, document_models=DOCUMENT_MODELS)


async def ping_db() -> bool:
    try:
        if _database is None:
            return False
        await _database.command("ping")
        return True
    except Exception as e:
        log.warning("db_ping_failed", error=str(e))
        return False
