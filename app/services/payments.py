"""Razorpay orders and webhook: credit packages, idempotent credit grant."""

import json
from dataclasses import asdict, dataclass
from typing import Any

from pymongo.errors import DuplicateKeyError

from app.core.audit import log_event
from app.core.config import get_settings
from app.core.exceptions import BadRequestError, NotFoundError
from app.core.logging import get_logger
from app.core.security import verify_razorpay_webhook
from app.models.payment_event import PaymentEvent
from app.models.payment_order import PaymentOrder
from app.services import credits as credits_service

log = get_logger(__name__)

CREDITING_EVENTS = ("payment.captured", "order.paid")


@dataclass(frozen=True)
class CreditPackage:
    id: str
    name: str
    credits: int
    amount: int  # cents
    currency: str = "USD"


# The package id doubles as the price identifier carried in order notes
PACKAGES: dict[str, CreditPackage] = {
    p.id: p
    for p in (
        CreditPackage("starter", "Starter", 100, 999),
        CreditPackage("pro", "Pro", 500, 3999),
        CreditPackage("business", "Business", 2000, 14999),
        CreditPackage("enterprise", "Enterprise", 10000, 49999),
    )
}


def list_packages() -> list[dict[str, Any]]:
    return [asdict(p) for p in PACKAGES.values()]


def _razorpay_client():
    import razorpay

    settings = get_settings()
    if not settings.razorpay_key_id or not settings.razorpay_key_secret:
        raise BadRequestError("Payments not configured")
    return razorpay.Client(auth=(settings.razorpay_key_id, settings.razorpay_key_secret))


async def create_order(user_id: str, package_id: str) -> dict[str, Any]:
    """Create Razorpay order; return order_id and amount for frontend."""
    package = PACKAGES.get(package_id)
    if package is None:
        raise NotFoundError("Unknown credit package")
    client = _razorpay_client()
    order = client.order.create(
        {
            "amount": package.amount,
            "currency": package.currency,
            "notes": {"user_id": user_id, "package_id": package.id},
        }
    )
    await PaymentOrder(
        order_id=order["id"],
        user_id=user_id,
        package_id=package.id,
        credits=package.credits,
        amount=package.amount,
        currency=package.currency,
    ).insert()
    log.info("payment_order_created", order_id=order["id"], package_id=package.id)
    return {
        "order_id": order["id"],
        "amount": order["amount"],
        "currency": order["currency"],
        "package_id": package.id,
        "credits": package.credits,
        "key_id": get_settings().razorpay_key_id,
    }


def _entities(data: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
    payload = data.get("payload") or {}
    payment = (payload.get("payment") or {}).get("entity") or {}
    order = (payload.get("order") or {}).get("entity") or {}
    return payment, order


async def _seen(event_id: str | None) -> bool:
    if not event_id:
        return False
    return await PaymentEvent.find_one(PaymentEvent.event_id == event_id) is not None


async def _remember_event(event_id: str | None, event_type: str, payment_id: str | None) -> None:
    # Recorded only after the grant so a failed delivery is retried by the provider
    if not event_id:
        return
    try:
        await PaymentEvent(event_id=event_id, event_type=event_type, payment_id=payment_id).insert()
    except DuplicateKeyError:
        log.info("payment_event_duplicate", event_id=event_id)


async def handle_webhook(payload: bytes, signature: str | None, event_id: str | None = None) -> dict[str, Any]:
    """Verify HMAC and grant the ordered package's credits once per payment.

    Returns a short status dict; retries of an already processed event or payment
    are acknowledged without touching the ledger.
    """
    settings = get_settings()
    if not settings.razorpay_webhook_secret:
        raise BadRequestError("Webhook secret not configured")
    if not signature or not verify_razorpay_webhook(payload, signature, settings.razorpay_webhook_secret):
        raise BadRequestError("Invalid webhook signature")
    try:
        data = json.loads(payload.decode())
    except ValueError as e:
        raise BadRequestError("Malformed webhook payload") from e

    event = data.get("event")
    if event not in CREDITING_EVENTS:
        return {"status": "ignored", "event": event}

    payment, order_entity = _entities(data)
    payment_id = payment.get("id")
    order_id = payment.get("order_id") or order_entity.get("id")
    if not payment_id or not order_id:
        raise BadRequestError("Webhook payload missing payment or order id")

    if await _seen(event_id):
        log.info("payment_event_duplicate", event_id=event_id)
        return {"status": "duplicate"}

    po = await PaymentOrder.find_one(PaymentOrder.order_id == order_id)
    if po is None:
        log.warning("payment_order_unknown", order_id=order_id, payment_id=payment_id)
        return {"status": "ignored", "event": event}
    package = PACKAGES.get(po.package_id)
    credits = package.credits if package else po.credits

    _, balance = await credits_service.grant(
        po.user_id,
        credits,
        f"Purchase: {po.package_id} package",
        reference_type="razorpay_payment",
        reference_id=payment_id,
        idempotency_key=f"razorpay_{payment_id}",
    )
    if po.status != "paid":
        po.status = "paid"
        await po.save()
        await log_event(
            po.user_id,
            "payment_captured",
            "payment",
            payment_id,
            {"order_id": order_id, "package_id": po.package_id, "credits": credits, "amount": payment.get("amount")},
        )
    await _remember_event(event_id, event, payment_id)
    log.info("payment_credited", user_id=po.user_id, payment_id=payment_id, credits=credits, balance=balance)
    return {"status": "ok", "credits": credits}
