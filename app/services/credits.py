"""Credit ledger: balance checks, settlement of paid operations, purchases.

Every balance change goes through this module. Spending uses a conditional
decrement (`balance >= cost` in the filter) so two concurrent settles for the
same user can never take the balance below zero.
"""

from dataclasses import dataclass
from datetime import datetime

from pymongo import DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from app.core.exceptions import BadRequestError
from app.core.logging import get_logger
from app.models.credit_balance import CreditBalance
from app.models.credit_ledger import CreditTransaction, new_transaction_key

log = get_logger(__name__)

INSUFFICIENT_CREDITS = "insufficient_credits"
AUDIT_WRITE_FAILED = "audit_write_failed"


@dataclass(frozen=True)
class CreditCheck:
    sufficient: bool
    current: int


@dataclass(frozen=True)
class SettleResult:
    success: bool
    remaining: int
    error: str | None = None
    # Only meaningful when error == AUDIT_WRITE_FAILED
    compensated: bool = True


def _collection():
    return CreditBalance.get_motor_collection()


async def get_balance(user_id: str) -> int:
    """Return current balance, creating a zero balance row on first access."""
    now = datetime.utcnow()
    try:
        doc = await _collection().find_one_and_update(
            {"user_id": user_id},
            {"$setOnInsert": {"balance": 0, "created_at": now, "updated_at": now}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
    except DuplicateKeyError:
        # Lost a concurrent first-access race; the row exists now.
        doc = await _collection().find_one({"user_id": user_id})
    return int(doc["balance"]) if doc else 0


async def check_sufficient(user_id: str, cost: int) -> CreditCheck:
    current = await get_balance(user_id)
    return CreditCheck(sufficient=current >= cost, current=current)


async def settle(
    user_id: str,
    cost: int,
    reason: str,
    reference_type: str | None = None,
    reference_id: str | None = None,
) -> SettleResult:
    """Deduct `cost` and append the audit transaction.

    Insufficient balance leaves everything untouched. If the audit append fails the
    deduction is reversed with a relative increment; a failed reversal is escalated.
    """
    if cost <= 0:
        raise BadRequestError("Cost must be positive")
    now = datetime.utcnow()
    doc = await _collection().find_one_and_update(
        {"user_id": user_id, "balance": {"$gte": cost}},
        {"$inc": {"balance": -cost}, "$set": {"updated_at": now}},
        return_document=ReturnDocument.AFTER,
    )
    if doc is None:
        current = await get_balance(user_id)
        log.info("credits_insufficient", user_id=user_id, required=cost, available=current)
        return SettleResult(success=False, remaining=current, error=INSUFFICIENT_CREDITS)

    remaining = int(doc["balance"])
    try:
        await CreditTransaction(
            user_id=user_id,
            amount=-cost,
            balance_after=remaining,
            reason=reason,
            reference_type=reference_type,
            reference_id=reference_id,
        ).insert()
    except Exception as e:
        return await _compensate(user_id, cost, reason, e)

    log.info("credits_settled", user_id=user_id, cost=cost, remaining=remaining, reason=reason)
    return SettleResult(success=True, remaining=remaining)


async def _compensate(user_id: str, cost: int, reason: str, cause: Exception) -> SettleResult:
    try:
        doc = await _collection().find_one_and_update(
            {"user_id": user_id},
            {"$inc": {"balance": cost}, "$set": {"updated_at": datetime.utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
    except Exception as e:
        log.critical(
            "ledger_inconsistency",
            user_id=user_id,
            cost=cost,
            reason=reason,
            audit_error=str(cause),
            compensation_error=str(e),
        )
        _alert_monitoring(user_id, cost, reason)
        return SettleResult(success=False, remaining=-1, error=AUDIT_WRITE_FAILED, compensated=False)

    restored = int(doc["balance"]) if doc else 0
    log.warning("ledger_compensated", user_id=user_id, cost=cost, reason=reason, audit_error=str(cause))
    return SettleResult(success=False, remaining=restored, error=AUDIT_WRITE_FAILED, compensated=True)


def _alert_monitoring(user_id: str, cost: int, reason: str) -> None:
    import sentry_sdk

    with sentry_sdk.new_scope() as scope:
        scope.set_tag("ledger", "inconsistent")
        scope.set_extra("user_id", user_id)
        scope.set_extra("cost", cost)
        scope.set_extra("reason", reason)
        sentry_sdk.capture_message("Credit balance and ledger disagree", level="fatal")


async def grant(
    user_id: str,
    amount: int,
    reason: str,
    reference_type: str | None = None,
    reference_id: str | None = None,
    idempotency_key: str | None = None,
) -> tuple[CreditTransaction, int]:
    """
    Add credits (purchase, refund) and append the ledger entry.
    Returns (transaction, balance_after).
    Idempotency: the ledger row is inserted before the balance moves, and the unique
    index on idempotency_key means a second grant with the same key never applies.
    Without a key the row gets a fresh random one.
    """
    if amount <= 0:
        raise BadRequestError("Grant amount must be positive")
    if idempotency_key:
        existing = await CreditTransaction.find_one(CreditTransaction.idempotency_key == idempotency_key)
        if existing:
            return existing, await get_balance(user_id)

    entry = CreditTransaction(
        user_id=user_id,
        amount=amount,
        reason=reason,
        reference_type=reference_type,
        reference_id=reference_id,
        idempotency_key=idempotency_key or new_transaction_key(),
    )
    try:
        await entry.insert()
    except DuplicateKeyError:
        # A concurrent delivery claimed the key first
        log.info("credits_grant_duplicate", user_id=user_id, idempotency_key=idempotency_key)
        existing = await CreditTransaction.find_one(CreditTransaction.idempotency_key == idempotency_key)
        return existing, await get_balance(user_id)

    now = datetime.utcnow()
    try:
        doc = await _collection().find_one_and_update(
            {"user_id": user_id},
            {"$inc": {"balance": amount}, "$set": {"updated_at": now}, "$setOnInsert": {"created_at": now}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
    except Exception as e:
        await _withdraw(entry, e)
        raise
    balance_after = int(doc["balance"])
    await entry.set({CreditTransaction.balance_after: balance_after})
    log.info("credits_granted", user_id=user_id, amount=amount, balance=balance_after, reason=reason)
    return entry, balance_after


async def _withdraw(entry: CreditTransaction, cause: Exception) -> None:
    """Remove a grant row whose balance increment never happened."""
    try:
        await entry.delete()
    except Exception as e:
        log.critical(
            "ledger_inconsistency",
            user_id=entry.user_id,
            amount=entry.amount,
            reason=entry.reason,
            balance_error=str(cause),
            withdraw_error=str(e),
        )
        _alert_monitoring(entry.user_id, entry.amount, entry.reason)
        return
    log.warning("credits_grant_withdrawn", user_id=entry.user_id, amount=entry.amount, balance_error=str(cause))


async def refund(user_id: str, amount: int, reason: str, reference_id: str | None = None) -> bool:
    """Give back a settled charge whose operation failed afterwards. False if the ledger refused."""
    try:
        _, balance = await grant(user_id, amount, reason, reference_type="refund", reference_id=reference_id)
    except Exception as e:
        log.critical("refund_failed", user_id=user_id, amount=amount, reason=reason, error=str(e))
        _alert_monitoring(user_id, amount, reason)
        return False
    log.warning("credits_refunded", user_id=user_id, amount=amount, balance=balance, reason=reason)
    return True


async def list_transactions(user_id: str, limit: int = 50, offset: int = 0) -> list[CreditTransaction]:
    """Ledger entries for a user, newest first."""
    return (
        await CreditTransaction.find(CreditTransaction.user_id == user_id)
        .sort([("created_at", DESCENDING), ("_id", DESCENDING)])
        .skip(offset)
        .limit(limit)
        .to_list()
    )
