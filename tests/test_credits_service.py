"""Unit tests for the credit ledger (in-memory MongoDB)."""

import asyncio

import pytest
from pymongo.errors import DuplicateKeyError

from app.core.exceptions import BadRequestError
from app.models.credit_ledger import CreditTransaction
from app.services import credits as credits_service


async def test_get_balance_empty():
    assert await credits_service.get_balance("new-user") == 0
    # The zero row is created once and reused
    assert await credits_service.get_balance("new-user") == 0


async def test_grant_is_idempotent():
    entry, balance_after = await credits_service.grant("u1", 100, "purchase", idempotency_key="test-key-1")
    assert entry.amount == 100
    assert balance_after == 100
    # Idempotency: same key should not double-apply
    entry2, balance2 = await credits_service.grant("u1", 100, "purchase", idempotency_key="test-key-1")
    assert balance2 == 100
    assert entry.id == entry2.id


async def test_grant_rejects_non_positive():
    with pytest.raises(BadRequestError):
        await credits_service.grant("u1", 0, "nothing")


async def test_check_sufficient():
    await credits_service.grant("u1", 3, "seed")
    assert (await credits_service.check_sufficient("u1", 3)).sufficient
    check = await credits_service.check_sufficient("u1", 4)
    assert not check.sufficient
    assert check.current == 3


async def test_settle_deducts_and_logs():
    await credits_service.grant("u1", 10, "seed")
    result = await credits_service.settle("u1", 3, "PDF sign: contract.pdf", reference_type="operation")
    assert result.success
    assert result.remaining == 7
    assert await credits_service.get_balance("u1") == 7
    entries = await credits_service.list_transactions("u1")
    assert entries[0].amount == -3
    assert entries[0].balance_after == 7
    assert entries[0].reason == "PDF sign: contract.pdf"


async def test_settle_insufficient_leaves_state_untouched():
    await credits_service.grant("u1", 2, "seed")
    result = await credits_service.settle("u1", 3, "PDF sign: contract.pdf")
    assert not result.success
    assert result.error == credits_service.INSUFFICIENT_CREDITS
    assert result.remaining == 2
    assert await credits_service.get_balance("u1") == 2
    assert await CreditTransaction.find(CreditTransaction.amount < 0).count() == 0


async def test_concurrent_settles_never_overspend():
    await credits_service.grant("u1", 3, "seed")
    results = await asyncio.gather(*(credits_service.settle("u1", 1, "PDF rotate: a.pdf") for _ in range(6)))
    assert sum(r.success for r in results) == 3
    assert await credits_service.get_balance("u1") == 0


async def test_audit_failure_is_compensated(monkeypatch):
    await credits_service.grant("u1", 5, "seed")

    async def broken_insert(self, *args, **kwargs):
        raise ConnectionError("audit store down")

    monkeypatch.setattr(CreditTransaction, "insert", broken_insert)
    result = await credits_service.settle("u1", 3, "PDF compress: a.pdf")
    assert not result.success
    assert result.error == credits_service.AUDIT_WRITE_FAILED
    assert result.compensated
    assert result.remaining == 5
    assert await credits_service.get_balance("u1") == 5


async def test_failed_compensation_alerts(monkeypatch):
    await credits_service.grant("u1", 5, "seed")
    real_collection = credits_service._collection

    class RefundFails:
        def __init__(self, inner):
            self.inner = inner

        async def find_one_and_update(self, filter, update, **kwargs):
            if update.get("$inc", {}).get("balance", 0) > 0:
                raise ConnectionError("primary stepped down")
            return await self.inner.find_one_and_update(filter, update, **kwargs)

        async def find_one(self, *args, **kwargs):
            return await self.inner.find_one(*args, **kwargs)

    async def broken_insert(self, *args, **kwargs):
        raise ConnectionError("audit store down")

    alerts = []
    monkeypatch.setattr(credits_service, "_collection", lambda: RefundFails(real_collection()))
    monkeypatch.setattr(CreditTransaction, "insert", broken_insert)
    monkeypatch.setattr(credits_service, "_alert_monitoring", lambda *a: alerts.append(a))

    result = await credits_service.settle("u1", 3, "PDF compress: a.pdf")
    assert not result.success
    assert not result.compensated
    assert alerts == [("u1", 3, "PDF compress: a.pdf")]


async def test_list_transactions_newest_first():
    await credits_service.grant("u1", 10, "seed")
    await credits_service.settle("u1", 1, "first")
    await credits_service.settle("u1", 2, "second")
    entries = await credits_service.list_transactions("u1", limit=2)
    assert [e.reason for e in entries] == ["second", "first"]


async def test_idempotency_key_is_unique_in_ledger():
    await credits_service.grant("u1", 10, "purchase", idempotency_key="razorpay_pay_9")
    with pytest.raises(DuplicateKeyError):
        await CreditTransaction(user_id="u2", amount=10, reason="purchase", idempotency_key="razorpay_pay_9").insert()
    # Rows without a key never collide
    await credits_service.grant("u1", 1, "bonus")
    await credits_service.grant("u1", 1, "bonus")
    assert await credits_service.get_balance("u1") == 12


async def test_grant_lost_race_does_not_double_apply(monkeypatch):
    await credits_service.grant("u1", 100, "purchase", idempotency_key="razorpay_pay_7")
    real_find_one = CreditTransaction.find_one
    lookups = []

    def stale_find_one(*args, **kwargs):
        # First lookup misses, as if the other delivery had not committed yet
        lookups.append(args)
        if len(lookups) == 1:
            return real_find_one(CreditTransaction.reason == "no such row")
        return real_find_one(*args, **kwargs)

    monkeypatch.setattr(CreditTransaction, "find_one", stale_find_one)
    entry, balance = await credits_service.grant("u1", 100, "purchase", idempotency_key="razorpay_pay_7")
    assert balance == 100
    assert entry.idempotency_key == "razorpay_pay_7"


async def test_grant_withdraws_row_when_balance_update_fails(monkeypatch):
    class Down:
        async def find_one_and_update(self, *args, **kwargs):
            raise ConnectionError("primary stepped down")

    monkeypatch.setattr(credits_service, "_collection", lambda: Down())
    with pytest.raises(ConnectionError):
        await credits_service.grant("u1", 50, "purchase", idempotency_key="razorpay_pay_5")
    assert await CreditTransaction.find(CreditTransaction.idempotency_key == "razorpay_pay_5").count() == 0


async def test_refund_restores_settled_charge():
    await credits_service.grant("u1", 5, "seed")
    await credits_service.settle("u1", 3, "PDF sign: a.pdf")
    assert await credits_service.refund("u1", 3, "Refund PDF sign: a.pdf", reference_id="sign")
    assert await credits_service.get_balance("u1") == 5
    entry = (await credits_service.list_transactions("u1", limit=1))[0]
    assert entry.reference_type == "refund"
    assert entry.balance_after == 5
