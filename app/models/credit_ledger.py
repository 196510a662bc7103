from datetime import datetime
from uuid import uuid4

from beanie import Document, Indexed
from pydantic import Field


def new_transaction_key() -> str:
    return f"txn_{uuid4().hex}"


class CreditTransaction(Document):
    """Append-only audit row for every balance change."""
    user_id: str
    amount: int  # positive = purchase/grant/refund, negative = spend
    balance_after: int | None = None
    reason: str  # e.g. "PDF merge: merged_2_documents.pdf", "purchase"
    reference_type: str | None = None  # operation, razorpay_payment, refund, ...
    reference_id: str | None = None
    # Caller key for purchases (razorpay_<payment id>), otherwise random; one row per key
    idempotency_key: Indexed(str, unique=True) = Field(default_factory=new_transaction_key)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "credit_transactions"
        indexes = [
            [("user_id", 1), ("created_at", -1)],
        ]
