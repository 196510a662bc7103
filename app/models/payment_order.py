from datetime import datetime

from beanie import Document, Indexed
from pydantic import Field


class PaymentOrder(Document):
    """Razorpay order_id -> user and credit package, for webhook attribution."""
    order_id: Indexed(str, unique=True)
    user_id: str
    package_id: str
    credits: int
    amount: int  # smallest currency unit
    currency: str = "USD"
    status: str = "created"  # created | paid
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "payment_orders"
