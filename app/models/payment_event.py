from datetime import datetime

from beanie import Document, Indexed
from pydantic import Field


class PaymentEvent(Document):
    """Provider webhook event already processed; makes delivery retries no-ops."""
    event_id: Indexed(str, unique=True)
    event_type: str
    payment_id: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "payment_events"
