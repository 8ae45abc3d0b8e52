"""
PaymentEvent: webhook events already handled.
provider_event_id is unique and doubles as the idempotency key of the webhook path.
"""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, Integer, String

from photovault.db.base import Base


class PaymentEvent(Base):
    __tablename__ = "payment_events"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    provider_event_id = Column(String, unique=True, nullable=False)
    event_type = Column(String, nullable=False)
    account_id = Column(String, nullable=True, index=True)
    price_id = Column(String, nullable=True)
    credits_granted = Column(Integer, nullable=False, default=0)
    status = Column(String, nullable=False, default="processed")  # processed / ignored
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
