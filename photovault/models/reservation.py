from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, Integer, String

from photovault.db.base import Base


STATUS_RESERVED = "reserved"
STATUS_CONSUMED = "consumed"
STATUS_REFUNDED = "refunded"


class Reservation(Base):
    """Pending debit. Moves reserved -> consumed | refunded exactly once."""

    __tablename__ = "credit_reservations"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    account_id = Column(String, nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    refunded_amount = Column(Integer, nullable=False, default=0)
    status = Column(String, nullable=False, default=STATUS_RESERVED, index=True)
    reason = Column(String, nullable=False, default="")
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    settled_at = Column(DateTime(timezone=True), nullable=True)

    @property
    def is_open(self) -> bool:
        return self.status == STATUS_RESERVED
