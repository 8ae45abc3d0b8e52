from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String, UniqueConstraint

from photovault.db.base import Base


KIND_EARNED = "earned"
KIND_SPENT = "spent"
KIND_REFUNDED = "refunded"

# Sign applied to `amount` when deriving the balance from the ledger.
KIND_SIGN = {KIND_EARNED: 1, KIND_SPENT: -1, KIND_REFUNDED: 1}


class LedgerEntry(Base):
    """Append-only credit ledger. Rows are never updated or deleted."""

    __tablename__ = "credit_ledger"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_credit_ledger_amount_positive"),
        UniqueConstraint("reservation_id", "kind", name="uq_credit_ledger_reservation_kind"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    account_id = Column(String, nullable=False, index=True)
    kind = Column(String, nullable=False)  # earned, spent, refunded
    amount = Column(Integer, nullable=False)
    reason = Column(String, nullable=False, default="")
    reservation_id = Column(String, nullable=True, index=True)
    idempotency_key = Column(String, unique=True, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    @property
    def signed_amount(self) -> int:
        return KIND_SIGN[self.kind] * self.amount
