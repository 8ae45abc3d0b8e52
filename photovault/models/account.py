from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Integer, String

from photovault.db.base import Base


SUBSCRIPTION_NONE = "none"
SUBSCRIPTION_ACTIVE = "active"
SUBSCRIPTION_CANCELLED = "cancelled"


class Account(Base):
    __tablename__ = "accounts"
    __table_args__ = (CheckConstraint("credits >= 0", name="ck_accounts_credits_non_negative"),)

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    email = Column(String, unique=True, nullable=False, index=True)
    password_hash = Column(String, nullable=True)
    google_id = Column(String, unique=True, nullable=True)  # federated identity pointer
    name = Column(String, nullable=True)
    avatar_url = Column(String, nullable=True)
    # Mutated only through CreditService (conditional UPDATE statements).
    credits = Column(Integer, nullable=False, default=0)
    subscription_state = Column(String, nullable=False, default=SUBSCRIPTION_NONE)
    subscription_ref = Column(String, nullable=True, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def has_active_subscription(self) -> bool:
        return self.subscription_state == SUBSCRIPTION_ACTIVE and bool(self.subscription_ref)
