import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from photovault.models.usage_record import UsageRecord

logger = logging.getLogger(__name__)


class UsageRecorder:
    """Append-only audit trail of account actions. Not authoritative for balance."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def record(
        self,
        account_id: str,
        action: str,
        credits_involved: int = 0,
        detail: dict[str, Any] | None = None,
    ) -> UsageRecord:
        entry = UsageRecord(
            account_id=account_id,
            action=action,
            credits_involved=credits_involved,
            detail=detail or {},
        )
        self.db.add(entry)
        self.db.commit()
        return entry

    def record_safely(
        self,
        account_id: str,
        action: str,
        credits_involved: int = 0,
        detail: dict[str, Any] | None = None,
    ) -> UsageRecord | None:
        """Like record(), but a failing audit write never breaks the caller's flow."""
        try:
            return self.record(account_id, action, credits_involved, detail)
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("usage_record_failed", extra={"account_id": account_id, "reason": action})
            return None

    def list_for_account(self, account_id: str, limit: int = 50) -> list[UsageRecord]:
        return (
            self.db.query(UsageRecord)
            .filter(UsageRecord.account_id == account_id)
            .order_by(UsageRecord.created_at.desc())
            .limit(limit)
            .all()
        )
