"""
Celery beat tasks for the credit ledger:
- release reservations left open by a process that died mid-generation
- compare every account balance with its ledger
"""
import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import sessionmaker

from photovault.core.celery_app import celery_app
from photovault.core.config import settings
from photovault.db.session import build_engine, build_session_factory
from photovault.models.account import Account
from photovault.services.credits.service import CreditService

logger = logging.getLogger(__name__)

_session_factory: sessionmaker | None = None


def _get_session_factory() -> sessionmaker:
    """One engine per worker process, created on first use."""
    global _session_factory
    if _session_factory is None:
        _session_factory = build_session_factory(build_engine(settings.database_url))
    return _session_factory


@celery_app.task(
    name="photovault.workers.tasks.reservations.release_stale_reservations",
    time_limit=120,
    soft_time_limit=110,
)
def release_stale_reservations() -> dict:
    """Refund reservations still open after stale_reservation_minutes."""
    db = _get_session_factory()()
    try:
        cutoff = datetime.now(timezone.utc) - timedelta(minutes=settings.stale_reservation_minutes)
        released = CreditService(db).release_stale(cutoff)
        return {"ok": True, "released": released}
    finally:
        db.close()


@celery_app.task(
    name="photovault.workers.tasks.reservations.verify_ledger_balances",
    time_limit=600,
    soft_time_limit=590,
)
def verify_ledger_balances() -> dict:
    """Log every account whose balance disagrees with its ledger."""
    db = _get_session_factory()()
    try:
        service = CreditService(db)
        account_ids = [row[0] for row in db.query(Account.id).all()]
        mismatched = [account_id for account_id in account_ids if not service.verify_account(account_id)]
        if mismatched:
            logger.error("ledger_verification_failed", extra={"count": len(mismatched)})
        return {"ok": not mismatched, "checked": len(account_ids), "mismatched": len(mismatched)}
    finally:
        db.close()
