"""
CreditService: the only writer of Account.credits.

Every balance change is a conditional UPDATE on the account row plus a ledger
entry, committed together. Lock and serialization errors roll back and retry
the conditional update; they never fall back to read-modify-write.
"""
import logging
import random
import time
from datetime import datetime, timezone
from typing import Callable, TypeVar
from uuid import uuid4

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from photovault.core.config import settings
from photovault.core.errors import InsufficientCredits, NotFound
from photovault.models.account import Account
from photovault.models.ledger_entry import KIND_EARNED, KIND_REFUNDED, KIND_SPENT, LedgerEntry
from photovault.models.reservation import (
    STATUS_CONSUMED,
    STATUS_REFUNDED,
    STATUS_RESERVED,
    Reservation,
)
from photovault.utils.metrics import (
    balance_rejected_total,
    credit_operations_total,
    credit_update_retries_total,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CreditService:
    def __init__(
        self,
        db: Session,
        max_retries: int | None = None,
        backoff_seconds: float | None = None,
    ):
        self.db = db
        self.max_retries = max_retries if max_retries is not None else settings.credit_update_max_retries
        self.backoff_seconds = (
            backoff_seconds if backoff_seconds is not None else settings.credit_update_retry_backoff_seconds
        )

    # ------------------------------------------------------------------
    # Debit / refund
    # ------------------------------------------------------------------

    def reserve(self, account_id: str, amount: int, reason: str = "generation") -> Reservation:
        """
        Debit `amount` credits into a new reservation.
        Raises InsufficientCredits when the balance is short, NotFound for an
        unknown or deactivated account.
        """
        if amount <= 0:
            raise ValueError("amount must be positive")

        def attempt() -> Reservation | None:
            result = self.db.execute(
                update(Account)
                .where(
                    Account.id == account_id,
                    Account.is_active.is_(True),
                    Account.credits >= amount,
                )
                .values(credits=Account.credits - amount)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                self.db.rollback()
                return None
            reservation = Reservation(
                id=str(uuid4()),
                account_id=account_id,
                amount=amount,
                status=STATUS_RESERVED,
                reason=reason,
            )
            self.db.add(reservation)
            self.db.add(
                LedgerEntry(
                    account_id=account_id,
                    kind=KIND_SPENT,
                    amount=amount,
                    reason=reason,
                    reservation_id=reservation.id,
                )
            )
            self.db.commit()
            return reservation

        reservation = self._with_retry(attempt, "reserve", account_id)
        if reservation is None:
            account = self._get_active_account(account_id)
            balance_rejected_total.inc()
            logger.info(
                "credits_insufficient",
                extra={"account_id": account_id, "amount": amount, "balance": account.credits},
            )
            raise InsufficientCredits(required=amount, available=account.credits)

        credit_operations_total.labels(operation="reserve").inc()
        logger.info(
            "credits_reserved",
            extra={"account_id": account_id, "reservation_id": reservation.id, "amount": amount},
        )
        return reservation

    def refund(self, reservation: Reservation, reason: str = "refund") -> bool:
        """
        Return the whole reservation to the balance.
        Idempotent: a reservation that is already consumed or refunded is left
        untouched and False is returned.
        """
        return self._close(reservation, used=0, reason=reason) is not None

    def settle(self, reservation: Reservation, used: int, reason: str = "unused credits") -> int:
        """
        Consume `used` credits of the reservation and refund the rest.
        used == 0 is a full refund. Returns the credits refunded by this call
        (0 when the reservation was already closed).
        """
        if used < 0 or used > reservation.amount:
            raise ValueError("used must be between 0 and the reserved amount")
        refunded = self._close(reservation, used=used, reason=reason)
        return refunded or 0

    def _close(self, reservation: Reservation, used: int, reason: str) -> int | None:
        reservation_id = reservation.id
        account_id = reservation.account_id
        refund_amount = reservation.amount - used
        new_status = STATUS_CONSUMED if used > 0 else STATUS_REFUNDED

        def attempt() -> int | None:
            result = self.db.execute(
                update(Reservation)
                .where(Reservation.id == reservation_id, Reservation.status == STATUS_RESERVED)
                .values(
                    status=new_status,
                    refunded_amount=refund_amount,
                    settled_at=datetime.now(timezone.utc),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                self.db.rollback()
                return None
            if refund_amount > 0:
                self.db.execute(
                    update(Account)
                    .where(Account.id == account_id)
                    .values(credits=Account.credits + refund_amount)
                    .execution_options(synchronize_session=False)
                )
                self.db.add(
                    LedgerEntry(
                        account_id=account_id,
                        kind=KIND_REFUNDED,
                        amount=refund_amount,
                        reason=reason,
                        reservation_id=reservation_id,
                    )
                )
            self.db.commit()
            return refund_amount

        refunded = self._with_retry(attempt, "settle", account_id)
        if reservation in self.db:
            self.db.refresh(reservation)
        if refunded is None:
            logger.info(
                "reservation_already_closed",
                extra={"account_id": account_id, "reservation_id": reservation_id},
            )
            return None

        credit_operations_total.labels(operation="consume" if used > 0 else "refund").inc()
        if refunded > 0 and used > 0:
            credit_operations_total.labels(operation="refund").inc()
        logger.info(
            "reservation_closed",
            extra={
                "account_id": account_id,
                "reservation_id": reservation_id,
                "state": new_status,
                "amount": reservation.amount,
                "refunded": refunded,
            },
        )
        return refunded

    # ------------------------------------------------------------------
    # Top-ups
    # ------------------------------------------------------------------

    def credit(
        self,
        account_id: str,
        amount: int,
        reason: str,
        idempotency_key: str | None = None,
    ) -> bool:
        """
        Add credits with an `earned` ledger entry.
        A repeated idempotency_key is logged and ignored (returns False).
        """
        if amount <= 0:
            raise ValueError("amount must be positive")
        if idempotency_key and self._key_applied(idempotency_key):
            logger.info(
                "credit_duplicate_ignored",
                extra={"account_id": account_id, "idempotency_key": idempotency_key},
            )
            return False

        def attempt() -> bool:
            result = self.db.execute(
                update(Account)
                .where(Account.id == account_id)
                .values(credits=Account.credits + amount)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                self.db.rollback()
                raise NotFound(f"Account {account_id} not found")
            self.db.add(
                LedgerEntry(
                    account_id=account_id,
                    kind=KIND_EARNED,
                    amount=amount,
                    reason=reason,
                    idempotency_key=idempotency_key,
                )
            )
            self.db.flush()
            self.db.commit()
            return True

        try:
            self._with_retry(attempt, "credit", account_id)
        except IntegrityError:
            # Concurrent delivery of the same key won the unique constraint.
            self.db.rollback()
            logger.warning(
                "credit_duplicate_race",
                extra={"account_id": account_id, "idempotency_key": idempotency_key},
            )
            return False

        credit_operations_total.labels(operation="credit").inc()
        logger.info(
            "credits_earned",
            extra={
                "account_id": account_id,
                "amount": amount,
                "reason": reason,
                "idempotency_key": idempotency_key,
            },
        )
        return True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_balance(self, account_id: str) -> int:
        balance = self.db.execute(select(Account.credits).where(Account.id == account_id)).scalar_one_or_none()
        if balance is None:
            raise NotFound(f"Account {account_id} not found")
        return int(balance)

    def ledger_balance(self, account_id: str) -> int:
        """Signed sum of the ledger; must always equal Account.credits."""
        signed = case((LedgerEntry.kind == KIND_SPENT, -LedgerEntry.amount), else_=LedgerEntry.amount)
        total = self.db.execute(
            select(func.coalesce(func.sum(signed), 0)).where(LedgerEntry.account_id == account_id)
        ).scalar()
        return int(total or 0)

    def verify_account(self, account_id: str) -> bool:
        balance = self.get_balance(account_id)
        derived = self.ledger_balance(account_id)
        if balance != derived:
            logger.error(
                "ledger_mismatch",
                extra={"account_id": account_id, "balance": balance, "amount": derived},
            )
            return False
        return True

    def list_entries(self, account_id: str, limit: int = 50) -> list[LedgerEntry]:
        return (
            self.db.query(LedgerEntry)
            .filter(LedgerEntry.account_id == account_id)
            .order_by(LedgerEntry.created_at.desc())
            .limit(limit)
            .all()
        )

    def get_reservation(self, reservation_id: str) -> Reservation | None:
        return self.db.query(Reservation).filter(Reservation.id == reservation_id).one_or_none()

    # ------------------------------------------------------------------
    # Saga recovery
    # ------------------------------------------------------------------

    def release_stale(self, older_than: datetime) -> int:
        """Refund reservations left open past the cut-off (e.g. a worker died mid-flight)."""
        stale = (
            self.db.query(Reservation)
            .filter(Reservation.status == STATUS_RESERVED, Reservation.created_at < older_than)
            .order_by(Reservation.created_at)
            .all()
        )
        released = 0
        for reservation in stale:
            if self.refund(reservation, reason="stale reservation released"):
                released += 1
        if released:
            logger.warning("stale_reservations_released", extra={"count": released})
        return released

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _get_active_account(self, account_id: str) -> Account:
        account = (
            self.db.query(Account)
            .filter(Account.id == account_id)
            .populate_existing()
            .one_or_none()
        )
        if account is None or not account.is_active:
            raise NotFound(f"Account {account_id} not found")
        return account

    def _key_applied(self, idempotency_key: str) -> bool:
        stmt = select(LedgerEntry.id).where(LedgerEntry.idempotency_key == idempotency_key).exists()
        return bool(self.db.query(stmt).scalar())

    def _with_retry(self, fn: Callable[[], T], operation: str, account_id: str) -> T:
        attempt = 0
        while True:
            attempt += 1
            try:
                return fn()
            except OperationalError as e:
                self.db.rollback()
                if attempt >= self.max_retries:
                    logger.error(
                        "credit_update_retries_exhausted",
                        extra={"account_id": account_id, "attempt": attempt, "error": str(e)},
                    )
                    raise
                credit_update_retries_total.inc()
                delay = self.backoff_seconds * attempt + random.uniform(0, self.backoff_seconds)
                logger.warning(
                    "credit_update_retry",
                    extra={
                        "account_id": account_id,
                        "reason": operation,
                        "attempt": attempt,
                        "max_attempts": self.max_retries,
                        "delay_seconds": round(delay, 3),
                    },
                )
                time.sleep(delay)
