"""Tests for CreditService: reservations, refunds, idempotent top-ups, ledger consistency."""
import threading
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from photovault.core.errors import InsufficientCredits, NotFound
from photovault.db.base import Base
from photovault.db.session import build_engine, build_session_factory
from photovault.models.account import Account
from photovault.models.ledger_entry import KIND_EARNED, KIND_REFUNDED, KIND_SPENT, LedgerEntry
from photovault.models.reservation import STATUS_CONSUMED, STATUS_REFUNDED, STATUS_RESERVED, Reservation
from photovault.services.credits.service import CreditService


class TestReserve:
    def test_reserve_debits_balance(self, db, make_account):
        account = make_account(credits=10)
        svc = CreditService(db)

        reservation = svc.reserve(account.id, 4)

        assert reservation.status == STATUS_RESERVED
        assert reservation.amount == 4
        assert svc.get_balance(account.id) == 6

    def test_insufficient_credits_leaves_balance(self, db, make_account):
        account = make_account(credits=5)
        svc = CreditService(db)

        with pytest.raises(InsufficientCredits) as exc_info:
            svc.reserve(account.id, 10)

        assert exc_info.value.required == 10
        assert exc_info.value.available == 5
        assert exc_info.value.to_dict()["redirect_to_pricing"] is True
        assert svc.get_balance(account.id) == 5
        assert db.query(Reservation).count() == 0

    def test_reserve_exact_balance(self, db, make_account):
        account = make_account(credits=3)
        svc = CreditService(db)
        svc.reserve(account.id, 3)
        assert svc.get_balance(account.id) == 0

    def test_reserve_unknown_account(self, db):
        with pytest.raises(NotFound):
            CreditService(db).reserve("missing", 1)

    def test_reserve_deactivated_account(self, db, make_account):
        account = make_account(credits=10)
        account.is_active = False
        db.commit()
        with pytest.raises(NotFound):
            CreditService(db).reserve(account.id, 1)

    def test_reserve_rejects_non_positive_amount(self, db, make_account):
        account = make_account(credits=10)
        with pytest.raises(ValueError):
            CreditService(db).reserve(account.id, 0)


class TestRefundAndSettle:
    def test_refund_restores_balance(self, db, make_account):
        account = make_account(credits=10)
        svc = CreditService(db)
        reservation = svc.reserve(account.id, 7)

        assert svc.refund(reservation) is True

        assert svc.get_balance(account.id) == 10
        assert reservation.status == STATUS_REFUNDED
        assert reservation.refunded_amount == 7

    def test_refund_twice_is_refund_once(self, db, make_account):
        account = make_account(credits=10)
        svc = CreditService(db)
        reservation = svc.reserve(account.id, 7)

        assert svc.refund(reservation) is True
        assert svc.refund(reservation) is False

        assert svc.get_balance(account.id) == 10
        refunds = db.query(LedgerEntry).filter(LedgerEntry.kind == KIND_REFUNDED).count()
        assert refunds == 1

    def test_settle_partial_refunds_unused(self, db, make_account):
        account = make_account(credits=10)
        svc = CreditService(db)
        reservation = svc.reserve(account.id, 10)

        refunded = svc.settle(reservation, used=7)

        assert refunded == 3
        assert svc.get_balance(account.id) == 3
        assert reservation.status == STATUS_CONSUMED

    def test_settle_fully_used_writes_no_refund_entry(self, db, make_account):
        account = make_account(credits=10)
        svc = CreditService(db)
        reservation = svc.reserve(account.id, 4)

        assert svc.settle(reservation, used=4) == 0

        assert svc.get_balance(account.id) == 6
        assert db.query(LedgerEntry).filter(LedgerEntry.kind == KIND_REFUNDED).count() == 0

    def test_settle_after_refund_is_noop(self, db, make_account):
        account = make_account(credits=10)
        svc = CreditService(db)
        reservation = svc.reserve(account.id, 5)
        svc.refund(reservation)

        assert svc.settle(reservation, used=5) == 0
        assert svc.get_balance(account.id) == 10

    def test_settle_rejects_used_above_amount(self, db, make_account):
        account = make_account(credits=10)
        svc = CreditService(db)
        reservation = svc.reserve(account.id, 2)
        with pytest.raises(ValueError):
            svc.settle(reservation, used=3)


class TestCredit:
    def test_credit_with_same_key_applies_once(self, db, make_account):
        account = make_account()
        svc = CreditService(db)

        assert svc.credit(account.id, 50, "purchase", idempotency_key="checkout:cs_1") is True
        assert svc.credit(account.id, 50, "purchase", idempotency_key="checkout:cs_1") is False

        assert svc.get_balance(account.id) == 50
        assert db.query(LedgerEntry).filter(LedgerEntry.kind == KIND_EARNED).count() == 1

    def test_credit_without_key_always_applies(self, db, make_account):
        account = make_account()
        svc = CreditService(db)
        svc.credit(account.id, 5, "bonus")
        svc.credit(account.id, 5, "bonus")
        assert svc.get_balance(account.id) == 10

    def test_credit_unknown_account(self, db):
        with pytest.raises(NotFound):
            CreditService(db).credit("missing", 5, "bonus")


class TestLedgerConsistency:
    def test_balance_equals_credits_minus_unrefunded_reserves(self, db, make_account):
        account = make_account(credits=20)
        svc = CreditService(db)
        svc.credit(account.id, 30, "purchase", idempotency_key="k1")
        r1 = svc.reserve(account.id, 10)
        r2 = svc.reserve(account.id, 15)
        r3 = svc.reserve(account.id, 5)
        svc.refund(r1)
        svc.settle(r2, used=9)
        svc.settle(r3, used=5)

        # 20 + 30 - (10 - 10) - (15 - 6) - 5
        assert svc.get_balance(account.id) == 36
        assert svc.ledger_balance(account.id) == 36
        assert svc.verify_account(account.id) is True

    def test_verify_account_detects_drift(self, db, make_account):
        account = make_account(credits=10)
        account.credits = 99
        db.commit()
        assert CreditService(db).verify_account(account.id) is False

    def test_list_entries_returns_account_history(self, db, make_account):
        account = make_account(credits=10)
        other = make_account(credits=3)
        svc = CreditService(db)
        svc.reserve(account.id, 2)

        entries = svc.list_entries(account.id)

        assert sorted(e.kind for e in entries) == [KIND_EARNED, KIND_SPENT]
        assert all(e.account_id == account.id for e in entries)
        assert len(svc.list_entries(other.id)) == 1


class TestReleaseStale:
    def test_release_stale_refunds_only_old_open_reservations(self, db, make_account):
        account = make_account(credits=10)
        svc = CreditService(db)
        old = svc.reserve(account.id, 3)
        fresh = svc.reserve(account.id, 2)
        old.created_at = datetime.now(timezone.utc) - timedelta(hours=2)
        db.commit()

        released = svc.release_stale(datetime.now(timezone.utc) - timedelta(minutes=30))

        assert released == 1
        assert svc.get_reservation(old.id).status == STATUS_REFUNDED
        assert svc.get_reservation(fresh.id).status == STATUS_RESERVED
        assert svc.get_balance(account.id) == 8


class TestRetry:
    def test_operational_error_is_retried(self):
        db = MagicMock()
        svc = CreditService(db, max_retries=3, backoff_seconds=0)
        fn = MagicMock(side_effect=[OperationalError("UPDATE", {}, Exception("locked")), "ok"])

        assert svc._with_retry(fn, "reserve", "acc") == "ok"
        assert fn.call_count == 2
        db.rollback.assert_called_once()

    def test_retries_exhausted_reraises(self):
        db = MagicMock()
        svc = CreditService(db, max_retries=2, backoff_seconds=0)
        fn = MagicMock(side_effect=OperationalError("UPDATE", {}, Exception("locked")))

        with pytest.raises(OperationalError):
            svc._with_retry(fn, "reserve", "acc")
        assert fn.call_count == 2


class TestConcurrentReserve:
    def test_two_concurrent_reserves_only_one_wins(self, tmp_path):
        engine = build_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
        Base.metadata.create_all(engine)
        factory = build_session_factory(engine)
        setup = factory()
        account = Account(email="race@example.com")
        setup.add(account)
        setup.commit()
        CreditService(setup).credit(account.id, 10, "funding")
        account_id = account.id
        setup.close()

        barrier = threading.Barrier(2)
        results: list[str] = []
        lock = threading.Lock()

        def worker():
            session = factory()
            try:
                barrier.wait()
                CreditService(session, max_retries=50, backoff_seconds=0.01).reserve(account_id, 6)
                outcome = "ok"
            except InsufficientCredits:
                outcome = "insufficient"
            finally:
                session.close()
            with lock:
                results.append(outcome)

        threads = [threading.Thread(target=worker) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(30)

        check = factory()
        try:
            assert sorted(results) == ["insufficient", "ok"]
            assert CreditService(check).get_balance(account_id) == 4
            assert CreditService(check).verify_account(account_id) is True
        finally:
            check.close()
            engine.dispose()
