"""Tests for token issue/verify, password hashing, login rate limit and AccountService."""
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
import redis
from jose import jwt

from photovault.core.config import settings
from photovault.core.errors import Conflict, NotFound, TokenExpired, Unauthorized
from photovault.services.accounts.service import AccountService
from photovault.services.auth.jwt import TOKEN_TYPE, create_access_token, verify_token
from photovault.services.auth.login_rate_limit import check_login_rate_limit, reset_login_attempts
from photovault.services.auth.passwords import hash_password, verify_password
from photovault.services.credits.service import CreditService


def _encode(claims: dict) -> str:
    return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


class TestTokens:
    def test_round_trip(self, make_account):
        account = make_account()
        issued = create_access_token(account)

        account_id, expires_at = verify_token(issued["token"])

        assert account_id == account.id
        assert int(expires_at.timestamp()) == issued["expires_at"]

    def test_expired_token(self):
        past = datetime.now(timezone.utc) - timedelta(hours=1)
        token = _encode({"sub": "acc-1", "type": TOKEN_TYPE, "exp": int(past.timestamp())})
        with pytest.raises(TokenExpired):
            verify_token(token)

    def test_wrong_token_type(self):
        future = datetime.now(timezone.utc) + timedelta(hours=1)
        token = _encode({"sub": "acc-1", "type": "refresh", "exp": int(future.timestamp())})
        with pytest.raises(Unauthorized):
            verify_token(token)

    def test_missing_subject(self):
        future = datetime.now(timezone.utc) + timedelta(hours=1)
        token = _encode({"type": TOKEN_TYPE, "exp": int(future.timestamp())})
        with pytest.raises(Unauthorized):
            verify_token(token)

    def test_foreign_signature(self):
        future = datetime.now(timezone.utc) + timedelta(hours=1)
        token = jwt.encode(
            {"sub": "acc-1", "type": TOKEN_TYPE, "exp": int(future.timestamp())},
            "another-secret-0123456789",
            algorithm="HS256",
        )
        with pytest.raises(Unauthorized):
            verify_token(token)

    def test_garbage(self):
        with pytest.raises(Unauthorized):
            verify_token("not-a-token")


class TestPasswords:
    def test_hash_and_verify(self):
        hashed = hash_password("correct horse")
        assert hashed != "correct horse"
        assert verify_password("correct horse", hashed)
        assert not verify_password("wrong horse", hashed)

    def test_missing_or_malformed_hash(self):
        assert not verify_password("anything", None)
        assert not verify_password("anything", "not-a-bcrypt-hash")


class TestLoginRateLimit:
    def test_disabled_without_redis(self):
        assert check_login_rate_limit(None, "10.0.0.1")

    def test_blocks_after_limit(self):
        client = MagicMock()
        client.incr.return_value = settings.login_rate_limit_attempts + 1
        assert not check_login_rate_limit(client, "10.0.0.1")

    def test_first_attempt_sets_window(self):
        client = MagicMock()
        client.incr.return_value = 1
        assert check_login_rate_limit(client, "10.0.0.1")
        client.expire.assert_called_once_with("login_attempts:10.0.0.1", settings.login_rate_limit_window_seconds)

    def test_fails_open(self):
        client = MagicMock()
        client.incr.side_effect = redis.ConnectionError("down")
        assert check_login_rate_limit(client, "10.0.0.1")

    def test_reset(self):
        client = MagicMock()
        reset_login_attempts(client, "10.0.0.1")
        client.delete.assert_called_once_with("login_attempts:10.0.0.1")


class TestAccountService:
    def test_register_and_authenticate(self, db):
        svc = AccountService(db)
        account = svc.register(" Alice@Example.com ", "s3cret-pass", name="Alice")

        assert account.email == "alice@example.com"
        assert account.credits == 0
        assert svc.authenticate("ALICE@example.com", "s3cret-pass").id == account.id

    def test_wrong_password(self, db):
        svc = AccountService(db)
        svc.register("bob@example.com", "s3cret-pass")
        with pytest.raises(Unauthorized):
            svc.authenticate("bob@example.com", "nope")
        with pytest.raises(Unauthorized):
            svc.authenticate("nobody@example.com", "nope")

    def test_duplicate_email(self, db):
        svc = AccountService(db)
        svc.register("carol@example.com", "s3cret-pass")
        with pytest.raises(Conflict):
            svc.register("Carol@example.com", "other-pass")

    def test_signup_bonus_is_ledgered(self, db, monkeypatch):
        monkeypatch.setattr(settings, "signup_bonus_credits", 5)
        account = AccountService(db).register("dave@example.com", "s3cret-pass")

        credits = CreditService(db)
        assert account.credits == 5
        assert credits.ledger_balance(account.id) == 5
        assert credits.verify_account(account.id)

    def test_deactivated_account_cannot_log_in_or_spend(self, db):
        svc = AccountService(db)
        account = svc.register("erin@example.com", "s3cret-pass")
        CreditService(db).credit(account.id, 10, reason="test funding")
        svc.deactivate(account.id)

        with pytest.raises(Unauthorized):
            svc.authenticate("erin@example.com", "s3cret-pass")
        with pytest.raises(NotFound):
            CreditService(db).reserve(account.id, 1)

    def test_federated_links_existing_email(self, db):
        svc = AccountService(db)
        account = svc.register("frank@example.com", "s3cret-pass")

        linked = svc.get_or_create_federated("google-123", "frank@example.com", name="Frank")
        again = svc.get_or_create_federated("google-123", "frank@example.com")

        assert linked.id == account.id == again.id
        assert linked.google_id == "google-123"

    def test_federated_creates_account(self, db):
        account = AccountService(db).get_or_create_federated("google-456", "Grace@Example.com")
        assert account.email == "grace@example.com"
        assert account.password_hash is None
