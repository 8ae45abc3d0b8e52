import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from photovault.core.config import settings
from photovault.core.errors import Conflict, NotFound, Unauthorized
from photovault.models.account import Account
from photovault.services.auth.passwords import hash_password, verify_password
from photovault.services.credits.service import CreditService

logger = logging.getLogger(__name__)


def _normalize_email(email: str) -> str:
    return email.strip().lower()


class AccountService:
    def __init__(self, db: Session):
        self.db = db

    def get(self, account_id: str) -> Account:
        account = self.db.query(Account).filter(Account.id == account_id).one_or_none()
        if account is None:
            raise NotFound(f"Account {account_id} not found")
        return account

    def get_by_email(self, email: str) -> Account | None:
        return self.db.query(Account).filter(Account.email == _normalize_email(email)).one_or_none()

    def register(self, email: str, password: str, name: str | None = None) -> Account:
        """Create a password account. Conflict if the email is taken."""
        email = _normalize_email(email)
        if self.get_by_email(email) is not None:
            raise Conflict("An account with this email already exists")
        account = Account(email=email, password_hash=hash_password(password), name=name, credits=0)
        self.db.add(account)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise Conflict("An account with this email already exists") from e
        self.db.refresh(account)
        logger.info("account_registered", extra={"account_id": account.id})
        self._grant_signup_bonus(account)
        return account

    def authenticate(self, email: str, password: str) -> Account:
        account = self.get_by_email(email)
        if account is None or not verify_password(password, account.password_hash):
            raise Unauthorized("Invalid email or password")
        if not account.is_active:
            raise Unauthorized("Account is disabled")
        return account

    def get_or_create_federated(
        self,
        google_id: str,
        email: str,
        name: str | None = None,
        avatar_url: str | None = None,
    ) -> Account:
        """Resolve a federated identity; links to an existing email account when one exists."""
        account = self.db.query(Account).filter(Account.google_id == google_id).one_or_none()
        if account is not None:
            return account
        account = self.get_by_email(email)
        if account is not None:
            account.google_id = google_id
            account.name = account.name or name
            account.avatar_url = account.avatar_url or avatar_url
            self.db.add(account)
            self.db.commit()
            self.db.refresh(account)
            logger.info("account_federation_linked", extra={"account_id": account.id})
            return account
        account = Account(
            email=_normalize_email(email),
            google_id=google_id,
            name=name,
            avatar_url=avatar_url,
            credits=0,
        )
        self.db.add(account)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise Conflict("Account already exists") from e
        self.db.refresh(account)
        logger.info("account_registered", extra={"account_id": account.id, "provider": "google"})
        self._grant_signup_bonus(account)
        return account

    def deactivate(self, account_id: str) -> Account:
        account = self.get(account_id)
        account.is_active = False
        self.db.add(account)
        self.db.commit()
        self.db.refresh(account)
        logger.info("account_deactivated", extra={"account_id": account_id})
        return account

    def _grant_signup_bonus(self, account: Account) -> None:
        bonus = settings.signup_bonus_credits
        if bonus <= 0:
            return
        CreditService(self.db).credit(
            account.id, bonus, reason="signup bonus", idempotency_key=f"signup:{account.id}"
        )
        self.db.refresh(account)
