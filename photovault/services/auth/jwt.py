"""
Bearer token issue/verify for API authentication.
"""
from datetime import datetime, timedelta, timezone

from fastapi import Depends, Request
from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy.orm import Session

from photovault.core.config import settings
from photovault.core.errors import TokenExpired, Unauthorized
from photovault.db.session import get_db
from photovault.models.account import Account

TOKEN_TYPE = "pv_access"


def create_access_token(account: Account, expires_hours: int | None = None) -> dict:
    """Signed token for account; returns {"token", "expires_at"}."""
    now = datetime.now(timezone.utc)
    ttl_hours = int(expires_hours or settings.jwt_expiration_hours)
    expires_at = now + timedelta(hours=max(ttl_hours, 1))
    claims = {
        "sub": account.id,
        "email": account.email,
        "type": TOKEN_TYPE,
        "iat": int(now.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    token = jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)
    return {"token": token, "expires_at": int(expires_at.timestamp())}


def verify_token(token: str) -> tuple[str, datetime]:
    """Returns (account_id, expiry). Raises TokenExpired or Unauthorized."""
    try:
        payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except ExpiredSignatureError as exc:
        raise TokenExpired("Token has expired") from exc
    except JWTError as exc:
        raise Unauthorized("Invalid token") from exc

    if payload.get("type") != TOKEN_TYPE:
        raise Unauthorized("Invalid token type")
    subject = str(payload.get("sub", "")).strip()
    if not subject:
        raise Unauthorized("Token missing subject")
    return subject, datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc)


def _bearer_token(request: Request) -> str:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise Unauthorized("Missing bearer token")
    return token.strip()


def get_current_account(request: Request, db: Session = Depends(get_db)) -> Account:
    """FastAPI dependency: the active account behind the bearer token."""
    account_id, _ = verify_token(_bearer_token(request))
    account = db.query(Account).filter(Account.id == account_id).one_or_none()
    if account is None or not account.is_active:
        raise Unauthorized("Account not found or disabled")
    return account
