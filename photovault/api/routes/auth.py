"""
Account authentication routes (JWT bearer tokens).
Password login is rate limited per client IP.
"""
from fastapi import APIRouter, Body, Depends, Request

from photovault.api.deps import get_account_service, get_container
from photovault.core.container import ServiceContainer
from photovault.core.errors import RateLimited
from photovault.models.account import Account
from photovault.schemas.accounts import AccountOut, LoginRequest, RegisterRequest, TokenOut
from photovault.services.accounts.service import AccountService
from photovault.services.auth.jwt import create_access_token, get_current_account
from photovault.services.auth.login_rate_limit import (
    check_login_rate_limit,
    get_client_ip,
    reset_login_attempts,
)

router = APIRouter(prefix="/auth", tags=["auth"])


def _token_response(account: Account) -> dict:
    token = create_access_token(account)
    return {
        "access_token": token["token"],
        "token_type": "bearer",
        "expires_at": token["expires_at"],
        "account": AccountOut.model_validate(account),
    }


@router.post("/register", response_model=TokenOut, status_code=201)
def register(body: RegisterRequest = Body(...), accounts: AccountService = Depends(get_account_service)):
    account = accounts.register(body.email, body.password, body.name)
    return _token_response(account)


@router.post("/login", response_model=TokenOut)
def login(
    request: Request,
    body: LoginRequest = Body(...),
    accounts: AccountService = Depends(get_account_service),
    container: ServiceContainer = Depends(get_container),
):
    client_ip = get_client_ip(request)
    if not check_login_rate_limit(container.redis, client_ip):
        raise RateLimited("Too many login attempts. Try again later.")
    account = accounts.authenticate(body.email, body.password)
    reset_login_attempts(container.redis, client_ip)
    return _token_response(account)


@router.get("/me", response_model=AccountOut)
def me(account: Account = Depends(get_current_account)):
    return account
