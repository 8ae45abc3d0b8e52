from datetime import datetime

from pydantic import BaseModel, EmailStr, Field


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)
    name: str | None = Field(default=None, max_length=200)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class AccountOut(BaseModel):
    id: str
    email: str
    name: str | None
    avatar_url: str | None
    credits: int
    subscription_state: str
    created_at: datetime

    model_config = {"from_attributes": True}


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_at: int
    account: AccountOut


class CreditsOut(BaseModel):
    credits: int


class LedgerEntryOut(BaseModel):
    """One credit transaction."""
    id: str
    kind: str
    amount: int
    reason: str | None
    reservation_id: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class UsageRecordOut(BaseModel):
    id: str
    action: str
    credits_involved: int
    detail: dict
    created_at: datetime

    model_config = {"from_attributes": True}
