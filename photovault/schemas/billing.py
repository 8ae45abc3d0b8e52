from pydantic import BaseModel


class CheckoutRequest(BaseModel):
    price_id: str


class CheckoutOut(BaseModel):
    session_id: str
    url: str | None = None


class CheckoutConfirmOut(BaseModel):
    status: str
    credits_granted: int = 0
    subscription_id: str | None = None


class SubscriptionOut(BaseModel):
    id: str | None
    status: str | None
    current_period_start: int | None = None
    current_period_end: int | None = None
    cancel_at_period_end: bool = False
    price_id: str | None = None


class SubscriptionStatusOut(BaseModel):
    subscription: SubscriptionOut | None


class PortalOut(BaseModel):
    url: str
