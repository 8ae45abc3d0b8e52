"""
Checkout and Stripe webhook routes.
"""
from fastapi import APIRouter, Body, Depends, Request
from starlette.concurrency import run_in_threadpool

from photovault.api.deps import get_payment_service
from photovault.models.account import Account
from photovault.schemas.billing import (
    CheckoutConfirmOut,
    CheckoutOut,
    CheckoutRequest,
    PortalOut,
    SubscriptionStatusOut,
)
from photovault.services.auth.jwt import get_current_account
from photovault.services.payments.service import PaymentService

router = APIRouter(tags=["billing"])


@router.post("/billing/checkout-session", response_model=CheckoutOut)
def create_checkout_session(
    body: CheckoutRequest = Body(...),
    account: Account = Depends(get_current_account),
    payments: PaymentService = Depends(get_payment_service),
):
    return payments.create_checkout_session(account, body.price_id)


@router.get("/billing/checkout-session/{session_id}", response_model=CheckoutConfirmOut)
def confirm_checkout_session(
    session_id: str,
    account: Account = Depends(get_current_account),
    payments: PaymentService = Depends(get_payment_service),
):
    return payments.confirm_checkout_session(session_id, account)


@router.get("/billing/subscription", response_model=SubscriptionStatusOut)
def get_subscription(
    account: Account = Depends(get_current_account),
    payments: PaymentService = Depends(get_payment_service),
):
    return {"subscription": payments.get_subscription(account)}


@router.post("/billing/portal-session", response_model=PortalOut)
def create_portal_session(
    account: Account = Depends(get_current_account),
    payments: PaymentService = Depends(get_payment_service),
):
    return payments.create_portal_session(account)


@router.post("/webhooks/stripe")
async def stripe_webhook(request: Request, payments: PaymentService = Depends(get_payment_service)):
    """Raw body is needed for signature verification; processing runs in the thread pool."""
    payload = await request.body()
    signature = request.headers.get("Stripe-Signature")
    outcome = await run_in_threadpool(payments.handle_webhook, payload, signature)
    return {"received": True, "duplicate": outcome.duplicate}
