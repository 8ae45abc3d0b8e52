"""
PaymentService: Stripe webhook processing and hosted checkout.

Credits are only ever granted through CreditService.credit with the key
"checkout:<session id>", shared by the webhook and the manual confirm path,
so a purchase is credited once no matter how many times either path runs.
"""
import logging
from dataclasses import dataclass
from typing import Any

import redis
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from photovault.core.config import settings
from photovault.core.errors import Conflict, InvalidRequest, InvalidWebhookSignature, NotFound, RateLimited
from photovault.models.account import SUBSCRIPTION_ACTIVE, SUBSCRIPTION_CANCELLED, Account
from photovault.models.payment_event import PaymentEvent
from photovault.services.credits.service import CreditService
from photovault.services.payments.gateway import StripeGateway
from photovault.services.usage.service import UsageRecorder
from photovault.utils.metrics import webhook_events_total

logger = logging.getLogger(__name__)

STATUS_PROCESSED = "processed"
STATUS_IGNORED = "ignored"
STATUS_DUPLICATE = "duplicate"

# Stripe subscription statuses that still entitle the customer
ACTIVE_SUBSCRIPTION_STATUSES = frozenset({"active", "trialing", "past_due"})


@dataclass
class WebhookOutcome:
    event_id: str
    event_type: str
    status: str
    account_id: str | None = None
    credits_granted: int = 0

    @property
    def duplicate(self) -> bool:
        return self.status == STATUS_DUPLICATE


@dataclass
class _Handled:
    status: str
    account_id: str | None = None
    price_id: str | None = None
    credits_granted: int = 0


def checkout_idempotency_key(session_id: str) -> str:
    return f"checkout:{session_id}"


class PaymentService:
    def __init__(self, db: Session, gateway: StripeGateway, redis_client: redis.Redis | None = None):
        self.db = db
        self.gateway = gateway
        self._redis = redis_client
        self.credits = CreditService(db)

    # ------------------------------------------------------------------
    # Webhook
    # ------------------------------------------------------------------

    def handle_webhook(self, payload: bytes, signature: str | None) -> WebhookOutcome:
        """
        Verify and apply one webhook delivery.
        Raises InvalidWebhookSignature before anything is read from the payload.
        """
        try:
            event = self.gateway.verify_webhook(payload, signature)
        except InvalidWebhookSignature:
            webhook_events_total.labels(event_type="unknown", outcome="rejected").inc()
            raise

        event_id = event["id"]
        event_type = event["type"]
        if self._event_seen(event_id):
            return self._duplicate(event_id, event_type)

        obj = (event.get("data") or {}).get("object") or {}
        if event_type == "checkout.session.completed":
            handled = self._on_checkout_completed(obj)
        elif event_type == "customer.subscription.created":
            handled = self._on_subscription_changed(obj, SUBSCRIPTION_ACTIVE)
        elif event_type == "customer.subscription.updated":
            state = SUBSCRIPTION_ACTIVE if obj.get("status") in ACTIVE_SUBSCRIPTION_STATUSES else SUBSCRIPTION_CANCELLED
            handled = self._on_subscription_changed(obj, state)
        elif event_type == "customer.subscription.deleted":
            handled = self._on_subscription_changed(obj, SUBSCRIPTION_CANCELLED)
        else:
            handled = _Handled(status=STATUS_IGNORED)

        self.db.add(
            PaymentEvent(
                provider_event_id=event_id,
                event_type=event_type,
                account_id=handled.account_id,
                price_id=handled.price_id,
                credits_granted=handled.credits_granted,
                status=handled.status,
            )
        )
        try:
            self.db.commit()
        except IntegrityError:
            # Concurrent delivery of the same event recorded it first.
            self.db.rollback()
            return self._duplicate(event_id, event_type)

        webhook_events_total.labels(event_type=event_type, outcome=handled.status).inc()
        logger.info(
            "webhook_processed",
            extra={
                "event_id": event_id,
                "event_type": event_type,
                "state": handled.status,
                "account_id": handled.account_id,
                "amount": handled.credits_granted,
            },
        )
        return WebhookOutcome(
            event_id=event_id,
            event_type=event_type,
            status=handled.status,
            account_id=handled.account_id,
            credits_granted=handled.credits_granted,
        )

    def _on_checkout_completed(self, checkout: dict[str, Any]) -> _Handled:
        metadata = checkout.get("metadata") or {}
        account_id = metadata.get("accountId") or metadata.get("userId")
        price_id = metadata.get("priceId")
        if checkout.get("payment_status") not in (None, "paid", "no_payment_required"):
            logger.info(
                "checkout_not_paid",
                extra={"account_id": account_id, "reason": checkout.get("payment_status")},
            )
            return _Handled(status=STATUS_IGNORED, account_id=account_id, price_id=price_id)
        granted = self._grant_checkout(checkout.get("id"), account_id, price_id)
        if granted is None:
            return _Handled(status=STATUS_IGNORED, account_id=account_id, price_id=price_id)
        return _Handled(status=STATUS_PROCESSED, account_id=account_id, price_id=price_id, credits_granted=granted)

    def _grant_checkout(self, session_id: str | None, account_id: str | None, price_id: str | None) -> int | None:
        """Credits granted by this call (0 when already granted), or None when the session is unusable."""
        amount = settings.price_credits.get(price_id or "")
        if not session_id or not account_id or not amount:
            logger.warning(
                "checkout_unresolvable",
                extra={"account_id": account_id, "price_id": price_id, "ref": session_id},
            )
            return None
        try:
            applied = self.credits.credit(
                account_id,
                amount,
                reason=f"purchase:{price_id}",
                idempotency_key=checkout_idempotency_key(session_id),
            )
        except NotFound:
            logger.warning("checkout_account_missing", extra={"account_id": account_id, "ref": session_id})
            return None
        if applied:
            UsageRecorder(self.db).record_safely(
                account_id, "purchase", amount, {"price_id": price_id, "checkout_session_id": session_id}
            )
        return amount if applied else 0

    def _on_subscription_changed(self, subscription: dict[str, Any], state: str) -> _Handled:
        subscription_id = subscription.get("id")
        metadata = subscription.get("metadata") or {}
        account_id = metadata.get("accountId") or metadata.get("userId")
        account = None
        if account_id:
            account = self.db.query(Account).filter(Account.id == account_id).one_or_none()
        if account is None and subscription_id:
            account = self.db.query(Account).filter(Account.subscription_ref == subscription_id).one_or_none()
        if account is None:
            logger.warning("subscription_account_missing", extra={"account_id": account_id, "ref": subscription_id})
            return _Handled(status=STATUS_IGNORED, account_id=account_id)

        account.subscription_state = state
        account.subscription_ref = subscription_id
        self.db.add(account)
        logger.info(
            "subscription_state_changed",
            extra={"account_id": account.id, "state": state, "ref": subscription_id},
        )
        return _Handled(status=STATUS_PROCESSED, account_id=account.id)

    def _event_seen(self, event_id: str) -> bool:
        return (
            self.db.query(PaymentEvent.id).filter(PaymentEvent.provider_event_id == event_id).first()
            is not None
        )

    def _duplicate(self, event_id: str, event_type: str) -> WebhookOutcome:
        webhook_events_total.labels(event_type=event_type, outcome=STATUS_DUPLICATE).inc()
        logger.info("webhook_duplicate", extra={"event_id": event_id, "event_type": event_type})
        return WebhookOutcome(event_id=event_id, event_type=event_type, status=STATUS_DUPLICATE)

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------

    def create_checkout_session(self, account: Account, price_id: str) -> dict[str, Any]:
        if price_id not in settings.price_credits:
            raise InvalidRequest("Unknown price")
        if account.has_active_subscription():
            raise Conflict(
                "You already have an active subscription. Use the customer portal to manage your subscription."
            )
        if not self._check_rate_limit(account.id):
            raise RateLimited("Too many purchase attempts. Please try again later.")

        frontend = settings.frontend_url.rstrip("/")
        session = self.gateway.create_checkout_session(
            price_id=price_id,
            customer_email=account.email,
            metadata={"accountId": account.id, "priceId": price_id},
            success_url=f"{frontend}/?session_id={{CHECKOUT_SESSION_ID}}&payment_success=true",
            cancel_url=f"{frontend}/pricing",
        )
        logger.info("checkout_session_created", extra={"account_id": account.id, "price_id": price_id})
        return {"session_id": session["id"], "url": session.get("url")}

    def confirm_checkout_session(self, session_id: str, account: Account) -> dict[str, Any]:
        """Manual fallback for a late webhook: credit a paid session once."""
        checkout = self.gateway.retrieve_checkout_session(session_id)
        metadata = checkout.get("metadata") or {}
        owner = metadata.get("accountId") or metadata.get("userId")
        if owner != account.id:
            raise NotFound("Checkout session not found")
        if checkout.get("payment_status") != "paid":
            return {"status": "pending", "credits_granted": 0}
        granted = self._grant_checkout(checkout.get("id") or session_id, owner, metadata.get("priceId"))
        return {
            "status": "success",
            "credits_granted": granted or 0,
            "subscription_id": checkout.get("subscription"),
        }

    def get_subscription(self, account: Account) -> dict[str, Any] | None:
        if not account.subscription_ref:
            return None
        subscription = self.gateway.retrieve_subscription(account.subscription_ref)
        items = (subscription.get("items") or {}).get("data") or []
        price = (items[0].get("price") or {}) if items else {}
        return {
            "id": subscription.get("id"),
            "status": subscription.get("status"),
            "current_period_start": subscription.get("current_period_start"),
            "current_period_end": subscription.get("current_period_end"),
            "cancel_at_period_end": bool(subscription.get("cancel_at_period_end")),
            "price_id": price.get("id"),
        }

    def create_portal_session(self, account: Account) -> dict[str, Any]:
        """Stripe customer portal for the customer behind the account's subscription."""
        if not account.subscription_ref:
            raise NotFound("No subscription to manage")
        subscription = self.gateway.retrieve_subscription(account.subscription_ref)
        customer = subscription.get("customer")
        if isinstance(customer, dict):
            customer = customer.get("id")
        if not customer:
            raise NotFound("No billing customer for this subscription")
        frontend = settings.frontend_url.rstrip("/")
        session = self.gateway.create_portal_session(customer, return_url=f"{frontend}/dashboard")
        logger.info("portal_session_created", extra={"account_id": account.id, "ref": account.subscription_ref})
        return {"url": session["url"]}

    def _check_rate_limit(self, account_id: str) -> bool:
        """At most purchase_rate_limit checkouts per window, shared across API replicas."""
        if self._redis is None:
            return True
        key = f"purchase_rate:{account_id}"
        try:
            current = self._redis.incr(key)
            if current == 1:
                self._redis.expire(key, settings.purchase_rate_window_seconds)
            return current <= settings.purchase_rate_limit
        except redis.RedisError as e:
            logger.warning("purchase_rate_limit_redis_error", extra={"error": str(e)})
            return True  # fail open: allow purchase when Redis is unavailable
