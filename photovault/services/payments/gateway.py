"""
StripeGateway: the only module that talks to the Stripe SDK.
Constructed once per process with an explicit StripeClient and injected into PaymentService.
"""
import json
import logging
from typing import Any

import stripe

from photovault.core.errors import InvalidWebhookSignature, NotFound, PaymentProviderUnavailable

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("security")


def _plain(obj: Any) -> dict[str, Any]:
    """StripeObject -> plain dict so services never depend on SDK types."""
    return obj.to_dict() if hasattr(obj, "to_dict") else dict(obj)


class StripeGateway:
    def __init__(self, secret_key: str, webhook_secret: str, tolerance_seconds: int = 300):
        self.webhook_secret = webhook_secret
        self.tolerance_seconds = tolerance_seconds
        self.client = stripe.StripeClient(secret_key) if secret_key else None

    @classmethod
    def from_settings(cls, settings) -> "StripeGateway":
        return cls(
            secret_key=settings.stripe_secret_key,
            webhook_secret=settings.stripe_webhook_secret,
            tolerance_seconds=settings.stripe_webhook_tolerance_seconds,
        )

    def verify_webhook(self, payload: bytes, signature: str | None) -> dict[str, Any]:
        """
        Check the Stripe-Signature header and decode the event.
        Fails closed: without a configured secret every delivery is rejected.
        """
        if not self.webhook_secret:
            security_logger.error("webhook_secret_missing")
            raise InvalidWebhookSignature("Webhook secret is not configured")
        if not signature:
            security_logger.warning("webhook_signature_missing")
            raise InvalidWebhookSignature("Missing Stripe-Signature header")
        try:
            body = payload.decode("utf-8")
            stripe.WebhookSignature.verify_header(body, signature, self.webhook_secret, self.tolerance_seconds)
            event = json.loads(body)
        except (stripe.SignatureVerificationError, UnicodeDecodeError, ValueError) as e:
            security_logger.warning("webhook_signature_invalid", extra={"error": str(e)})
            raise InvalidWebhookSignature("Invalid webhook signature") from e
        if not isinstance(event, dict) or not event.get("id") or not event.get("type"):
            security_logger.warning("webhook_payload_malformed")
            raise InvalidWebhookSignature("Malformed webhook payload")
        return event

    def create_checkout_session(
        self,
        price_id: str,
        customer_email: str,
        metadata: dict[str, str],
        success_url: str,
        cancel_url: str,
    ) -> dict[str, Any]:
        session = self._call(
            "checkout_create",
            lambda: self._require_client().checkout.sessions.create(
                params={
                    "payment_method_types": ["card"],
                    "line_items": [{"price": price_id, "quantity": 1}],
                    "mode": "payment",
                    "customer_email": customer_email,
                    "success_url": success_url,
                    "cancel_url": cancel_url,
                    "metadata": metadata,
                }
            ),
        )
        return _plain(session)

    def retrieve_checkout_session(self, session_id: str) -> dict[str, Any]:
        return _plain(self._call(
            "checkout_retrieve",
            lambda: self._require_client().checkout.sessions.retrieve(session_id),
        ))

    def retrieve_subscription(self, subscription_id: str) -> dict[str, Any]:
        return _plain(self._call(
            "subscription_retrieve",
            lambda: self._require_client().subscriptions.retrieve(subscription_id),
        ))

    def create_portal_session(self, customer_id: str, return_url: str) -> dict[str, Any]:
        session = self._call(
            "portal_create",
            lambda: self._require_client().billing_portal.sessions.create(
                params={"customer": customer_id, "return_url": return_url}
            ),
        )
        return _plain(session)

    def _require_client(self) -> stripe.StripeClient:
        if self.client is None:
            raise PaymentProviderUnavailable("Payments are not configured")
        return self.client

    def _call(self, operation: str, fn):
        try:
            return fn()
        except stripe.InvalidRequestError as e:
            if e.http_status == 404:
                raise NotFound("Payment object not found") from e
            logger.warning("stripe_invalid_request", extra={"reason": operation, "error": str(e)})
            raise PaymentProviderUnavailable("Payment provider rejected the request") from e
        except stripe.StripeError as e:
            logger.error("stripe_request_failed", extra={"reason": operation, "error": str(e)})
            raise PaymentProviderUnavailable("Payment provider is unavailable") from e
