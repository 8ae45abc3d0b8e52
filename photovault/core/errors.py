"""
Error taxonomy shared by services and the HTTP layer.
Each error carries a stable code and the HTTP status it maps to.
"""
from typing import Any


class ServiceError(Exception):
    code = "internal_error"
    status_code = 500

    def __init__(self, message: str | None = None, **extra: Any) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code
        self.extra = extra

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "message": self.message, **self.extra}


class Unauthorized(ServiceError):
    code = "unauthorized"
    status_code = 401


class TokenExpired(Unauthorized):
    code = "token_expired"


class NotFound(ServiceError):
    code = "not_found"
    status_code = 404


class InvalidRequest(ServiceError):
    code = "invalid_request"
    status_code = 422


class Conflict(ServiceError):
    code = "conflict"
    status_code = 409


class InsufficientCredits(ServiceError):
    """Business rule: balance below the requested amount. Never retried."""

    code = "insufficient_credits"
    status_code = 400

    def __init__(self, required: int, available: int) -> None:
        super().__init__(
            f"Insufficient credits. Required: {required}, available: {available}. "
            "Purchase credits to continue.",
            required=required,
            available=available,
            redirect_to_pricing=True,
        )
        self.required = required
        self.available = available


class GenerationUnavailable(ServiceError):
    """Provider outage or timeout; credits have been refunded, safe to retry."""

    code = "generation_unavailable"
    status_code = 503


class StorageFailure(ServiceError):
    code = "storage_failure"
    status_code = 502


class InvalidWebhookSignature(ServiceError):
    code = "webhook_rejected"
    status_code = 400


class RateLimited(ServiceError):
    code = "rate_limited"
    status_code = 429


class PaymentProviderUnavailable(ServiceError):
    code = "payment_provider_unavailable"
    status_code = 502
