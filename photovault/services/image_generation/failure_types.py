"""
Failure normalization for image provider calls.
Classifies API and transport failures for retry policy and observability.
"""
from enum import Enum
from typing import Any


class FailureType(str, Enum):
    TRANSPORT_TRANSIENT = "transport_transient"  # 429, 5xx, timeout
    PROMPT_BLOCKED = "prompt_blocked"  # promptFeedback.blockReason
    RESPONSE_BLOCKED = "response_blocked"  # SAFETY / OTHER (heuristic retry allowed)
    RESPONSE_BLOCKED_STRICT = "response_blocked_strict"  # BLOCKLIST / SPII / PROHIBITED_CONTENT
    CLIENT_NON_RETRIABLE = "client_non_retriable"  # 4xx except 429


# finishReason values that forbid retry
STRICT_FINISH_REASONS = frozenset({
    "BLOCKLIST",
    "SPII",
    "PROHIBITED_CONTENT",
    "RECITATION",
    "IMAGE_SAFETY",
})

# finishReason values worth one more attempt
RETRYABLE_FINISH_REASONS = frozenset({
    "SAFETY",
    "OTHER",
})


def classify_failure(
    http_status: int | None,
    detail: dict[str, Any],
    message: str = "",
) -> tuple[FailureType, bool]:
    """Returns (failure_type, retry_allowed) for an HTTP status and provider detail."""
    if http_status is not None:
        if http_status == 429 or 500 <= http_status < 600:
            return (FailureType.TRANSPORT_TRANSIENT, True)
        if 400 <= http_status < 500:
            return (FailureType.CLIENT_NON_RETRIABLE, False)

    prompt_feedback = detail.get("prompt_feedback") or detail.get("promptFeedback") or {}
    if prompt_feedback.get("blockReason") or detail.get("block_reason"):
        return (FailureType.PROMPT_BLOCKED, False)

    finish_reason = (detail.get("finish_reason") or detail.get("finishReason") or "").strip().upper()
    if finish_reason in STRICT_FINISH_REASONS:
        return (FailureType.RESPONSE_BLOCKED_STRICT, False)
    if finish_reason in RETRYABLE_FINISH_REASONS:
        return (FailureType.RESPONSE_BLOCKED, True)
    if finish_reason and finish_reason != "STOP":
        return (FailureType.RESPONSE_BLOCKED_STRICT, False)

    # e.g. "No candidates", "No image in response"
    if detail:
        return (FailureType.RESPONSE_BLOCKED, False)

    # No detail (network error, timeout): transient
    return (FailureType.TRANSPORT_TRANSIENT, True)
