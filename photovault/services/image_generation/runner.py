"""
Runner: generate-with-retry, failure classification, and observability for one image call.
"""
import logging
import random
import time
from typing import Any

from photovault.services.image_generation.base import (
    ImageGenerationError,
    ImageGenerationProvider,
    ImageGenerationRequest,
    ImageGenerationResponse,
)
from photovault.services.image_generation.failure_types import classify_failure
from photovault.utils.metrics import provider_request_duration_seconds

logger = logging.getLogger(__name__)


def generate_with_retry(
    provider: ImageGenerationProvider,
    request: ImageGenerationRequest,
    settings: Any,
    *,
    unit: int | None = None,
    sleep=time.sleep,
) -> ImageGenerationResponse:
    """
    Generate one image within the retry budget.
    Retries only failures classified as retriable (transport errors, SAFETY/OTHER heuristic);
    429 honours Retry-After when enabled. The last error is re-raised once the budget is spent.
    """
    max_attempts = max(1, int(getattr(settings, "image_generation_retry_max_attempts", 2)))
    backoff_seconds = float(getattr(settings, "image_generation_retry_backoff_seconds", 2.0))
    respect_retry_after = getattr(settings, "image_generation_retry_respect_retry_after", True)
    provider_name = getattr(provider, "name", type(provider).__name__)

    attempt = 0
    while True:
        attempt += 1
        started = time.monotonic()
        try:
            result = provider.generate(request)
        except ImageGenerationError as e:
            provider_request_duration_seconds.labels(provider=provider_name).observe(time.monotonic() - started)
            detail = e.detail
            http_status = detail.get("http_status")
            failure_type, retry_allowed = classify_failure(http_status, detail, str(e))
            detail["failure_type"] = failure_type.value
            logger.warning(
                "image_generation_failed",
                extra={
                    "provider": provider_name,
                    "unit": unit,
                    "attempt": attempt,
                    "max_attempts": max_attempts,
                    "failure_type": failure_type.value,
                    "reason": detail.get("finish_reason") or detail.get("block_reason"),
                    "status_code": http_status,
                },
            )
            if not retry_allowed or attempt >= max_attempts:
                raise

            delay = backoff_seconds
            if http_status == 429 and respect_retry_after and detail.get("retry_after"):
                try:
                    delay = float(detail["retry_after"])
                except (TypeError, ValueError):
                    pass
            delay += random.uniform(0, 1)
            logger.info(
                "image_generation_retry_scheduled",
                extra={
                    "unit": unit,
                    "attempt": attempt,
                    "max_attempts": max_attempts,
                    "delay_seconds": round(delay, 2),
                    "failure_type": failure_type.value,
                },
            )
            sleep(delay)
            continue

        provider_request_duration_seconds.labels(provider=provider_name).observe(time.monotonic() - started)
        if attempt > 1:
            logger.info(
                "image_generation_success_after_retry",
                extra={"provider": provider_name, "unit": unit, "attempt": attempt},
            )
        return result
