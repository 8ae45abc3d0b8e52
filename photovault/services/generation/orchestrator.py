"""
GenerationOrchestrator: reserve credits, fan out provider calls, persist outputs,
and settle the reservation. Every exit path after the reserve either settles or
refunds it; a process crash in between is covered by the stale-reservation task.
"""
import logging
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import pybreaker
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from photovault.core.config import settings as default_settings
from photovault.core.errors import GenerationUnavailable, InsufficientCredits, InvalidRequest, NotFound, StorageFailure
from photovault.models.photo_set import PhotoSet
from photovault.models.reservation import Reservation
from photovault.services.circuit_breaker import guarded_call
from photovault.services.credits.service import CreditService
from photovault.services.image_generation import (
    ImageGenerationError,
    ImageGenerationProvider,
    ImageGenerationRequest,
    generate_with_retry,
)
from photovault.services.photos.service import GeneratedImage, PhotoService
from photovault.services.themes.service import ThemeService, build_prompt
from photovault.services.usage.service import UsageRecorder
from photovault.storage.base import Storage
from photovault.utils.metrics import (
    active_generations,
    generation_duration_seconds,
    generation_requests_total,
    generation_units_total,
)

logger = logging.getLogger(__name__)


class GenerationState(str, Enum):
    REQUESTED = "requested"
    RESERVED = "reserved"
    DISPATCHED = "dispatched"
    COMPLETED = "completed"
    PARTIALLY_COMPLETED = "partially_completed"
    FAILED = "failed"


@dataclass
class GenerationResult:
    photo_set: PhotoSet | None
    state: GenerationState
    requested: int
    succeeded: int
    credits_charged: int
    credits_refunded: int
    failures: list[str] = field(default_factory=list)


@dataclass
class _FanOutResult:
    outputs: list[GeneratedImage]
    failures: list[str]


class GenerationOrchestrator:
    def __init__(
        self,
        db: Session,
        storage: Storage,
        provider: ImageGenerationProvider,
        breaker: pybreaker.CircuitBreaker,
        settings: Any = None,
        photos: PhotoService | None = None,
    ):
        self.db = db
        self.provider = provider
        self.breaker = breaker
        self.settings = settings or default_settings
        self.credits = CreditService(db)
        self.photos = photos or PhotoService(db, storage)
        self.usage = UsageRecorder(db)
        self.themes = ThemeService(db)

    def generate(
        self,
        account_id: str,
        theme_id: str,
        source_image_ref: str,
        count: int,
        guidance: str | None = None,
    ) -> GenerationResult:
        # requested
        theme = self.themes.get_enabled(theme_id)
        if theme is None:
            raise InvalidRequest(f"Unknown theme: {theme_id}")
        max_photos = self.settings.generation_max_photos
        if count < 1 or count > max_photos:
            raise InvalidRequest(f"count must be between 1 and {max_photos}")
        if not source_image_ref:
            raise InvalidRequest("source_image_ref is required")
        try:
            source, source_mime = self.photos.load_source(account_id, source_image_ref)
        except NotFound as e:
            raise InvalidRequest("source_image_ref does not reference one of your uploads") from e

        # reserved
        try:
            reservation = self.credits.reserve(account_id, count, reason=f"generation:{theme.id}")
        except InsufficientCredits as e:
            generation_requests_total.labels(theme=theme.id, state="rejected").inc()
            self.usage.record_safely(
                account_id,
                "generation_rejected",
                0,
                {"theme": theme.id, "requested": count, "available": e.available},
            )
            raise

        active_generations.inc()
        started = time.monotonic()
        try:
            return self._run(account_id, theme.id, build_prompt(theme, guidance), source, source_mime,
                             source_image_ref, reservation)
        except Exception:
            # Anything unexpected after the debit: give the credits back before propagating.
            if self.credits.refund(reservation, reason="generation aborted"):
                logger.exception(
                    "generation_aborted",
                    extra={"account_id": account_id, "reservation_id": reservation.id},
                )
            raise
        finally:
            active_generations.dec()
            generation_duration_seconds.observe(time.monotonic() - started)

    def _run(
        self,
        account_id: str,
        theme_id: str,
        prompt: str,
        source: bytes,
        source_mime: str,
        source_image_ref: str,
        reservation: Reservation,
    ) -> GenerationResult:
        requested = reservation.amount
        logger.info(
            "generation_dispatched",
            extra={
                "account_id": account_id,
                "reservation_id": reservation.id,
                "theme": theme_id,
                "requested": requested,
                "state": GenerationState.DISPATCHED.value,
            },
        )
        request = ImageGenerationRequest(prompt=prompt, input_image=source, input_mime_type=source_mime)
        fan_out = self._fan_out(request, requested)
        succeeded = len(fan_out.outputs)

        if succeeded == 0:
            refunded = self.credits.settle(reservation, 0, reason="generation failed")
            self._finish(account_id, theme_id, GenerationState.FAILED, requested, 0, refunded, fan_out.failures)
            raise GenerationUnavailable(
                "Image generation is temporarily unavailable. Your credits have been refunded.",
                credits_refunded=refunded,
            )

        charge = succeeded if self.settings.refund_partial_failures else requested
        try:
            photo_set_id, refs = self.photos.write_outputs(account_id, fan_out.outputs)
        except StorageFailure as e:
            refunded = self.credits.settle(reservation, 0, reason="storage failed")
            logger.error(
                "generation_storage_failed",
                extra={
                    "account_id": account_id,
                    "reservation_id": reservation.id,
                    "succeeded": succeeded,
                    "refunded": refunded,
                    "error": str(e),
                },
            )
            self._finish(account_id, theme_id, GenerationState.FAILED, requested, 0, refunded,
                         fan_out.failures + ["storage"] * succeeded)
            raise GenerationUnavailable(
                "Generated photos could not be saved. Your credits have been refunded.",
                credits_refunded=refunded,
            ) from e

        # The set is recorded only once the charge is settled.
        refunded = self.credits.settle(reservation, charge, reason="failed generations refunded")
        try:
            photo_set = self.photos.record(photo_set_id, account_id, theme_id, charge, refs, source_image_ref)
        except SQLAlchemyError as e:
            self.db.rollback()
            if charge > 0:
                self.credits.credit(
                    account_id,
                    charge,
                    reason="photo set not saved",
                    idempotency_key=f"record-failed:{reservation.id}",
                )
            refunded += charge
            logger.error(
                "generation_record_failed",
                extra={
                    "account_id": account_id,
                    "reservation_id": reservation.id,
                    "photo_set_id": photo_set_id,
                    "refunded": refunded,
                    "error": str(e),
                },
            )
            self._finish(account_id, theme_id, GenerationState.FAILED, requested, 0, refunded,
                         fan_out.failures + ["storage"] * succeeded)
            raise GenerationUnavailable(
                "Generated photos could not be saved. Your credits have been refunded.",
                credits_refunded=refunded,
            ) from e

        state = GenerationState.COMPLETED if succeeded == requested else GenerationState.PARTIALLY_COMPLETED
        self._finish(account_id, theme_id, state, requested, succeeded, refunded, fan_out.failures,
                     photo_set_id=photo_set.id, charged=charge)
        return GenerationResult(
            photo_set=photo_set,
            state=state,
            requested=requested,
            succeeded=succeeded,
            credits_charged=charge,
            credits_refunded=refunded,
            failures=fan_out.failures,
        )

    def _fan_out(self, request: ImageGenerationRequest, count: int) -> _FanOutResult:
        """
        Run count independent provider calls, at most generation_max_concurrency at a time.
        Each unit gets generation_call_timeout from the moment it starts; a unit past its
        deadline is a failure and its slot goes to the next queued unit.
        """
        limit = max(1, min(count, self.settings.generation_max_concurrency))
        timeout = self.settings.generation_call_timeout
        # One thread per unit: threads of timed-out units are abandoned, not reused.
        executor = ThreadPoolExecutor(max_workers=count, thread_name_prefix="generation")
        queued = list(range(count))
        running: dict[Future, tuple[int, float]] = {}
        finished: dict[int, Future] = {}
        try:
            while queued or running:
                while queued and len(running) < limit:
                    unit = queued.pop(0)
                    future = executor.submit(self._run_unit, unit, request)
                    running[future] = (unit, time.monotonic() + timeout)
                next_deadline = min(deadline for _, deadline in running.values())
                done, _ = wait(
                    list(running),
                    timeout=max(0.0, next_deadline - time.monotonic()),
                    return_when=FIRST_COMPLETED,
                )
                for future in done:
                    unit, _ = running.pop(future)
                    finished[unit] = future
                now = time.monotonic()
                for future, (unit, deadline) in list(running.items()):
                    if deadline <= now:
                        del running[future]
                        future.cancel()
                        logger.warning("generation_unit_timeout", extra={"unit": unit, "timeout": timeout})
        finally:
            # Do not block on stragglers; their results are discarded.
            executor.shutdown(wait=False, cancel_futures=True)

        outputs: list[GeneratedImage] = []
        failures: list[str] = []
        for unit in range(count):
            future = finished.get(unit)
            if future is None or future.cancelled():
                failures.append("timeout")
                generation_units_total.labels(status="timeout").inc()
                continue
            exc = future.exception()
            if exc is None:
                response = future.result()
                outputs.append(GeneratedImage(data=response.image_content, mime_type=response.mime_type))
                generation_units_total.labels(status="ok").inc()
                continue
            failure = _failure_label(exc)
            failures.append(failure)
            generation_units_total.labels(status="error").inc()
            logger.warning(
                "generation_unit_failed",
                extra={"unit": unit, "failure_type": failure, "error": str(exc)},
            )
        return _FanOutResult(outputs=outputs, failures=failures)

    def _run_unit(self, unit: int, request: ImageGenerationRequest):
        return guarded_call(self.breaker, generate_with_retry, self.provider, request, self.settings, unit=unit)

    def _finish(
        self,
        account_id: str,
        theme_id: str,
        state: GenerationState,
        requested: int,
        succeeded: int,
        refunded: int,
        failures: list[str],
        photo_set_id: str | None = None,
        charged: int = 0,
    ) -> None:
        generation_requests_total.labels(theme=theme_id, state=state.value).inc()
        action = "generation_failed" if state is GenerationState.FAILED else "generation"
        self.usage.record_safely(
            account_id,
            action,
            charged,
            {
                "theme": theme_id,
                "state": state.value,
                "requested": requested,
                "succeeded": succeeded,
                "refunded": refunded,
                "failures": failures,
                "photo_set_id": photo_set_id,
            },
        )
        log = logger.warning if state is GenerationState.FAILED else logger.info
        log(
            "generation_finished",
            extra={
                "account_id": account_id,
                "photo_set_id": photo_set_id,
                "theme": theme_id,
                "state": state.value,
                "requested": requested,
                "succeeded": succeeded,
                "failed": requested - succeeded,
                "refunded": refunded,
            },
        )


def _failure_label(exc: BaseException) -> str:
    if isinstance(exc, pybreaker.CircuitBreakerError):
        return "circuit_open"
    if isinstance(exc, ImageGenerationError):
        return exc.detail.get("failure_type") or "provider_error"
    return type(exc).__name__
