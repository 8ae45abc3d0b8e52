"""
Circuit breaker implementation using pybreaker library.
Redis-backed state storage when Redis is configured, process memory otherwise.
"""
import contextlib
import logging
from datetime import datetime
from typing import Any, Callable

import pybreaker
import redis

from photovault.core.config import settings
from photovault.services.image_generation.base import ImageGenerationError
from photovault.services.image_generation.failure_types import FailureType
from photovault.utils.metrics import circuit_breaker_state

logger = logging.getLogger("circuit_breaker")


class RedisCircuitBreakerStorage(pybreaker.CircuitBreakerStorage):
    """Redis-backed storage for circuit breaker state (shared by all API workers)."""

    def __init__(self, name: str, client: redis.Redis) -> None:
        super().__init__(name)
        self._name = name
        self.client = client
        self._state_key = f"cb:{name}:state"
        self._counter_key = f"cb:{name}:counter"
        self._opened_at_key = f"cb:{name}:opened_at"
        self._success_key = f"cb:{name}:success"

    @property
    def state(self) -> str:
        state = self.client.get(self._state_key)
        return state or pybreaker.STATE_CLOSED

    @state.setter
    def state(self, value: str) -> None:
        self.client.set(self._state_key, value, ex=settings.cb_open_seconds * 2)

    @property
    def counter(self) -> int:
        count = self.client.get(self._counter_key)
        return int(count) if count else 0

    @counter.setter
    def counter(self, value: int) -> None:
        self.client.set(self._counter_key, str(value), ex=settings.cb_open_seconds)

    def increment_counter(self) -> None:
        self.client.incr(self._counter_key)
        self.client.expire(self._counter_key, settings.cb_open_seconds)

    def reset_counter(self) -> None:
        self.client.delete(self._counter_key)

    # Consecutive successes while half-open
    @property
    def success_counter(self) -> int:
        count = self.client.get(self._success_key)
        return int(count) if count else 0

    def increment_success_counter(self) -> None:
        self.client.incr(self._success_key)
        self.client.expire(self._success_key, settings.cb_open_seconds * 2)

    def reset_success_counter(self) -> None:
        self.client.delete(self._success_key)

    @property
    def opened_at(self) -> datetime | None:
        value = self.client.get(self._opened_at_key)
        return datetime.fromisoformat(value) if value else None

    @opened_at.setter
    def opened_at(self, value: datetime) -> None:
        self.client.set(self._opened_at_key, value.isoformat(), ex=settings.cb_open_seconds * 2)


class CircuitBreakerListener(pybreaker.CircuitBreakerListener):
    """Listener for circuit breaker events (logging/metrics)."""

    def __init__(self, name: str) -> None:
        self.name = name

    def state_change(self, cb: pybreaker.CircuitBreaker, old_state, new_state) -> None:
        old_name = getattr(old_state, "name", old_state)
        new_name = getattr(new_state, "name", new_state)
        circuit_breaker_state.labels(name=self.name).set(1 if new_name == pybreaker.STATE_OPEN else 0)
        logger.warning(
            "circuit_breaker_state_change",
            extra={
                "breaker_name": self.name,
                "old_state": old_name,
                "new_state": new_name,
            },
        )

    def failure(self, cb: pybreaker.CircuitBreaker, exc: Exception) -> None:
        logger.warning(
            "circuit_breaker_failure",
            extra={
                "breaker_name": self.name,
                "error": type(exc).__name__,
            },
        )


def _is_content_failure(exc: BaseException) -> bool:
    """Blocked prompts and bad requests say nothing about provider health."""
    if not isinstance(exc, ImageGenerationError):
        return False
    return exc.detail.get("failure_type") not in (None, FailureType.TRANSPORT_TRANSIENT.value)


def build_circuit_breaker(name: str, redis_client: redis.Redis | None = None) -> pybreaker.CircuitBreaker:
    if redis_client is not None:
        storage = RedisCircuitBreakerStorage(name, redis_client)
    else:
        storage = pybreaker.CircuitMemoryStorage(pybreaker.STATE_CLOSED)
    return pybreaker.CircuitBreaker(
        fail_max=settings.cb_failure_threshold,
        reset_timeout=settings.cb_open_seconds,
        state_storage=storage,
        listeners=[CircuitBreakerListener(name)],
        exclude=[_is_content_failure, ValueError],
        name=name,
    )


def _noop() -> None:
    return None


def _reraise(exc: BaseException) -> None:
    raise exc


def guarded_call(breaker: pybreaker.CircuitBreaker, func: Callable, *args: Any, **kwargs: Any) -> Any:
    """
    Like breaker.call, but runs func outside the breaker lock while closed.
    pybreaker holds its lock for the whole call, which would serialize parallel provider calls.
    Open and half-open states still go through breaker.call (fail fast, single trial call).
    """
    if breaker.current_state != pybreaker.STATE_CLOSED:
        return breaker.call(func, *args, **kwargs)
    try:
        result = func(*args, **kwargs)
    except Exception as exc:
        # Counts the failure (unless excluded) and re-raises it, or CircuitBreakerError when it trips.
        breaker.call(_reraise, exc)
        raise
    # Another unit may have opened the breaker meanwhile; this result is still valid.
    with contextlib.suppress(pybreaker.CircuitBreakerError):
        breaker.call(_noop)
    return result
