"""
Rate limiter for password login to prevent brute-force attacks.
"""
import logging

import redis
from starlette.requests import Request

from photovault.core.config import settings

logger = logging.getLogger("auth")


def get_client_ip(request: Request) -> str:
    """Client IP (supports X-Forwarded-For from a trusted proxy)."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded and settings.app_env == "production":
        trusted = settings.trusted_proxy_ips_set
        if trusted and request.client and request.client.host in trusted:
            return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "127.0.0.1"


def check_login_rate_limit(redis_client: redis.Redis | None, client_ip: str) -> bool:
    """
    Check if a login attempt is allowed. Returns True if allowed, False if rate limited.
    Increments the counter on each call. Without Redis the guard is off.
    """
    if redis_client is None:
        return True
    try:
        key = f"login_attempts:{client_ip}"
        current = redis_client.incr(key)
        if current == 1:
            redis_client.expire(key, settings.login_rate_limit_window_seconds)
        if current > settings.login_rate_limit_attempts:
            logger.warning("login_rate_limited", extra={"ip": client_ip, "count": current})
            return False
        return True
    except redis.RedisError as e:
        logger.warning("login_rate_limit_redis_error", extra={"error": str(e)})
        return True  # Fail open - allow login if Redis is down


def reset_login_attempts(redis_client: redis.Redis | None, client_ip: str) -> None:
    """Reset counter on successful login."""
    if redis_client is None:
        return
    try:
        redis_client.delete(f"login_attempts:{client_ip}")
    except redis.RedisError as e:
        logger.warning("login_rate_limit_redis_error", extra={"error": str(e)})
