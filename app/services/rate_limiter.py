"""Fixed-window request counters in Redis.

Each (endpoint, identifier) pair owns one key holding the count for the current
window. The key expires with the window, so the first request after expiry
starts a fresh count. Any Redis failure lets the request through.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Request, Response

from app.errors import RateLimitError
from app.logging_config import get_logger
from app.services.redis_client import get_redis

logger = get_logger("rate_limiter")

KEY_PREFIX = "servio:ratelimit"


@dataclass(frozen=True)
class RateLimitConfig:
    max_requests: int
    window_minutes: int


@dataclass
class RateLimitResult:
    allowed: bool
    current_count: int
    reset_at: datetime
    headers: dict = field(default_factory=dict)


RATE_LIMITS = {
    "oauth": RateLimitConfig(max_requests=10, window_minutes=1),
    "chat": RateLimitConfig(max_requests=30, window_minutes=1),
    "checkout": RateLimitConfig(max_requests=10, window_minutes=1),
    "webhook": RateLimitConfig(max_requests=100, window_minutes=1),
    "default": RateLimitConfig(max_requests=60, window_minutes=1),
}


def _key(endpoint: str, identifier: str) -> str:
    return f"{KEY_PREFIX}:{endpoint}:{identifier}"


def check_rate_limit(
    identifier: str,
    endpoint: str,
    max_requests: int,
    window_minutes: int,
    redis_client=None,
) -> RateLimitResult:
    now = datetime.now(timezone.utc)
    window_seconds = max(1, int(window_minutes * 60))
    key = _key(endpoint, identifier)
    try:
        redis_client = redis_client or get_redis()
        if redis_client is None:
            logger.warning("Rate limiter disabled (redis not configured)", extra={"context": {"endpoint": endpoint}})
            return RateLimitResult(allowed=True, current_count=0, reset_at=now)

        count = int(redis_client.incr(key))
        if count == 1:
            redis_client.expire(key, window_seconds)
        ttl = redis_client.ttl(key)
        if ttl is None or ttl < 0:
            # Key survived without an expiry (crash between INCR and EXPIRE).
            redis_client.expire(key, window_seconds)
            ttl = window_seconds
    except Exception as e:
        logger.warning(
            "Rate limit check failed, allowing request",
            extra={"context": {"endpoint": endpoint, "error": str(e)}},
        )
        return RateLimitResult(allowed=True, current_count=0, reset_at=now)

    return RateLimitResult(
        allowed=count <= max_requests,
        current_count=count,
        reset_at=now + timedelta(seconds=int(ttl)),
    )


def get_client_identifier(request: Request, fallback: Optional[str] = None) -> str:
    """Best-effort caller address for anonymous endpoints."""
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        first_hop = forwarded_for.split(",")[0].strip()
        if first_hop:
            return first_hop

    for header in ("x-real-ip", "cf-connecting-ip"):
        value = request.headers.get(header)
        if value:
            return value.strip()

    return fallback or "anonymous"


def seconds_until(reset_at: datetime, now: Optional[datetime] = None) -> int:
    now = now or datetime.now(timezone.utc)
    return max(1, math.ceil((reset_at - now).total_seconds()))


def rate_limit_headers(result: RateLimitResult, config: RateLimitConfig) -> dict:
    remaining = max(0, config.max_requests - result.current_count)
    return {
        "X-RateLimit-Limit": str(config.max_requests),
        "X-RateLimit-Remaining": str(remaining),
        "X-RateLimit-Reset": result.reset_at.isoformat(),
    }


def rate_limit(preset: str = "default"):
    """FastAPI dependency enforcing one of the RATE_LIMITS presets.

    Handlers that return their own Response must pass `result.headers` to it.
    """
    config = RATE_LIMITS.get(preset, RATE_LIMITS["default"])

    def dependency(request: Request, response: Response) -> RateLimitResult:
        identifier = get_client_identifier(request)
        result = check_rate_limit(identifier, preset, config.max_requests, config.window_minutes)
        headers = rate_limit_headers(result, config)

        if not result.allowed:
            logger.info(
                "Rate limit exceeded",
                extra={"context": {"endpoint": preset, "identifier": identifier, "count": result.current_count}},
            )
            raise RateLimitError(retry_after=seconds_until(result.reset_at), headers=headers)

        response.headers.update(headers)
        result.headers = headers
        return result

    return dependency
