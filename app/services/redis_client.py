"""Lazily created shared Redis client for rate limits and webhook de-duplication."""

import redis

from app.config import settings

_redis_client = None
_redis_url = None


def get_redis():
    global _redis_client, _redis_url

    redis_url = settings.redis_url
    if not redis_url:
        return None

    if _redis_client is None or _redis_url != redis_url:
        _redis_url = redis_url
        _redis_client = redis.Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=settings.redis_socket_timeout_seconds,
            socket_timeout=settings.redis_socket_timeout_seconds,
        )

    return _redis_client
