"""
Endpoint Rate Limiting

Sliding-window request limits for the public student endpoints (code
guessing) and for admin bulk actions. Uses the shared Redis client when it
is available and an in-process window otherwise.
"""

import logging
import time
from collections.abc import Awaitable, Callable

from fastapi import HTTPException, Request, status

from iep_api.core import redis as redis_module

logger = logging.getLogger(__name__)

# key -> request timestamps inside the window (fallback store)
_memory_windows: dict[str, list[float]] = {}


class RateLimitExceeded(HTTPException):
    """HTTP 429 raised by the endpoint limiter."""

    def __init__(self, limit: int, window_seconds: int):
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={
                "error": "RATE_LIMIT_EXCEEDED",
                "message": f"Demasiadas solicitudes. Máximo {limit} cada {window_seconds} segundos.",
                "retry_after_seconds": window_seconds,
            },
            headers={"Retry-After": str(window_seconds)},
        )


async def _allow_redis(client, key: str, limit: int, window_seconds: int) -> bool:
    """Sliding window on a sorted set; one pipeline round trip."""
    now = time.time()

    pipe = client.pipeline()
    pipe.zremrangebyscore(key, 0, now - window_seconds)
    pipe.zcard(key)
    pipe.zadd(key, {str(now): now})
    pipe.expire(key, window_seconds)
    results = await pipe.execute()

    return results[1] < limit


def _allow_memory(key: str, limit: int, window_seconds: int) -> bool:
    """In-process fallback. Not shared between workers."""
    now = time.time()
    window = [ts for ts in _memory_windows.get(key, []) if ts > now - window_seconds]

    if len(window) >= limit:
        _memory_windows[key] = window
        return False

    window.append(now)
    _memory_windows[key] = window
    return True


async def check_rate_limit(key: str, limit: int, window_seconds: int) -> bool:
    """
    Record a request under ``key`` and report whether it is allowed.

    Args:
        key: Limiter key, e.g. "rl:validate:203.0.113.5"
        limit: Maximum requests in the window
        window_seconds: Window length

    Returns:
        True if the request is within the limit
    """
    client = redis_module.redis_client
    if client is not None:
        try:
            return await _allow_redis(client, key, limit, window_seconds)
        except Exception as e:
            logger.warning(f"Redis rate limit check failed, using memory window: {e}")

    return _allow_memory(key, limit, window_seconds)


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def rate_limit(
    scope: str,
    limit: int,
    window_seconds: int,
) -> Callable[[Request], Awaitable[None]]:
    """
    Build a FastAPI dependency enforcing a per-client limit on a route.

    Usage:
        @router.post("/validate", dependencies=[Depends(rate_limit("validate", 10, 60))])
    """

    async def dependency(request: Request) -> None:
        key = f"rl:{scope}:{_client_ip(request)}"
        if not await check_rate_limit(key, limit, window_seconds):
            logger.warning(f"Rate limit exceeded for {key}: {limit}/{window_seconds}s")
            raise RateLimitExceeded(limit, window_seconds)

    return dependency


__all__ = [
    "RateLimitExceeded",
    "check_rate_limit",
    "rate_limit",
]
