"""
Sliding-window request limits for chat sends, stored in Redis sorted sets.

Limits are per authenticated user (``request.state.user``, set by
``get_current_user``) and per client IP otherwise. Redis outages never block
a request.
"""

import logging
import time
import uuid
from functools import wraps
from typing import Callable, Optional

from fastapi import HTTPException, Request

from persona_chat.core.config import settings
from persona_chat.utils.redis_pool import get_redis

log = logging.getLogger(__name__)


async def check_rate_limit(key: str, max_requests: int, window_seconds: int) -> tuple[bool, int]:
    """Record one hit on ``key``. Returns (allowed, retry_after_seconds)."""
    r = await get_redis()
    now = time.time()

    async with r.pipeline(transaction=True) as pipe:
        pipe.zremrangebyscore(key, 0, now - window_seconds)
        pipe.zadd(key, {f"{now}:{uuid.uuid4().hex[:8]}": now})
        pipe.zcard(key)
        pipe.zrange(key, 0, 0, withscores=True)
        pipe.expire(key, window_seconds + 1)
        _, _, hits, oldest, _ = await pipe.execute()

    if hits <= max_requests:
        return True, 0
    first_hit = oldest[0][1] if oldest else now
    return False, max(1, int(first_hit + window_seconds - now) + 1)


def get_user_key(request: Request) -> str:
    user = getattr(request.state, "user", None)
    if user is not None and getattr(user, "id", None):
        return f"user:{user.id}"
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return f"ip:{forwarded.split(',')[0].strip()}"
    return f"ip:{request.client.host if request.client else 'unknown'}"


def _request_from(args: tuple, kwargs: dict) -> Optional[Request]:
    if isinstance(kwargs.get("request"), Request):
        return kwargs["request"]
    return next((a for a in args if isinstance(a, Request)), None)


def rate_limit(
    max_requests: int,
    window_seconds: int,
    key_prefix: str = "ratelimit",
    key_func: Optional[Callable[[Request], str]] = None,
):
    """Limit an endpoint that takes a ``request: Request`` parameter. 429 with Retry-After when exceeded."""
    def decorator(func: Callable):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            request = _request_from(args, kwargs)
            if not settings.RATE_LIMIT_ENABLED or request is None:
                return await func(*args, **kwargs)

            key = f"{key_prefix}:{(key_func or get_user_key)(request)}"
            try:
                allowed, retry_after = await check_rate_limit(key, max_requests, window_seconds)
            except Exception as e:
                log.warning("rate_limit.unavailable key=%s err=%s", key, e)
                return await func(*args, **kwargs)

            if not allowed:
                log.info("rate_limit.exceeded key=%s limit=%d/%ds", key, max_requests, window_seconds)
                raise HTTPException(
                    status_code=429,
                    detail={
                        "error": "RATE_LIMITED",
                        "message": f"Too many messages. Try again in {retry_after} seconds.",
                        "retry_after": retry_after,
                    },
                    headers={"Retry-After": str(retry_after)},
                )
            return await func(*args, **kwargs)

        return wrapper
    return decorator
