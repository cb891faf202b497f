"""Process-wide async Redis client, created on first use and closed from the app lifespan."""

import logging
from typing import Optional

import redis.asyncio as redis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import BusyLoadingError, ConnectionError, TimeoutError

from persona_chat.core.config import settings

log = logging.getLogger(__name__)

TRANSIENT_ERRORS = (ConnectionError, TimeoutError, BusyLoadingError)

_client: Optional[redis.Redis] = None


def _build_client(url: str) -> redis.Redis:
    return redis.Redis.from_url(
        url,
        max_connections=20,
        socket_timeout=2.0,
        socket_connect_timeout=2.0,
        health_check_interval=30,
        decode_responses=True,
        retry=Retry(ExponentialBackoff(cap=0.5, base=0.1), retries=2, supported_errors=TRANSIENT_ERRORS),
        retry_on_error=list(TRANSIENT_ERRORS),
    )


async def get_redis() -> redis.Redis:
    global _client
    if _client is None:
        _client = _build_client(settings.REDIS_URL)
        log.info("redis.client.init url=%s", settings.REDIS_URL.rsplit("@", 1)[-1])
    return _client


async def close_redis() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
        log.info("redis.client.closed")
