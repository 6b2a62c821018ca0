"""Redis client for the notification channel."""

from __future__ import annotations

import redis.asyncio as redis
import structlog
from redis.exceptions import RedisError

from app.core.config import get_settings

log = structlog.get_logger()

_client: redis.Redis | None = None


async def get_redis() -> redis.Redis:
    """Shared client, created on first use."""
    global _client
    if _client is None:
        _client = redis.from_url(
            get_settings().redis_url,
            decode_responses=True,
            health_check_interval=30,
        )
    return _client


async def redis_ready() -> bool:
    """True when the notification channel's Redis answers a PING."""
    try:
        client = await get_redis()
        return bool(await client.ping())
    except RedisError as exc:
        log.warning("redis.unavailable", error=str(exc))
        return False


async def close_redis() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
