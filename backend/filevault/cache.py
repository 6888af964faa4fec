"""Redis client lifecycle. Sessions and job queues share one client."""

import logging
from typing import Callable

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from filevault.config import Settings

log = logging.getLogger(__name__)

CacheFactory = Callable[[Settings], aioredis.Redis]


def open_cache(settings: Settings) -> aioredis.Redis:
    """Create the redis client. Connections are opened lazily, with timeouts."""
    log.info("Opening cache %s", settings.redis_url)
    return aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        socket_timeout=settings.redis_timeout_seconds,
        socket_connect_timeout=settings.redis_timeout_seconds,
    )


async def close_cache(client: aioredis.Redis) -> None:
    await client.aclose()


async def is_alive(client: aioredis.Redis) -> bool:
    """True if the cache answers PING."""
    try:
        return bool(await client.ping())
    except (RedisError, OSError) as e:
        log.warning("Cache ping failed: %s", e)
        return False
