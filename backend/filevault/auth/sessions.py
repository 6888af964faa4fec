"""Session tokens held only in the cache, expiring by the cache's own TTL."""

import logging
import secrets
from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from filevault.errors import TransientStorageError

log = logging.getLogger(__name__)

KEY_PREFIX = "auth_"


def _key(token: str) -> str:
    return f"{KEY_PREFIX}{token}"


class SessionStore:
    """Issue, resolve and revoke opaque tokens mapped to a user id."""

    def __init__(self, cache: aioredis.Redis, ttl_seconds: int = 24 * 60 * 60) -> None:
        self.cache = cache
        self.ttl_seconds = ttl_seconds

    async def issue(self, user_id: int) -> str:
        """Create a token for user_id that lives ttl_seconds."""
        token = secrets.token_urlsafe(32)
        try:
            await self.cache.set(_key(token), str(user_id), ex=self.ttl_seconds)
        except RedisError as e:
            log.error("Could not store session for user id=%s: %s", user_id, e)
            raise TransientStorageError() from e
        log.debug("Issued session for user id=%s", user_id)
        return token

    async def resolve(self, token: str) -> Optional[int]:
        """Return the user id behind token, or None if absent or expired."""
        if not token:
            return None
        try:
            value = await self.cache.get(_key(token))
        except RedisError as e:
            log.error("Could not read session: %s", e)
            raise TransientStorageError() from e
        if value is None:
            return None
        try:
            return int(value)
        except ValueError:
            log.warning("Malformed session value for token, ignoring")
            return None

    async def revoke(self, token: str) -> bool:
        """Delete token; True if it existed. Revoking twice returns False."""
        if not token:
            return False
        try:
            removed = await self.cache.delete(_key(token))
        except RedisError as e:
            log.error("Could not delete session: %s", e)
            raise TransientStorageError() from e
        return removed > 0
