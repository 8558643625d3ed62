"""Redis cache utilities for tourquote."""

from __future__ import annotations

import pickle
from typing import Any

import redis.asyncio as redis
import structlog

from tourquote.config import get_config

logger = structlog.get_logger(__name__)


class RedisCache:
    """Key/value cache with expiry and explicit invalidation.

    Any Redis failure is logged and treated as a miss; callers always fall
    back to the source of truth.
    """

    def __init__(
        self,
        client: redis.Redis | None = None,
        prefix: str = "tourquote:",
        default_ttl: int | None = None,
    ) -> None:
        self._client = client
        self.prefix = prefix
        self.default_ttl = default_ttl

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.from_url(
                get_config().cache.redis_url,
                decode_responses=False,  # We'll handle pickle serialization
            )
        return self._client

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    async def get(self, key: str) -> Any | None:
        """Get value from cache.

        Returns:
            Cached value (unpickled) or None if not found/expired
        """
        try:
            cached_bytes = await self.client.get(self._key(key))
            if cached_bytes:
                return pickle.loads(cached_bytes)
        except Exception as e:
            logger.warning("cache_get_failed", key=key, error=str(e))
        return None

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> bool:
        """Set value in cache with expiry.

        Args:
            key: Cache key (prefix is added)
            value: Value to cache (will be pickled)
            ttl_seconds: Time to live; falls back to the configured default

        Returns:
            True if successful, False otherwise
        """
        ttl = ttl_seconds or self.default_ttl or get_config().cache.default_ttl_seconds
        try:
            await self.client.setex(self._key(key), ttl, pickle.dumps(value))
            return True
        except Exception as e:
            logger.warning("cache_set_failed", key=key, error=str(e))
            return False

    async def delete(self, key: str) -> bool:
        """Invalidate a single key."""
        try:
            await self.client.delete(self._key(key))
            return True
        except Exception as e:
            logger.warning("cache_delete_failed", key=key, error=str(e))
            return False
