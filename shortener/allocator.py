"""Counter-based identifier allocation backed by Redis INCR.

Every call performs one atomic ``INCR`` against a single counter key, so two
concurrent callers, in this process or any other instance, never receive the
same value. There is no local fallback counter: when Redis is
unreachable the allocator fails fast with ``AllocatorUnavailableError`` and
the caller decides whether to retry.
"""

import logging

import redis.asyncio as redis
from redis.exceptions import RedisError

from shortener.encoder import MAX_IDENTIFIER
from shortener.exceptions import AllocatorUnavailableError

__all__ = ["CounterAllocator"]

logger = logging.getLogger(__name__)


class CounterAllocator:
    """Hands out unique, strictly increasing identifiers."""

    def __init__(self, client: redis.Redis, key: str):
        if not key:
            raise ValueError("Counter key must be a non-empty string")
        self._client = client
        self._key = key

    @property
    def key(self) -> str:
        return self._key

    async def next_id(self) -> int:
        try:
            value = await self._client.incr(self._key)
        except (RedisError, OSError) as exc:
            logger.warning(f"Counter increment failed for {self._key}: {exc}")
            raise AllocatorUnavailableError(f"Counter store unreachable: {exc}") from exc

        identifier = int(value)
        if identifier <= 0 or identifier > MAX_IDENTIFIER:
            raise AllocatorUnavailableError(f"Counter {self._key} returned out-of-range value {identifier}")
        return identifier

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except (RedisError, OSError) as exc:
            logger.error(f"Counter store health check failed: {exc}")
            return False
