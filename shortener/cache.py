"""Redis resolution cache fronting the mapping store.

Flow Diagram: Cache-aside Lookup
=================================
::
    ┌─────────────┐
    │  get(code)   │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ GET url:code │
    └──────┬──────┘
           ▼
    ┌──────────────┬──────────────┬───────────────┐
    │ payload      │ nil / bad    │ Redis error   │
    ▼              ▼              ▼
┌─────────┐   ┌─────────┐   ┌─────────────┐
│   HIT   │   │  MISS   │   │ UNAVAILABLE │
└─────────┘   └─────────┘   └─────────────┘

Key Behaviours
===============
- Lookups return a tagged CacheLookup instead of raising, so callers branch
  on a status and never on exceptions.
- set() and invalidate() are best-effort: failures are logged and reported
  as False, never raised.
- Entry TTL is the configured default clamped to the mapping's remaining
  lifetime, and already-expired mappings are never written.
- Values are UrlMapping JSON, a copy of the store record.

Classes:
    CacheLookup:  Tagged lookup result.
    ResolutionCache:  Redis-backed cache-aside layer.
"""

import datetime
import logging
import math
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import redis.asyncio as redis
from pydantic import ValidationError
from redis.exceptions import RedisError

from shortener.enums import CacheStatus
from shortener.exceptions import CacheUnavailableError
from shortener.schemas import UrlMapping

__all__ = ["CacheLookup", "ResolutionCache"]

logger = logging.getLogger(__name__)


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


@dataclass(frozen=True)
class CacheLookup:
    status: CacheStatus
    mapping: UrlMapping | None = None

    @property
    def hit(self) -> bool:
        return self.status is CacheStatus.HIT


class ResolutionCache:
    def __init__(
        self,
        client: redis.Redis,
        ttl_seconds: int,
        key_prefix: str = "url",
        clock: Callable[[], datetime.datetime] = _utcnow,
    ):
        if ttl_seconds <= 0:
            raise ValueError("Cache TTL must be positive")
        self._client = client
        self._ttl_seconds = ttl_seconds
        self._key_prefix = key_prefix
        self._clock = clock

    def key(self, short_code: str) -> str:
        return f"{self._key_prefix}:{short_code}"

    async def _call(self, operation: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
        try:
            return await operation(*args, **kwargs)
        except (RedisError, OSError) as exc:
            raise CacheUnavailableError(str(exc)) from exc

    async def get(self, short_code: str) -> CacheLookup:
        try:
            payload = await self._call(self._client.get, self.key(short_code))
        except CacheUnavailableError as exc:
            logger.warning(f"Cache unavailable on get for {short_code}: {exc}")
            return CacheLookup(CacheStatus.UNAVAILABLE)

        if payload is None:
            return CacheLookup(CacheStatus.MISS)

        try:
            mapping = UrlMapping.model_validate_json(payload)
        except ValidationError as exc:
            logger.error(f"Cache deserialization error for {short_code}: {exc}")
            return CacheLookup(CacheStatus.MISS)
        return CacheLookup(CacheStatus.HIT, mapping)

    def ttl_for(self, mapping: UrlMapping, ttl: int | None = None) -> int:
        """Seconds the entry may live; 0 means it must not be cached."""
        ttl_seconds = ttl if ttl is not None else self._ttl_seconds
        if mapping.expires_at is not None:
            remaining = (mapping.expires_at - self._clock()).total_seconds()
            if remaining <= 0:
                return 0
            ttl_seconds = min(ttl_seconds, math.ceil(remaining))
        return max(ttl_seconds, 0)

    async def set(self, mapping: UrlMapping, ttl: int | None = None) -> bool:
        ttl_seconds = self.ttl_for(mapping, ttl)
        if ttl_seconds == 0:
            return False

        try:
            await self._call(
                self._client.set,
                self.key(mapping.short_code),
                mapping.model_dump_json(),
                ex=ttl_seconds,
            )
        except CacheUnavailableError as exc:
            logger.warning(f"Cache unavailable on set for {mapping.short_code}: {exc}")
            return False
        return True

    async def invalidate(self, short_code: str) -> bool:
        try:
            await self._call(self._client.delete, self.key(short_code))
        except CacheUnavailableError as exc:
            logger.warning(f"Cache unavailable on invalidate for {short_code}: {exc}")
            return False
        return True

    async def ping(self) -> bool:
        try:
            return bool(await self._call(self._client.ping))
        except CacheUnavailableError as exc:
            logger.error(f"Cache health check failed: {exc}")
            return False
