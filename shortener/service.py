"""Shortener Service - create, resolve and delete short URLs.

This module orchestrates the counter allocator, code encoder, mapping store
and resolution cache. It holds no counter state and takes no locks; id
uniqueness comes from the allocator's atomic increment.

Architecture Overview
==================
::
    ┌─────────────────────────────────────────────────────────────┐
    │                    ShortenerService                         │
    │  ┌───────────────┐  ┌───────────────┐  ┌──────────────────┐ │
    │  │ CounterAlloc. │  │ Base62Encoder │  │ ResolutionCache  │ │
    │  │ • next_id()   │  │ • encode()    │  │ • get/set        │ │
    │  │   (Redis INCR)│  │ • decode()    │  │ • invalidate     │ │
    │  └───────────────┘  └───────────────┘  └──────────────────┘ │
    │                    ┌──────────────────┐                     │
    │                    │   MappingStore   │                     │
    │                    │ (PostgreSQL, SoT)│                     │
    │                    └──────────────────┘                     │
    └─────────────────────────────────────────────────────────────┘

Create Flow
-----------
::
    validate URL, expiry ─► next_id() ──(AllocatorUnavailable: backoff, retry)──►
    encode(id) ─► store.put() ─► cache.set() (best-effort) ─► mapping

    The id is burned if store.put() fails; ids need not be contiguous.

Resolve Decision Table
----------------------
::
    cache status   │ mapping expired? │ action
    ───────────────┼──────────────────┼─────────────────────────────────────
    HIT            │ no               │ return, count hit
    HIT            │ yes              │ purge in background, NotFound
    MISS/UNAVAIL.  │ store: absent    │ NotFound
    MISS/UNAVAIL.  │ store: yes       │ purge in background, NotFound
    MISS/UNAVAIL.  │ store: no        │ cache.set, count hit, return

Key Behaviours
===============
- Cache failures never fail a request; resolve falls through to the store.
- Store failures surface as StoreUnavailableError and are not retried.
- Only id allocation is retried, with capped exponential backoff.
- Hit counting and lazy purges run as background tasks that are awaited on
  shutdown via aclose().
"""

import asyncio
import datetime
import logging
import time
from collections.abc import Callable, Coroutine
from typing import Any

import validators
from prometheus_client import Counter, Histogram

from shortener.allocator import CounterAllocator
from shortener.cache import ResolutionCache
from shortener.config import Settings
from shortener.encoder import Base62Encoder
from shortener.enums import CacheStatus, HealthStatus, RequestStatus
from shortener.exceptions import (
    AllocatorUnavailableError,
    InvalidCodeError,
    InvalidExpiryError,
    InvalidUrlError,
    NotFoundError,
    ServiceUnavailableError,
    ShortenerError,
)
from shortener.schemas import UrlMapping
from shortener.store import MappingStore

__all__ = ["ShortenerService"]

logger = logging.getLogger(__name__)


# ============================================================================
# PROMETHEUS METRICS
# ============================================================================

CREATE_REQUESTS_TOTAL = Counter(
    "shortener_create_requests_total",
    "Total short URL creation requests",
    ["status"],
)
RESOLVE_REQUESTS_TOTAL = Counter(
    "shortener_resolve_requests_total",
    "Total short code resolution requests",
    ["status", "cache"],
)
DELETE_REQUESTS_TOTAL = Counter(
    "shortener_delete_requests_total",
    "Total short URL deletion requests",
    ["status"],
)
ALLOCATOR_RETRIES_TOTAL = Counter(
    "shortener_allocator_retries_total",
    "Id allocation attempts that failed and were retried",
)
BACKGROUND_FAILURES_TOTAL = Counter(
    "shortener_background_failures_total",
    "Best-effort background operations that failed",
    ["operation"],
)
CREATE_DURATION = Histogram(
    "shortener_create_duration_seconds",
    "Time taken to create short URLs",
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5],
)
RESOLVE_DURATION = Histogram(
    "shortener_resolve_duration_seconds",
    "Time taken to resolve short codes",
    buckets=[0.001, 0.0025, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25],
)


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _status_for(exc: Exception) -> RequestStatus:
    if isinstance(exc, (InvalidUrlError, InvalidExpiryError, InvalidCodeError)):
        return RequestStatus.VALIDATION_ERROR
    if isinstance(exc, NotFoundError):
        return RequestStatus.NOT_FOUND
    if isinstance(exc, ShortenerError) and exc.status_code == 503:
        return RequestStatus.UNAVAILABLE
    return RequestStatus.ERROR


class ShortenerService:
    """Core orchestration for short URL creation, resolution and deletion.

    Example:
        >>> service = ShortenerService(allocator, store, cache, settings=settings)
        >>> mapping = await service.create("https://example.com/a")
        >>> (await service.resolve(mapping.short_code)).original_url
        'https://example.com/a'
    """

    def __init__(
        self,
        allocator: CounterAllocator,
        store: MappingStore,
        cache: ResolutionCache,
        settings: Settings,
        encoder: Base62Encoder | None = None,
        clock: Callable[[], datetime.datetime] = _utcnow,
        sleep: Callable[[float], Coroutine[Any, Any, None]] = asyncio.sleep,
    ):
        self._allocator = allocator
        self._store = store
        self._cache = cache
        self._settings = settings
        self._encoder = encoder or Base62Encoder()
        self._clock = clock
        self._sleep = sleep
        self._background: set[asyncio.Task] = set()

    # ========================================================================
    # PUBLIC API METHODS
    # ========================================================================

    async def create(self, original_url: str, expires_in: datetime.timedelta | None = None) -> UrlMapping:
        """Allocate a short code for ``original_url`` and persist the mapping.

        Args:
            original_url: Absolute URL to shorten.
            expires_in: Optional lifetime; falls back to DEFAULT_EXPIRY_SECONDS.

        Returns:
            UrlMapping: The stored mapping.

        Raises:
            InvalidUrlError: If the URL is not a valid absolute URI.
            InvalidExpiryError: If expires_in is not positive or exceeds
                MAX_EXPIRY_SECONDS.
            ServiceUnavailableError: If id allocation keeps failing.
            StoreUnavailableError: If the mapping cannot be persisted.
        """
        start_time = time.perf_counter()
        try:
            self._validate_url(original_url)
            now = self._clock()
            expires_at = self._expiry_for(expires_in, now)

            identifier = await self._allocate_id()
            short_code = self._encoder.encode(identifier)

            mapping = UrlMapping(
                short_code=short_code,
                original_url=original_url,
                created_at=now,
                expires_at=expires_at,
                hit_count=0,
            )
            await self._store.put(mapping, identifier)
            await self._cache.set(mapping)
        except Exception as exc:
            CREATE_REQUESTS_TOTAL.labels(status=_status_for(exc)).inc()
            logger.warning(f"Short URL creation failed: {exc!r}")
            raise
        finally:
            CREATE_DURATION.observe(time.perf_counter() - start_time)

        CREATE_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS).inc()
        logger.info(f"Created short code {short_code} (id={identifier})")
        return mapping

    async def resolve(self, short_code: str) -> UrlMapping:
        """Return the live mapping for ``short_code``.

        Raises:
            InvalidCodeError: If the code does not decode to an allocated id.
            NotFoundError: If there is no live mapping.
            StoreUnavailableError: If the cache missed and the store is down.
        """
        start_time = time.perf_counter()
        cache_status = CacheStatus.MISS
        try:
            self._encoder.decode(short_code)
            now = self._clock()

            lookup = await self._cache.get(short_code)
            cache_status = lookup.status
            if lookup.hit:
                mapping = lookup.mapping
                if mapping.is_expired(now):
                    self._purge_in_background(short_code)
                    raise NotFoundError(f"Short code {short_code!r} has expired")
            else:
                mapping = await self._store.get(short_code)
                if mapping.is_expired(now):
                    self._purge_in_background(short_code)
                    raise NotFoundError(f"Short code {short_code!r} has expired")
                await self._cache.set(mapping)

            self._spawn("increment_hit_count", self._store.increment_hit_count(short_code))
        except Exception as exc:
            RESOLVE_REQUESTS_TOTAL.labels(status=_status_for(exc), cache=cache_status).inc()
            raise
        finally:
            RESOLVE_DURATION.observe(time.perf_counter() - start_time)

        RESOLVE_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS, cache=cache_status).inc()
        logger.debug(f"Resolved {short_code} (cache={cache_status})")
        return mapping

    async def describe(self, short_code: str) -> UrlMapping:
        """Return mapping metadata, including hit_count, straight from the store."""
        self._encoder.decode(short_code)
        mapping = await self._store.get(short_code)
        if mapping.is_expired(self._clock()):
            self._purge_in_background(short_code)
            raise NotFoundError(f"Short code {short_code!r} has expired")
        return mapping

    async def delete(self, short_code: str) -> None:
        """Delete the mapping and invalidate its cache entry. Idempotent.

        A code that cannot decode was never issued, so there is nothing to
        delete and the call succeeds without touching the store.
        """
        try:
            self._encoder.decode(short_code)
        except InvalidCodeError:
            DELETE_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS).inc()
            logger.debug(f"Delete of undecodable code {short_code!r} ignored")
            return

        try:
            existed = await self._store.delete(short_code)
        except Exception as exc:
            DELETE_REQUESTS_TOTAL.labels(status=_status_for(exc)).inc()
            raise

        await self._cache.invalidate(short_code)
        DELETE_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS).inc()
        logger.info(f"Deleted short code {short_code} (existed={existed})")

    async def purge_expired(self, limit: int) -> int:
        """Delete one batch of expired mappings and drop their cache entries."""
        codes = await self._store.purge_expired(self._clock(), limit)
        for short_code in codes:
            await self._cache.invalidate(short_code)
        if codes:
            logger.info(f"Purged {len(codes)} expired short codes")
        return len(codes)

    async def health(self) -> tuple[HealthStatus, HealthStatus]:
        database_ok, cache_ok = await asyncio.gather(self._store.ping(), self._cache.ping())
        return HealthStatus.from_bool(database_ok), HealthStatus.from_bool(cache_ok)

    async def drain(self) -> None:
        """Wait for in-flight background tasks."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def aclose(self) -> None:
        await self.drain()

    # ========================================================================
    # PRIVATE HELPER METHODS
    # ========================================================================

    def _validate_url(self, original_url: str) -> None:
        if not isinstance(original_url, str) or not original_url:
            raise InvalidUrlError("URL must be a non-empty string")
        if len(original_url) > self._settings.MAX_URL_LENGTH:
            raise InvalidUrlError(f"URL exceeds {self._settings.MAX_URL_LENGTH} characters")
        if not validators.url(original_url):
            raise InvalidUrlError("Invalid URL provided")

    def _expiry_for(self, expires_in: datetime.timedelta | None, now: datetime.datetime) -> datetime.datetime | None:
        if expires_in is None:
            default = self._settings.DEFAULT_EXPIRY_SECONDS
            if not default:
                return None
            expires_in = datetime.timedelta(seconds=default)
        if expires_in <= datetime.timedelta(0):
            raise InvalidExpiryError("Expiry must be a positive duration")
        if expires_in.total_seconds() > self._settings.MAX_EXPIRY_SECONDS:
            raise InvalidExpiryError(f"Expiry must not exceed {self._settings.MAX_EXPIRY_SECONDS} seconds")
        try:
            return now + expires_in
        except OverflowError as exc:
            raise InvalidExpiryError("Expiry is out of range") from exc

    async def _allocate_id(self) -> int:
        attempts = self._settings.ALLOCATOR_MAX_ATTEMPTS
        for attempt in range(attempts):
            try:
                return await self._allocator.next_id()
            except AllocatorUnavailableError as exc:
                if attempt + 1 >= attempts:
                    logger.error(f"Id allocation failed after {attempts} attempts: {exc}")
                    raise ServiceUnavailableError("Id allocation unavailable") from exc
                ALLOCATOR_RETRIES_TOTAL.inc()
                delay = min(
                    self._settings.ALLOCATOR_BACKOFF_BASE_SECONDS * 2**attempt,
                    self._settings.ALLOCATOR_BACKOFF_MAX_SECONDS,
                )
                logger.warning(f"Id allocation attempt {attempt + 1} failed, retrying in {delay:.3f}s")
                await self._sleep(delay)
        raise ServiceUnavailableError("Id allocation unavailable")

    def _purge_in_background(self, short_code: str) -> None:
        self._spawn("purge_expired", self._purge_one(short_code))

    async def _purge_one(self, short_code: str) -> None:
        await self._cache.invalidate(short_code)
        await self._store.delete(short_code)

    def _spawn(self, operation: str, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.create_task(self._run_best_effort(operation, coro))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _run_best_effort(self, operation: str, coro: Coroutine[Any, Any, Any]) -> None:
        try:
            await coro
        except ShortenerError as exc:
            BACKGROUND_FAILURES_TOTAL.labels(operation=operation).inc()
            logger.warning(f"Background {operation} failed: {exc}")
        except Exception as exc:
            BACKGROUND_FAILURES_TOTAL.labels(operation=operation).inc()
            logger.exception(f"Unexpected error in background {operation}: {exc}")
