"""Shared pytest fixtures and in-memory test doubles."""

import datetime
import logging
from collections.abc import AsyncGenerator
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.ext.asyncio import AsyncSession

from shortener.allocator import CounterAllocator
from shortener.cache import ResolutionCache
from shortener.config import Settings
from shortener.exceptions import NotFoundError, StoreUnavailableError
from shortener.schemas import UrlMapping
from shortener.service import ShortenerService


class FrozenClock:
    """Controllable UTC clock."""

    def __init__(self, now: datetime.datetime):
        self.now = now

    def __call__(self) -> datetime.datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += datetime.timedelta(seconds=seconds)


class DictRedis:
    """Dict-backed stand-in for the handful of redis.asyncio calls the app makes."""

    def __init__(self):
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.down = False

    def _check(self) -> None:
        if self.down:
            raise RedisConnectionError("Connection refused")

    async def get(self, key: str) -> str | None:
        self._check()
        return self.data.get(key)

    async def set(self, key: str, value: str, ex: int | None = None) -> bool:
        self._check()
        self.data[key] = value
        if ex is not None:
            self.ttls[key] = ex
        return True

    async def delete(self, *keys: str) -> int:
        self._check()
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    async def incr(self, key: str) -> int:
        self._check()
        value = int(self.data.get(key, "0")) + 1
        self.data[key] = str(value)
        return value

    async def ping(self) -> bool:
        self._check()
        return True


class InMemoryMappingStore:
    """MappingStore double keeping rows in a dict."""

    def __init__(self):
        self.rows: dict[str, UrlMapping] = {}
        self.ids: dict[str, int] = {}
        self.down = False

    def _check(self) -> None:
        if self.down:
            raise StoreUnavailableError("Mapping store unavailable")

    async def put(self, mapping: UrlMapping, identifier: int | None = None) -> None:
        self._check()
        self.rows[mapping.short_code] = mapping.model_copy()
        self.ids[mapping.short_code] = identifier

    async def get(self, short_code: str) -> UrlMapping:
        self._check()
        if short_code not in self.rows:
            raise NotFoundError(short_code)
        return self.rows[short_code].model_copy()

    async def delete(self, short_code: str) -> bool:
        self._check()
        self.ids.pop(short_code, None)
        return self.rows.pop(short_code, None) is not None

    async def increment_hit_count(self, short_code: str) -> None:
        self._check()
        if short_code in self.rows:
            self.rows[short_code].hit_count += 1

    async def purge_expired(self, now: datetime.datetime, limit: int) -> list[str]:
        self._check()
        expired = [code for code, row in self.rows.items() if row.is_expired(now)][:limit]
        for code in expired:
            del self.rows[code]
        return expired

    async def ping(self) -> bool:
        return not self.down


@pytest.fixture
def settings() -> Settings:
    return Settings(
        BASE_URL="http://sho.rt",
        CACHE_TTL_SECONDS=3600,
        ALLOCATOR_MAX_ATTEMPTS=3,
        ALLOCATOR_BACKOFF_BASE_SECONDS=0.1,
        ALLOCATOR_BACKOFF_MAX_SECONDS=0.15,
        DEFAULT_EXPIRY_SECONDS=None,
    )


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime.datetime(2024, 1, 1, 12, 0, 0, tzinfo=datetime.timezone.utc))


@pytest.fixture
def mock_session() -> AsyncMock:
    session = AsyncMock(spec=AsyncSession)
    session.add = MagicMock()
    session.execute = AsyncMock()
    session.commit = AsyncMock()
    return session


@pytest.fixture
def counter_redis() -> DictRedis:
    return DictRedis()


@pytest.fixture
def cache_redis() -> DictRedis:
    return DictRedis()


@pytest.fixture
def store() -> InMemoryMappingStore:
    return InMemoryMappingStore()


@pytest.fixture
def cache(cache_redis: DictRedis, clock: FrozenClock, settings: Settings) -> ResolutionCache:
    return ResolutionCache(cache_redis, ttl_seconds=settings.CACHE_TTL_SECONDS, clock=clock)


@pytest.fixture
def sleep() -> AsyncMock:
    return AsyncMock()


@pytest_asyncio.fixture
async def service(
    counter_redis: DictRedis,
    store: InMemoryMappingStore,
    cache: ResolutionCache,
    settings: Settings,
    clock: FrozenClock,
    sleep: AsyncMock,
) -> AsyncGenerator[ShortenerService, None]:
    service = ShortenerService(
        allocator=CounterAllocator(counter_redis, settings.COUNTER_KEY),
        store=store,
        cache=cache,
        settings=settings,
        clock=clock,
        sleep=sleep,
    )
    yield service
    await service.drain()


@pytest_asyncio.fixture
async def client(service: ShortenerService, settings: Settings) -> AsyncGenerator[AsyncClient, None]:
    from shortener.dependencies import get_service_manager
    from shortener.main import app

    manager = SimpleNamespace(
        settings=settings,
        service=service,
        logger=logging.getLogger("shortener.tests"),
    )

    async def override_get_service_manager():
        return manager

    app.dependency_overrides[get_service_manager] = override_get_service_manager

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
