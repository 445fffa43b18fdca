"""Shortener service tests.

These run the real allocator, encoder and cache on dict-backed Redis doubles
and an in-memory mapping store.
"""

import datetime
import logging
from unittest.mock import AsyncMock

import pytest
from prometheus_client import REGISTRY

from shortener.encoder import decode
from shortener.enums import CacheStatus, HealthStatus
from shortener.exceptions import (
    InvalidCodeError,
    InvalidExpiryError,
    InvalidUrlError,
    NotFoundError,
    ServiceUnavailableError,
    StoreUnavailableError,
)
from shortener.schemas import UrlMapping
from shortener.service import ShortenerService

# ============================================================================
# CREATE
# ============================================================================


async def test_create_then_resolve(service: ShortenerService) -> None:
    mapping = await service.create("https://example.com/a")

    resolved = await service.resolve(mapping.short_code)

    assert resolved.original_url == "https://example.com/a"


async def test_create_persists_and_warms_cache(service, store, cache, clock) -> None:
    mapping = await service.create("https://example.com/a")

    assert mapping.short_code == "1"
    assert mapping.created_at == clock()
    assert mapping.expires_at is None
    assert mapping.hit_count == 0
    assert store.ids["1"] == 1
    lookup = await cache.get("1")
    assert lookup.status is CacheStatus.HIT
    assert lookup.mapping.original_url == "https://example.com/a"


async def test_codes_follow_counter(service: ShortenerService) -> None:
    codes = [(await service.create(f"https://example.com/{i}")).short_code for i in range(70)]

    assert len(set(codes)) == 70
    assert [decode(code) for code in codes] == list(range(1, 71))


async def test_same_url_twice_gets_two_codes(service: ShortenerService) -> None:
    first = await service.create("https://example.com/a")
    second = await service.create("https://example.com/a")

    assert first.short_code != second.short_code


@pytest.mark.parametrize("url", ["not a url", "", "example.com/a", "/relative/path", "http://"])
async def test_create_rejects_invalid_urls(service: ShortenerService, url: str) -> None:
    with pytest.raises(InvalidUrlError):
        await service.create(url)


async def test_create_rejects_overlong_url(service: ShortenerService, settings) -> None:
    url = "https://example.com/" + "a" * settings.MAX_URL_LENGTH

    with pytest.raises(InvalidUrlError):
        await service.create(url)


async def test_invalid_url_does_not_allocate(service, counter_redis) -> None:
    with pytest.raises(InvalidUrlError):
        await service.create("not a url")

    assert counter_redis.data == {}


async def test_create_with_expiry(service, clock) -> None:
    mapping = await service.create("https://example.com/a", expires_in=datetime.timedelta(minutes=5))

    assert mapping.expires_at == clock() + datetime.timedelta(minutes=5)


@pytest.mark.parametrize("seconds", [0, -10])
async def test_create_rejects_non_positive_expiry(service: ShortenerService, seconds: int) -> None:
    with pytest.raises(InvalidExpiryError):
        await service.create("https://example.com/a", expires_in=datetime.timedelta(seconds=seconds))


async def test_create_rejects_expiry_above_ceiling(service, settings, counter_redis) -> None:
    expires_in = datetime.timedelta(seconds=settings.MAX_EXPIRY_SECONDS + 1)

    with pytest.raises(InvalidExpiryError):
        await service.create("https://example.com/a", expires_in=expires_in)

    assert counter_redis.data == {}


async def test_create_expiry_past_datetime_range_keeps_id(service, settings, counter_redis) -> None:
    settings.MAX_EXPIRY_SECONDS = 10**15

    with pytest.raises(InvalidExpiryError):
        await service.create("https://example.com/a", expires_in=datetime.timedelta(days=999_999_999))

    assert counter_redis.data == {}
    mapping = await service.create("https://example.com/a")
    assert decode(mapping.short_code) == 1


async def test_default_expiry_from_settings(service, settings, clock) -> None:
    settings.DEFAULT_EXPIRY_SECONDS = 600

    mapping = await service.create("https://example.com/a")

    assert mapping.expires_at == clock() + datetime.timedelta(seconds=600)


async def test_allocator_retried_with_backoff(service, counter_redis, sleep) -> None:
    real_incr = counter_redis.incr
    calls = {"count": 0}

    async def flaky_incr(key: str) -> int:
        calls["count"] += 1
        if calls["count"] < 3:
            counter_redis.down = True
            try:
                return await real_incr(key)
            finally:
                counter_redis.down = False
        return await real_incr(key)

    counter_redis.incr = flaky_incr

    mapping = await service.create("https://example.com/a")

    assert mapping.short_code == "1"
    assert [call.args[0] for call in sleep.await_args_list] == [0.1, 0.15]


async def test_allocator_exhausted_raises_service_unavailable(service, counter_redis, store, sleep) -> None:
    counter_redis.down = True

    with pytest.raises(ServiceUnavailableError):
        await service.create("https://example.com/a")

    assert sleep.await_count == 2
    assert store.rows == {}


async def test_store_failure_surfaces_and_burns_id(service, store, counter_redis) -> None:
    store.down = True

    with pytest.raises(StoreUnavailableError):
        await service.create("https://example.com/a")

    store.down = False
    mapping = await service.create("https://example.com/b")
    assert mapping.short_code == "2"


async def test_cache_outage_does_not_fail_create(service, cache_redis, store) -> None:
    cache_redis.down = True

    mapping = await service.create("https://example.com/a")

    assert mapping.short_code in store.rows


# ============================================================================
# RESOLVE
# ============================================================================


async def test_resolve_cache_hit_skips_store(service, store) -> None:
    mapping = await service.create("https://example.com/a")
    store.get = AsyncMock(side_effect=AssertionError("store must not be read on a cache hit"))

    resolved = await service.resolve(mapping.short_code)

    assert resolved.original_url == "https://example.com/a"


async def test_resolve_miss_populates_cache(service, cache_redis, cache) -> None:
    mapping = await service.create("https://example.com/a")
    cache_redis.data.clear()

    resolved = await service.resolve(mapping.short_code)

    assert resolved.original_url == "https://example.com/a"
    assert (await cache.get(mapping.short_code)).status is CacheStatus.HIT


async def test_resolve_with_cache_unavailable_falls_through(service, cache_redis) -> None:
    mapping = await service.create("https://example.com/a")
    cache_redis.down = True

    resolved = await service.resolve(mapping.short_code)

    assert resolved.original_url == "https://example.com/a"


async def test_resolve_counts_hits(service, store) -> None:
    mapping = await service.create("https://example.com/a")

    for _ in range(3):
        await service.resolve(mapping.short_code)
    await service.drain()

    assert store.rows[mapping.short_code].hit_count == 3


async def test_hit_count_failure_does_not_fail_resolve(service, store) -> None:
    mapping = await service.create("https://example.com/a")
    store.increment_hit_count = AsyncMock(side_effect=StoreUnavailableError("down"))

    resolved = await service.resolve(mapping.short_code)
    await service.drain()

    assert resolved.original_url == "https://example.com/a"


async def test_unexpected_background_error_is_logged_and_counted(service, store, caplog) -> None:
    labels = {"operation": "increment_hit_count"}
    before = REGISTRY.get_sample_value("shortener_background_failures_total", labels) or 0
    mapping = await service.create("https://example.com/a")
    store.increment_hit_count = AsyncMock(side_effect=RuntimeError("boom"))

    with caplog.at_level(logging.ERROR, logger="shortener.service"):
        resolved = await service.resolve(mapping.short_code)
        await service.drain()

    assert resolved.original_url == "https://example.com/a"
    assert REGISTRY.get_sample_value("shortener_background_failures_total", labels) == before + 1
    assert "Unexpected error in background increment_hit_count" in caplog.text


@pytest.mark.parametrize("code", ["!!!", "", "0", "01", "a-b"])
async def test_resolve_rejects_invalid_codes(service: ShortenerService, code: str) -> None:
    with pytest.raises(InvalidCodeError):
        await service.resolve(code)


async def test_resolve_unknown_code(service: ShortenerService) -> None:
    with pytest.raises(NotFoundError):
        await service.resolve("zzz")


async def test_resolve_store_unavailable_on_miss(service, store, cache_redis) -> None:
    mapping = await service.create("https://example.com/a")
    cache_redis.data.clear()
    store.down = True

    with pytest.raises(StoreUnavailableError):
        await service.resolve(mapping.short_code)


async def test_resolve_store_unavailable_but_cached(service, store) -> None:
    mapping = await service.create("https://example.com/a")
    store.down = True

    resolved = await service.resolve(mapping.short_code)
    await service.drain()

    assert resolved.original_url == "https://example.com/a"


async def test_expired_mapping_not_returned_even_if_cached(service, store, cache, cache_redis, clock) -> None:
    created = clock()
    mapping = UrlMapping(
        short_code="5",
        original_url="https://example.com/old",
        created_at=created,
        expires_at=created + datetime.timedelta(seconds=30),
    )
    await store.put(mapping, 5)
    await cache.set(mapping)
    clock.advance(60)

    with pytest.raises(NotFoundError):
        await service.resolve("5")
    await service.drain()

    assert "5" not in store.rows
    assert "url:5" not in cache_redis.data


async def test_expired_mapping_from_store_is_purged(service, store, clock) -> None:
    mapping = await service.create("https://example.com/a", expires_in=datetime.timedelta(seconds=30))
    clock.advance(30)

    with pytest.raises(NotFoundError):
        await service.resolve(mapping.short_code)
    await service.drain()

    assert mapping.short_code not in store.rows


async def test_mapping_visible_until_expiry(service, clock) -> None:
    mapping = await service.create("https://example.com/a", expires_in=datetime.timedelta(seconds=30))
    clock.advance(29)

    resolved = await service.resolve(mapping.short_code)

    assert resolved.original_url == "https://example.com/a"


# ============================================================================
# DELETE / DESCRIBE / MAINTENANCE
# ============================================================================


async def test_delete_then_resolve_not_found(service, cache_redis) -> None:
    mapping = await service.create("https://example.com/a")

    await service.delete(mapping.short_code)

    assert f"url:{mapping.short_code}" not in cache_redis.data
    with pytest.raises(NotFoundError):
        await service.resolve(mapping.short_code)


async def test_delete_is_idempotent(service: ShortenerService) -> None:
    mapping = await service.create("https://example.com/a")

    await service.delete(mapping.short_code)
    await service.delete(mapping.short_code)
    await service.delete("zzzz")
    await service.delete("!!!")


async def test_delete_store_unavailable(service, store) -> None:
    mapping = await service.create("https://example.com/a")
    store.down = True

    with pytest.raises(StoreUnavailableError):
        await service.delete(mapping.short_code)


async def test_delete_with_cache_unavailable_still_succeeds(service, store, cache_redis) -> None:
    mapping = await service.create("https://example.com/a")
    cache_redis.down = True

    await service.delete(mapping.short_code)

    assert mapping.short_code not in store.rows


async def test_describe_reads_hit_count_from_store(service) -> None:
    mapping = await service.create("https://example.com/a")
    await service.resolve(mapping.short_code)
    await service.resolve(mapping.short_code)
    await service.drain()

    info = await service.describe(mapping.short_code)

    assert info.hit_count == 2
    assert info.original_url == "https://example.com/a"


async def test_describe_expired(service, clock) -> None:
    mapping = await service.create("https://example.com/a", expires_in=datetime.timedelta(seconds=5))
    clock.advance(10)

    with pytest.raises(NotFoundError):
        await service.describe(mapping.short_code)
    await service.drain()


async def test_purge_expired_invalidates_cache(service, store, cache_redis, clock) -> None:
    short_lived = await service.create("https://example.com/a", expires_in=datetime.timedelta(seconds=5))
    long_lived = await service.create("https://example.com/b")
    clock.advance(10)

    purged = await service.purge_expired(limit=100)

    assert purged == 1
    assert short_lived.short_code not in store.rows
    assert long_lived.short_code in store.rows
    assert f"url:{short_lived.short_code}" not in cache_redis.data


async def test_health_reports_each_backend(service, store, cache_redis) -> None:
    assert await service.health() == (HealthStatus.HEALTHY, HealthStatus.HEALTHY)

    cache_redis.down = True
    assert await service.health() == (HealthStatus.HEALTHY, HealthStatus.UNHEALTHY)

    store.down = True
    assert await service.health() == (HealthStatus.UNHEALTHY, HealthStatus.UNHEALTHY)
