import asyncio
import datetime

from redis.exceptions import ConnectionError as RedisConnectionError

from fakes import ADDRESS_X, FakeClock, FakeIdentityStore, FakeRedis
from token_resolver.cache.failures import FailureTracker
from token_resolver.cache.hierarchy import (
    CREATION_UNKNOWN,
    CacheHierarchy,
    Tier,
    creation_key,
    image_key,
    market_price_key,
    market_stats_key,
)
from token_resolver.cache.memory import MemoryCache
from token_resolver.cache.shared import SharedCache
from token_resolver.config.settings import CacheSettings
from token_resolver.schemas.token import MarketSnapshot


class BrokenRedis:
    async def get(self, key: str):
        raise RedisConnectionError("redis down")

    async def setex(self, key: str, ttl: int, value: str):
        raise RedisConnectionError("redis down")

    async def delete(self, key: str):
        raise RedisConnectionError("redis down")


def _hierarchy(clock: FakeClock, redis: FakeRedis | None = None) -> CacheHierarchy:
    return CacheHierarchy(
        MemoryCache(clock=clock),
        SharedCache(redis or FakeRedis(clock)),
        FakeIdentityStore(),
        CacheSettings(),
    )


def test_memory_cache_expires_entries() -> None:
    clock = FakeClock()
    cache = MemoryCache(clock=clock)

    cache.set("k", "v", ttl_s=10)
    assert cache.get("k") == ("v", True)

    clock.advance(10)
    assert cache.get("k") == (None, False)
    # expired entries stay until swept
    assert len(cache) == 1
    assert cache.sweep() == 1
    assert len(cache) == 0


def test_memory_cache_evicts_soonest_expiry_when_full() -> None:
    clock = FakeClock()
    cache = MemoryCache(max_entries=2, clock=clock)

    cache.set("short", 1, ttl_s=5)
    cache.set("long", 2, ttl_s=50)
    cache.set("new", 3, ttl_s=20)

    assert len(cache) == 2
    assert cache.get("short") == (None, False)
    assert cache.get("long") == (2, True)
    assert cache.get("new") == (3, True)


def test_memory_cache_sweeper_task_starts_and_stops() -> None:
    async def run():
        cache = MemoryCache(sweep_interval_s=0.01)
        cache.set("k", "v", ttl_s=0)
        cache.start()
        await asyncio.sleep(0.05)
        size = len(cache)
        await cache.stop()
        return size

    assert asyncio.run(run()) == 0


def test_shared_cache_roundtrip_and_ttl() -> None:
    fake = FakeRedis()
    shared = SharedCache(fake)

    async def run():
        await shared.setex("token:image:x", 123, "https://img.example/x.png")
        return await shared.get("token:image:x")

    assert asyncio.run(run()) == "https://img.example/x.png"
    assert fake.expirations["token:image:x"] == 123


def test_shared_cache_failure_reads_as_miss() -> None:
    shared = SharedCache(BrokenRedis())

    async def run():
        await shared.setex("k", 10, "v")
        await shared.delete("k")
        return await shared.get("k")

    assert asyncio.run(run()) is None


def test_generic_get_and_invalidate_cover_l1_and_l2() -> None:
    clock = FakeClock()
    hierarchy = _hierarchy(clock)

    async def run():
        await hierarchy.set(Tier.L1, "some:key", {"a": 1}, 30)
        await hierarchy.set(Tier.L2, "some:key", "raw", 30)
        before = (await hierarchy.get(Tier.L1, "some:key"), await hierarchy.get(Tier.L2, "some:key"))
        await hierarchy.invalidate("some:key")
        after = (await hierarchy.get(Tier.L1, "some:key"), await hierarchy.get(Tier.L2, "some:key"))
        return before, after

    before, after = asyncio.run(run())
    assert before == (({"a": 1}, True), ("raw", True))
    assert after == ((None, False), (None, False))


def test_market_snapshot_roundtrip_through_l2() -> None:
    clock = FakeClock()
    redis = FakeRedis(clock)
    writer = _hierarchy(clock, redis)
    # a second process sharing redis but with its own empty L1
    reader = _hierarchy(clock, redis)
    snapshot = MarketSnapshot(
        address=ADDRESS_X,
        price=0.12,
        market_cap=1_000_000.0,
        volume_24h=0.0,
        sources={"price": "dexscreener", "market_cap": "dexscreener", "volume_24h": "birdeye"},
    )

    async def run():
        await writer.set_market(snapshot)
        return await reader.get_market(ADDRESS_X)

    cached = asyncio.run(run())

    assert cached is not None
    assert cached.price == snapshot.price
    assert cached.market_cap == snapshot.market_cap
    assert cached.volume_24h == snapshot.volume_24h
    assert cached.captured_at == snapshot.captured_at
    assert cached.sources == snapshot.sources
    assert redis.expirations[market_price_key(ADDRESS_X)] == 60
    assert redis.expirations[market_stats_key(ADDRESS_X)] == 300


def test_market_price_expires_before_stats() -> None:
    clock = FakeClock()
    hierarchy = _hierarchy(clock)
    snapshot = MarketSnapshot(address=ADDRESS_X, price=1.0, market_cap=10.0, volume_24h=5.0)

    async def run():
        await hierarchy.set_market(snapshot)
        clock.advance(61)
        return await hierarchy.get_market(ADDRESS_X)

    cached = asyncio.run(run())

    assert cached.price is None
    assert cached.market_cap == 10.0
    assert cached.missing_fields() == ["price"]


def test_market_invalidate_clears_both_parts() -> None:
    clock = FakeClock()
    hierarchy = _hierarchy(clock)

    async def run():
        await hierarchy.set_market(MarketSnapshot(address=ADDRESS_X, price=1.0, market_cap=2.0))
        await hierarchy.invalidate_market(ADDRESS_X)
        return await hierarchy.get_market(ADDRESS_X)

    assert asyncio.run(run()) is None


def test_creation_time_sentinel_is_a_hit() -> None:
    clock = FakeClock()
    redis = FakeRedis(clock)
    hierarchy = _hierarchy(clock, redis)
    created = datetime.datetime(2024, 3, 1, 12, 0, tzinfo=datetime.UTC)

    async def run():
        await hierarchy.set_creation_time(ADDRESS_X, None)
        unknown = await hierarchy.get_creation_time(ADDRESS_X)
        await hierarchy.set_creation_time(ADDRESS_X, created)
        known = await hierarchy.get_creation_time(ADDRESS_X)
        return unknown, known

    unknown, known = asyncio.run(run())

    assert unknown == (None, True)
    assert known == (created, True)
    assert redis.expirations[creation_key(ADDRESS_X)] == 7 * 24 * 60 * 60


def test_creation_time_missing_is_a_miss() -> None:
    hierarchy = _hierarchy(FakeClock())
    assert asyncio.run(hierarchy.get_creation_time(ADDRESS_X)) == (None, False)
    assert CREATION_UNKNOWN == "UNKNOWN"


def test_image_url_uses_week_ttl() -> None:
    clock = FakeClock()
    redis = FakeRedis(clock)
    hierarchy = _hierarchy(clock, redis)

    async def run():
        await hierarchy.set_image_url(ADDRESS_X, "https://img.example/x.png")
        return await hierarchy.get_image_url(ADDRESS_X)

    assert asyncio.run(run()) == "https://img.example/x.png"
    assert redis.expirations[image_key(ADDRESS_X)] == 7 * 24 * 60 * 60


def test_failure_tracker_marks_expire() -> None:
    clock = FakeClock()
    failures = FailureTracker(ttl_s=300, clock=clock)

    failures.mark_failed("identity:x")
    assert failures.is_failed("identity:x") is True
    assert failures.is_failed("market:x") is False

    clock.advance(299)
    assert failures.is_failed("identity:x") is True
    clock.advance(1)
    assert failures.is_failed("identity:x") is False


def test_failure_tracker_clear_and_sweep() -> None:
    clock = FakeClock()
    failures = FailureTracker(ttl_s=10, clock=clock)
    failures.mark_failed("a")
    failures.mark_failed("b")

    failures.clear("a")
    assert failures.is_failed("a") is False

    clock.advance(10)
    assert failures.sweep() == 1


def test_failure_tracker_sweeper_task_drops_expired_marks() -> None:
    async def run():
        failures = FailureTracker(ttl_s=0, sweep_interval_s=0.01)
        failures.mark_failed("identity:a")
        failures.mark_failed("market:b")
        failures.start()
        await asyncio.sleep(0.05)
        size = len(failures)
        await failures.stop()
        return size

    assert asyncio.run(run()) == 0
