from datetime import datetime, timedelta

import pytest

from gridledger.services import cash_service
from gridledger.services.cache_service import (
    CacheUnavailable,
    DEPOSITS_KEY,
    DatabaseCacheBackend,
    MemoryCacheBackend,
    PROJECTS_KEY,
    ReadCache,
    analysis_key,
    invalidate_data_cache,
)


class FakeClock:
    def __init__(self):
        self.now = datetime(2024, 3, 15, 1, 0)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


class BrokenBackend:
    def get(self, key):
        raise CacheUnavailable("down")

    def put(self, key, value, ttl_seconds):
        raise CacheUnavailable("down")

    def remove(self, key):
        raise CacheUnavailable("down")

    def clear(self):
        raise CacheUnavailable("down")


def test_entry_expires_after_ttl():
    clock = FakeClock()
    backend = MemoryCacheBackend(clock=clock)
    backend.put("k", "v", 60)

    clock.advance(59)
    assert backend.get("k") == "v"
    clock.advance(1)
    assert backend.get("k") is None


def test_lru_eviction_drops_oldest_entry():
    backend = MemoryCacheBackend(max_size=2)
    backend.put("a", "1", 60)
    backend.put("b", "2", 60)
    backend.get("a")
    backend.put("c", "3", 60)

    assert backend.get("b") is None
    assert backend.get("a") == "1"


def test_get_or_compute_computes_once_until_invalidated():
    cache = ReadCache(MemoryCacheBackend())
    calls = []

    def compute():
        calls.append(1)
        return {"n": len(calls)}

    assert cache.get_or_compute(PROJECTS_KEY, 60, compute) == {"n": 1}
    assert cache.get_or_compute(PROJECTS_KEY, 60, compute) == {"n": 1}
    cache.invalidate(PROJECTS_KEY)
    assert cache.get_or_compute(PROJECTS_KEY, 60, compute) == {"n": 2}


def test_undecodable_value_is_a_miss():
    backend = MemoryCacheBackend()
    backend.put(PROJECTS_KEY, "{not json", 60)
    cache = ReadCache(backend)

    assert cache.get_or_compute(PROJECTS_KEY, 60, lambda: [1]) == [1]


def test_unavailable_backend_degrades_to_compute():
    cache = ReadCache(BrokenBackend())

    assert cache.get_or_compute(PROJECTS_KEY, 60, lambda: ["fresh"]) == ["fresh"]
    assert cache.put("k", "v", 60) is False
    cache.invalidate("k")
    assert cache.clear() == 0


def test_invalidation_covers_analysis_years_around_current():
    backend = MemoryCacheBackend()
    cache = ReadCache(backend)
    for year in (2021, 2022, 2024, 2025, 2026):
        backend.put(analysis_key(year), "{}", 600)
    backend.put(DEPOSITS_KEY, "[]", 600)

    invalidate_data_cache(cache, 2024)

    assert backend.get(analysis_key(2021)) == "{}"
    assert backend.get(analysis_key(2022)) is None
    assert backend.get(analysis_key(2025)) is None
    assert backend.get(analysis_key(2026)) == "{}"
    assert backend.get(DEPOSITS_KEY) is None


def test_write_invalidates_cached_listing(ctx):
    assert cash_service.list_deposits(ctx) == []

    result = cash_service.save_deposit(ctx, {"estimate_id": "0000001-00", "client": "東和建設", "amount": 5000})

    assert result.success
    assert [d["id"] for d in cash_service.list_deposits(ctx)] == [result.id]


def test_malformed_write_leaves_cache_untouched(ctx):
    ctx.cache.put(DEPOSITS_KEY, '["cached"]', 600)

    result = cash_service.save_deposit(ctx, ["not", "a", "mapping"])

    assert result.success is False
    assert result.reason == "malformed"
    assert ctx.cache.get(DEPOSITS_KEY) == '["cached"]'


class TestDatabaseBackend:
    @pytest.fixture(autouse=True)
    def _clean(self, app):
        backend = DatabaseCacheBackend()
        backend.clear()
        yield
        backend.clear()

    def test_round_trip_and_expiry(self):
        clock = FakeClock()
        backend = DatabaseCacheBackend(clock=clock)

        backend.put("masters_data", '{"clients": []}', 60)
        assert backend.get("masters_data") == '{"clients": []}'

        clock.advance(61)
        assert backend.get("masters_data") is None

    def test_put_overwrites_existing_key(self):
        backend = DatabaseCacheBackend()
        backend.put("k", "1", 60)
        backend.put("k", "2", 60)

        assert backend.get("k") == "2"
        assert backend.clear() == 1
