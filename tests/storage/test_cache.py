"""Tests for the keyed TTL cache."""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta

import pytest

from pump_stage_guard.storage.cache import KeyedTtlCache


@dataclass
class Entry:
    touched_at: datetime
    value: int = 0


@pytest.fixture
def cache(clock):
    """Create a cache with a one-hour TTL on the fake clock."""
    return KeyedTtlCache(
        name="test",
        ttl=timedelta(hours=1),
        sweep_interval=timedelta(minutes=1),
        timestamp_of=lambda entry: entry.touched_at,
        clock=clock,
    )


class TestConstruction:
    @pytest.mark.parametrize("ttl", [timedelta(0), timedelta(seconds=-1)])
    def test_non_positive_ttl_rejected(self, ttl):
        with pytest.raises(ValueError):
            KeyedTtlCache(name="x", ttl=ttl, sweep_interval=timedelta(seconds=1), timestamp_of=lambda e: e)

    def test_non_positive_interval_rejected(self):
        with pytest.raises(ValueError):
            KeyedTtlCache(name="x", ttl=timedelta(seconds=1), sweep_interval=timedelta(0), timestamp_of=lambda e: e)


class TestLocked:
    """Tests for locked access."""

    @pytest.mark.asyncio
    async def test_lazy_creation(self, cache, clock):
        async with cache.upsert("a", lambda: Entry(clock())) as entry:
            entry.value = 1

        assert "a" in cache
        assert len(cache) == 1

    @pytest.mark.asyncio
    async def test_locked_never_creates(self, cache):
        async with cache.locked("missing") as entry:
            assert entry is None

        assert "missing" not in cache
        assert cache._locks == {}

    @pytest.mark.asyncio
    async def test_updates_are_serialized(self, cache, clock):
        """Concurrent read-modify-write cycles on one key must not lose updates."""

        async def bump():
            async with cache.upsert("k", lambda: Entry(clock())) as entry:
                current = entry.value
                await asyncio.sleep(0)
                entry.value = current + 1

        await asyncio.gather(*(bump() for _ in range(20)))

        async with cache.locked("k") as entry:
            assert entry.value == 20

    @pytest.mark.asyncio
    async def test_remove(self, cache, clock):
        async with cache.upsert("a", lambda: Entry(clock())):
            pass

        assert await cache.remove("a") is True
        assert await cache.remove("a") is False
        assert "a" not in cache
        assert cache._locks == {}

    @pytest.mark.asyncio
    async def test_clear(self, cache, clock):
        for key in ("a", "b", "c"):
            async with cache.upsert(key, lambda: Entry(clock())):
                pass

        await cache.clear()

        assert len(cache) == 0


class TestSweep:
    """Tests for expiry."""

    @pytest.mark.asyncio
    async def test_sweep_evicts_expired(self, cache, clock):
        async with cache.upsert("old", lambda: Entry(clock())):
            pass
        clock.advance(minutes=45)
        async with cache.upsert("new", lambda: Entry(clock())):
            pass
        clock.advance(minutes=30)

        assert await cache.sweep() == 1
        assert "old" not in cache
        assert "new" in cache

    @pytest.mark.asyncio
    async def test_sweep_respects_refresh(self, cache, clock):
        """An entry refreshed after the sweep snapshot must survive."""
        async with cache.upsert("a", lambda: Entry(clock())):
            pass
        clock.advance(hours=2)

        async with cache.locked("a") as entry:
            entry.touched_at = clock()

        assert await cache.sweep() == 0
        assert "a" in cache

    @pytest.mark.asyncio
    async def test_background_sweeper_lifecycle(self, cache):
        cache.start()
        assert cache.is_sweeping

        await cache.shutdown()
        assert not cache.is_sweeping
