"""Tests for the TTL cache and its sweeper."""
import asyncio

import pytest

from querygen.cache import CacheContext, CacheSweeper


class TestCacheContext:
    def test_get_returns_live_value(self, clock):
        """A value is returned until its TTL elapses."""
        cache = CacheContext(default_ttl=10, clock=clock)
        cache.set("k", "v")
        clock.advance(9.9)
        assert cache.get("k") == "v"

    def test_expired_entry_is_evicted_on_read(self, clock):
        """Reading an expired key returns the default and removes it."""
        cache = CacheContext(default_ttl=10, clock=clock)
        cache.set("k", "v")
        clock.advance(10)
        assert cache.get("k", "missing") == "missing"
        assert len(cache) == 0

    def test_per_entry_ttl_overrides_default(self, clock):
        cache = CacheContext(default_ttl=100, clock=clock)
        cache.set("short", 1, ttl=1)
        cache.set("long", 2)
        clock.advance(2)
        assert "short" not in cache
        assert "long" in cache

    def test_capacity_evicts_oldest(self, clock):
        """When full, inserting a new key drops the oldest one."""
        cache = CacheContext(max_size=2, clock=clock)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("c", 3)
        assert cache.keys() == ["b", "c"]

    def test_reset_key_moves_to_newest(self, clock):
        cache = CacheContext(max_size=2, clock=clock)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("a", 10)
        cache.set("c", 3)
        assert cache.get("a") == 10
        assert "b" not in cache

    def test_sweep_removes_only_expired(self, clock):
        cache = CacheContext(default_ttl=5, clock=clock)
        cache.set("old", 1)
        clock.advance(3)
        cache.set("new", 2)
        clock.advance(3)
        assert cache.sweep() == 1
        assert cache.keys() == ["new"]

    def test_stats_track_hits_and_misses(self, clock):
        cache = CacheContext(clock=clock)
        cache.set("k", 1)
        cache.get("k")
        cache.get("other")
        stats = cache.stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate"] == 0.5

    def test_evict_and_clear(self, clock):
        cache = CacheContext(clock=clock)
        cache.set("a", 1)
        cache.set("b", 2)
        assert cache.evict("a") is True
        assert cache.evict("a") is False
        cache.clear()
        assert len(cache) == 0

    def test_rejects_zero_capacity(self):
        with pytest.raises(ValueError):
            CacheContext(max_size=0)


class TestCacheSweeper:
    def test_sweep_once_covers_registered_caches(self, clock):
        first = CacheContext(default_ttl=1, clock=clock)
        second = CacheContext(default_ttl=1, clock=clock)
        first.set("a", 1)
        second.set("b", 2)
        sweeper = CacheSweeper([first])
        sweeper.register(second)
        sweeper.register(second)
        clock.advance(2)
        assert sweeper.sweep_once() == 2
        assert len(sweeper.caches) == 2

    async def test_background_task_starts_and_stops(self, clock):
        cache = CacheContext(default_ttl=1, clock=clock)
        cache.set("a", 1)
        clock.advance(2)
        sweeper = CacheSweeper([cache], interval=0.01)
        sweeper.start()
        assert sweeper.running
        await asyncio.sleep(0.05)
        await sweeper.stop()
        assert not sweeper.running
        assert len(cache) == 0
