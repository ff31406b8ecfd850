"""Tests for the TTL result cache."""

import asyncio

import pytest

from synapse_workspace.sql.result_cache import ResultCache


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return ResultCache(ttl_seconds=300, check_period_seconds=60, max_entries=3, clock=clock)


class TestResultCache:

    def test_get_returns_copy_of_rows(self, cache):
        rows = [{"id": 1}]
        cache.set("k", rows)
        rows[0]["id"] = 99

        cached = cache.get("k")
        assert cached == [{"id": 1}]
        cached[0]["id"] = 42
        assert cache.get("k") == [{"id": 1}]

    def test_entry_expires_after_ttl(self, cache, clock):
        cache.set("k", [{"id": 1}])

        clock.advance(299)
        assert cache.get("k") == [{"id": 1}]
        clock.advance(1)
        assert cache.get("k") is None
        assert "k" not in cache

    def test_reads_do_not_extend_lifetime(self, cache, clock):
        cache.set("k", [])
        for _ in range(3):
            clock.advance(100)
            cache.get("k")

        assert cache.get("k") is None

    def test_set_replaces_and_restarts_ttl(self, cache, clock):
        cache.set("k", [{"v": 1}])
        clock.advance(200)
        cache.set("k", [{"v": 2}])
        clock.advance(200)

        assert cache.get("k") == [{"v": 2}]

    def test_zero_ttl_disables_caching(self, clock):
        cache = ResultCache(ttl_seconds=0, clock=clock)
        cache.set("k", [{"id": 1}])

        assert cache.enabled is False
        assert cache.get("k") is None
        assert len(cache) == 0

    def test_oldest_entry_evicted_at_capacity(self, cache):
        for key in ("a", "b", "c", "d"):
            cache.set(key, [])

        assert cache.keys() == ["b", "c", "d"]

    def test_purge_expired(self, cache, clock):
        cache.set("old", [])
        clock.advance(200)
        cache.set("new", [])
        clock.advance(100)

        assert cache.purge_expired() == 1
        assert cache.keys() == ["new"]

    def test_len_counts_only_live_entries(self, cache, clock):
        cache.set("a", [])
        clock.advance(301)
        cache.set("b", [])

        assert len(cache) == 1

    def test_delete_and_flush(self, cache):
        cache.set("a", [])
        cache.set("b", [])

        assert cache.delete("a") is True
        assert cache.delete("a") is False
        assert cache.flush() == 1
        assert len(cache) == 0


class TestSweeper:

    @pytest.mark.asyncio
    async def test_sweeper_purges_periodically(self, clock):
        cache = ResultCache(ttl_seconds=1, check_period_seconds=0.01, clock=clock)
        cache.set("k", [])
        clock.advance(5)

        cache.start_sweeper()
        await asyncio.sleep(0.05)

        assert cache._entries == {}
        await cache.stop_sweeper()

    @pytest.mark.asyncio
    async def test_start_is_idempotent_and_stop_cancels(self, cache):
        cache.start_sweeper()
        task = cache._sweeper
        cache.start_sweeper()

        assert cache._sweeper is task
        await cache.stop_sweeper()
        assert task.cancelled()
        assert cache._sweeper is None

    @pytest.mark.asyncio
    async def test_no_sweeper_when_disabled(self):
        cache = ResultCache(ttl_seconds=0)
        cache.start_sweeper()

        assert cache._sweeper is None
        await cache.stop_sweeper()
