"""
Tests for BoundedTTLCache.

Tests cover: expiry against an injected clock, capacity bound with
oldest-first eviction, refresh on re-insert, hit/miss/eviction statistics.
"""

import threading

import pytest

from pondfinder.cache.ttl_cache import BoundedTTLCache, round_bbox_key


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


class TestExpiry:
    def test_fresh_entry_is_returned(self, clock):
        cache = BoundedTTLCache(max_entries=4, ttl_seconds=60, clock=clock)
        cache.put("k", "v")
        clock.advance(59)
        assert cache.get("k") == "v"
        assert "k" in cache

    def test_entry_expires_at_ttl(self, clock):
        cache = BoundedTTLCache(max_entries=4, ttl_seconds=60, clock=clock)
        cache.put("k", "v")
        clock.advance(60)
        assert "k" not in cache
        assert cache.get("k") is None
        assert len(cache) == 0

    def test_default_for_missing_key(self, clock):
        cache = BoundedTTLCache(max_entries=4, ttl_seconds=60, clock=clock)
        assert cache.get("missing", default=[]) == []

    def test_put_refreshes_timestamp(self, clock):
        cache = BoundedTTLCache(max_entries=4, ttl_seconds=60, clock=clock)
        cache.put("k", "old")
        clock.advance(50)
        cache.put("k", "new")
        clock.advance(50)
        assert cache.get("k") == "new"


class TestCapacity:
    def test_never_exceeds_max_entries(self, clock):
        cache = BoundedTTLCache(max_entries=3, ttl_seconds=60, clock=clock)
        for i in range(10):
            cache.put(i, i)
            assert len(cache) <= 3
        assert len(cache) == 3

    def test_evicts_oldest_inserted(self, clock):
        cache = BoundedTTLCache(max_entries=2, ttl_seconds=60, clock=clock)
        cache.put("a", 1)
        cache.put("b", 2)
        cache.get("a")  # reads do not affect eviction order
        cache.put("c", 3)
        assert cache.get("a") is None
        assert cache.get("b") == 2
        assert cache.get("c") == 3

    def test_reinsert_moves_key_to_back(self, clock):
        cache = BoundedTTLCache(max_entries=2, ttl_seconds=60, clock=clock)
        cache.put("a", 1)
        cache.put("b", 2)
        cache.put("a", 10)
        cache.put("c", 3)
        assert cache.get("a") == 10
        assert cache.get("b") is None

    @pytest.mark.parametrize("max_entries,ttl", [(0, 60), (5, 0), (5, -1)])
    def test_invalid_configuration(self, max_entries, ttl):
        with pytest.raises(ValueError):
            BoundedTTLCache(max_entries=max_entries, ttl_seconds=ttl)


class TestStats:
    def test_counts_hits_misses_and_evictions(self, clock):
        cache = BoundedTTLCache(max_entries=1, ttl_seconds=60, clock=clock)
        cache.put("a", 1)
        cache.get("a")
        cache.get("b")
        cache.put("b", 2)
        clock.advance(61)
        cache.get("b")

        assert cache.stats() == {"hits": 1, "misses": 2, "evictions": 1, "size": 0}

    def test_clear_resets(self, clock):
        cache = BoundedTTLCache(max_entries=2, ttl_seconds=60, clock=clock)
        cache.put("a", 1)
        cache.get("a")
        cache.clear()
        assert cache.stats() == {"hits": 0, "misses": 0, "evictions": 0, "size": 0}


class TestThreadSafety:
    def test_interleaved_access_stays_bounded(self):
        cache = BoundedTTLCache(max_entries=8, ttl_seconds=3600)
        workers, rounds, keys = 8, 500, 40
        start = threading.Barrier(workers)
        oversized = []

        def work(seed):
            start.wait()
            for i in range(rounds):
                key = (seed * 7 + i) % keys
                cache.put(key, i)
                cache.get((key + 3) % keys)
                if len(cache) > cache.max_entries:
                    oversized.append(len(cache))

        threads = [threading.Thread(target=work, args=(n,)) for n in range(workers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        stats = cache.stats()
        assert oversized == []
        assert len(cache) == stats["size"] == 8
        assert stats["hits"] + stats["misses"] == workers * rounds
        assert stats["evictions"] >= keys - cache.max_entries


def test_round_bbox_key_collapses_nearby_boxes():
    a = round_bbox_key(29.1012, -82.2049, 29.3, -82.0)
    b = round_bbox_key(29.0999, -82.2001, 29.3, -82.0)
    assert a == b == "29.1,-82.2,29.3,-82.0"
