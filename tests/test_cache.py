"""Tests for the TTL cache."""

from __future__ import annotations

import threading
from datetime import timedelta

from bestreviewer.cache import TTLCache


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestTTLCache:
    def test_miss(self) -> None:
        cache = TTLCache()
        assert cache.get("k") == (None, False)

    def test_hit_before_expiry(self) -> None:
        clock = FakeClock()
        cache = TTLCache(clock)
        cache.set("k", [1, 2], timedelta(minutes=5))
        clock.advance(299)
        assert cache.get("k") == ([1, 2], True)

    def test_expired_entry_is_evicted(self) -> None:
        clock = FakeClock()
        cache = TTLCache(clock)
        cache.set("k", "v", timedelta(seconds=10))
        clock.advance(10)
        assert cache.get("k") == (None, False)
        assert len(cache) == 0

    def test_none_ttl_never_expires(self) -> None:
        clock = FakeClock()
        cache = TTLCache(clock)
        cache.set("k", "v", None)
        clock.advance(10 ** 9)
        assert cache.get("k") == ("v", True)

    def test_cached_none_is_found(self) -> None:
        cache = TTLCache()
        cache.set("k", None)
        assert cache.get("k") == (None, True)

    def test_delete(self) -> None:
        cache = TTLCache()
        cache.set("k", 1)
        cache.delete("k")
        cache.delete("missing")
        assert cache.get("k") == (None, False)

    def test_purge_expired(self) -> None:
        clock = FakeClock()
        cache = TTLCache(clock)
        cache.set("a", 1, timedelta(seconds=1))
        cache.set("b", 2, timedelta(hours=1))
        clock.advance(5)
        assert cache.purge_expired() == 1
        assert cache.get("b") == (2, True)


class TestFailureEntries:
    def test_failure_expires(self) -> None:
        clock = FakeClock()
        cache = TTLCache(clock)
        cache.set_failure("k", timedelta(minutes=10))
        assert cache.has_failure("k")
        clock.advance(601)
        assert not cache.has_failure("k")

    def test_failure_does_not_shadow_value(self) -> None:
        cache = TTLCache()
        cache.set("k", "v")
        cache.set_failure("k", timedelta(minutes=1))
        assert cache.get("k") == ("v", True)
        assert cache.has_failure("k")


class TestConcurrency:
    def test_parallel_writers(self) -> None:
        cache = TTLCache()

        def write(base: int) -> None:
            for i in range(200):
                cache.set((base, i), i, timedelta(hours=1))
                cache.get((base, i))

        threads = [threading.Thread(target=write, args=(b,)) for b in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(cache) == 8 * 200
