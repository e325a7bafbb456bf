"""Tests for the TTL cache and the throughput tracker."""

from __future__ import annotations

import pytest

from realtime_service.infra.realtime.cache import TTLCache
from realtime_service.infra.realtime.throughput import ThroughputTracker


@pytest.fixture
def cache(clock) -> TTLCache:
    return TTLCache(ttl=10, clock=clock)


class TestTTLCache:
    def test_set_and_get(self, cache):
        cache.set("poll:last", {"ok": True})

        assert cache.get("poll:last") == {"ok": True}
        assert "poll:last" in cache

    def test_missing_key_default(self, cache):
        assert cache.get("missing", "fallback") == "fallback"

    def test_expired_entry_not_served_but_kept(self, cache, clock):
        cache.set("k", 1)
        clock.advance(10)

        assert cache.get("k") is None
        assert cache.entry("k") is None
        assert "k" not in cache
        # Reads never delete
        assert len(cache) == 1

    def test_expire_removes(self, cache, clock):
        cache.set("old", 1)
        clock.advance(5)
        cache.set("new", 2)
        clock.advance(6)

        assert cache.expire() == 1
        assert cache.keys() == ["new"]

    def test_set_refreshes(self, cache, clock):
        cache.set("k", 1)
        clock.advance(8)
        cache.set("k", 2)
        clock.advance(8)

        assert cache.get("k") == 2


class TestThroughputTracker:
    def test_rate_over_window(self, clock):
        tracker = ThroughputTracker(retention=3600, clock=clock)

        tracker.record(30)
        clock.advance(1)
        tracker.record(30)

        assert tracker.rate(window=60) == pytest.approx(1.0)
        assert tracker.total == 60

    def test_disabled_only_counts_total(self, clock):
        tracker = ThroughputTracker(retention=3600, enabled=False, clock=clock)

        tracker.record(5)

        assert tracker.rate() == 0.0
        assert tracker.total == 5
        assert len(tracker) == 0

    def test_expire_drops_old_buckets(self, clock):
        tracker = ThroughputTracker(retention=60, clock=clock)
        tracker.record()
        clock.advance(120)
        tracker.record()

        assert tracker.expire() == 1
        assert len(tracker) == 1
