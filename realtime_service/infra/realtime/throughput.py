"""Events-per-second tracking for status reports."""

from __future__ import annotations

import time
from collections import deque
from collections.abc import Callable


class ThroughputTracker:
    """Counts events in one-second buckets.

    Buckets older than ``retention`` seconds are dropped by ``expire``.
    """

    def __init__(
        self,
        retention: float,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.retention = retention
        self.enabled = enabled
        self._clock = clock
        # (bucket second, count), oldest first
        self._buckets: deque[list[int]] = deque()
        self.total = 0

    def record(self, count: int = 1) -> None:
        self.total += count
        if not self.enabled:
            return
        second = int(self._clock())
        if self._buckets and self._buckets[-1][0] == second:
            self._buckets[-1][1] += count
        else:
            self._buckets.append([second, count])

    def rate(self, window: float = 60.0) -> float:
        """Average events per second over the last ``window`` seconds."""
        if not self.enabled or window <= 0:
            return 0.0
        cutoff = self._clock() - window
        recent = sum(count for second, count in self._buckets if second >= cutoff)
        return round(recent / window, 3)

    def expire(self, now: float | None = None) -> int:
        now = self._clock() if now is None else now
        cutoff = now - self.retention
        removed = 0
        while self._buckets and self._buckets[0][0] < cutoff:
            self._buckets.popleft()
            removed += 1
        return removed

    def __len__(self) -> int:
        return len(self._buckets)
