"""Per-connection bounded delivery queues."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from realtime_service.infra.metrics.prometheus import (
    realtime_queue_depth,
    realtime_queue_dropped_total,
)

if TYPE_CHECKING:
    from realtime_service.core.settings.realtime import RealtimeSettings
    from realtime_service.core.topics import Topic
    from realtime_service.infra.realtime.events import Event

logger = logging.getLogger(__name__)


@dataclass
class _PendingQueue:
    entries: deque[tuple[Event, float]] = field(default_factory=deque)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    # Set when depth reaches the flush threshold
    ready: asyncio.Event = field(default_factory=asyncio.Event)
    overflowed: int = 0
    expired: int = 0


class DeliveryQueue:
    """Pending events for every open connection.

    Each queue holds at most ``max_queue_size`` entries. When full, the oldest
    entry is dropped so ingestion never blocks on a slow client. Entries older
    than ``queue_ttl`` are never delivered.

    Example:
        queue = DeliveryQueue(settings)
        queue.open(connection_id)
        await queue.enqueue(connection_id, event)
        batch = await queue.drain(connection_id)
    """

    def __init__(
        self,
        settings: RealtimeSettings,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings
        self._clock = clock
        self._queues: dict[str, _PendingQueue] = {}

    @property
    def max_size(self) -> int:
        return self._settings.max_queue_size

    @property
    def ttl(self) -> float:
        return self._settings.queue_ttl_seconds

    def open(self, connection_id: str) -> None:
        """Create an empty queue for a connection (no-op if it exists)."""
        self._queues.setdefault(connection_id, _PendingQueue())

    def discard(self, connection_id: str) -> int:
        """Drop a connection's queue. Returns the number of undelivered entries."""
        pending = self._queues.pop(connection_id, None)
        if pending is None:
            return 0
        # Wake a flusher that may be waiting on this queue
        pending.ready.set()
        dropped = len(pending.entries)
        pending.entries.clear()
        if dropped:
            realtime_queue_dropped_total.labels(reason="discarded").inc(dropped)
        self._update_depth_metric()
        return dropped

    def is_open(self, connection_id: str) -> bool:
        return connection_id in self._queues

    async def enqueue(self, connection_id: str, event: Event) -> bool:
        """Append an event for a connection.

        Returns:
            False when the connection has no queue (closed or unknown).
        """
        pending = self._queues.get(connection_id)
        if pending is None:
            return False

        overflow = False
        async with pending.lock:
            if len(pending.entries) >= self.max_size:
                overflow = True
                dropped, _ = pending.entries.popleft()
                pending.overflowed += 1
                realtime_queue_dropped_total.labels(reason="overflow").inc()
                logger.debug(
                    "Delivery queue full, dropped oldest event",
                    extra={
                        "connection_id": connection_id,
                        "topic": dropped.topic.value,
                        "sequence_id": dropped.sequence_id,
                    },
                )
            pending.entries.append((event, self._clock()))
            if len(pending.entries) >= self._settings.effective_flush_threshold:
                pending.ready.set()

        if not overflow:
            realtime_queue_depth.inc()
        return True

    async def drain(self, connection_id: str, limit: int | None = None) -> list[Event]:
        """Remove and return up to ``limit`` (default ``batch_size``) oldest events.

        Expired entries met along the way are dropped, not returned.
        """
        pending = self._queues.get(connection_id)
        if pending is None:
            return []

        limit = self._settings.batch_size if limit is None else limit
        now = self._clock()
        batch: list[Event] = []
        skipped = 0

        async with pending.lock:
            while pending.entries and len(batch) < limit:
                event, enqueued_at = pending.entries.popleft()
                if now - enqueued_at >= self.ttl:
                    skipped += 1
                    continue
                batch.append(event)
            if len(pending.entries) < self._settings.effective_flush_threshold:
                pending.ready.clear()

        if skipped:
            pending.expired += skipped
            realtime_queue_dropped_total.labels(reason="expired").inc(skipped)
        self._update_depth_metric()
        return batch

    async def purge(
        self,
        connection_id: str,
        topic: Topic,
        keep: Callable[[Event], bool] | None = None,
    ) -> int:
        """Drop a connection's pending entries for ``topic``.

        Entries for which ``keep`` returns True stay queued. Returns the
        number of entries dropped.
        """
        pending = self._queues.get(connection_id)
        if pending is None:
            return 0

        async with pending.lock:
            retained = deque(
                (event, enqueued_at)
                for event, enqueued_at in pending.entries
                if event.topic is not topic or (keep is not None and keep(event))
            )
            dropped = len(pending.entries) - len(retained)
            pending.entries = retained
            if len(retained) < self._settings.effective_flush_threshold:
                pending.ready.clear()

        if dropped:
            realtime_queue_dropped_total.labels(reason="unsubscribed").inc(dropped)
            self._update_depth_metric()
        return dropped

    async def expire(self, now: float | None = None) -> int:
        """Drop entries older than ``queue_ttl`` from every queue."""
        now = self._clock() if now is None else now
        removed = 0

        for pending in list(self._queues.values()):
            async with pending.lock:
                expired = 0
                # Entries are appended in time order, so expired ones form a prefix
                while pending.entries and now - pending.entries[0][1] >= self.ttl:
                    pending.entries.popleft()
                    expired += 1
            if expired:
                pending.expired += expired
                removed += expired

        if removed:
            realtime_queue_dropped_total.labels(reason="expired").inc(removed)
        self._update_depth_metric()
        return removed

    async def wait(self, connection_id: str, timeout: float) -> None:
        """Sleep until the queue reaches the flush threshold or ``timeout`` passes."""
        pending = self._queues.get(connection_id)
        if pending is None:
            return
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(pending.ready.wait(), timeout)

    def depth(self, connection_id: str) -> int:
        pending = self._queues.get(connection_id)
        return len(pending.entries) if pending is not None else 0

    def depths(self) -> dict[str, int]:
        return {cid: len(pending.entries) for cid, pending in self._queues.items()}

    def overflow_count(self, connection_id: str) -> int:
        pending = self._queues.get(connection_id)
        return pending.overflowed if pending is not None else 0

    @property
    def total_depth(self) -> int:
        return sum(len(pending.entries) for pending in self._queues.values())

    def _update_depth_metric(self) -> None:
        realtime_queue_depth.set(self.total_depth)
