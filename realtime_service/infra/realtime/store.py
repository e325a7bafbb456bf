"""Bounded, TTL-expiring per-topic event store."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from realtime_service.core.exceptions import TopicDisabled, UnsupportedTopic
from realtime_service.core.topics import Topic
from realtime_service.infra.metrics.prometheus import (
    realtime_events_evicted_total,
    realtime_events_ingested_total,
)
from realtime_service.infra.realtime.events import Event

if TYPE_CHECKING:
    from realtime_service.core.settings.realtime import RealtimeSettings

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class EventStore:
    """Holds the most recent events of every topic.

    Each topic keeps at most ``max_events`` events (oldest evicted first) and
    no event is served once it is older than ``event_ttl`` seconds. Sequence
    numbers start at 1 per topic and are never reused, even after eviction.

    Example:
        store = EventStore(settings)
        event = await store.ingest(Topic.DEVICE_HEALTH, {"cpu": 12})
        recent = await store.query(Topic.DEVICE_HEALTH, since=event.sequence_id - 1)
    """

    def __init__(
        self,
        settings: RealtimeSettings,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._settings = settings
        self._clock = clock
        self._wall_clock = wall_clock
        self._lock = asyncio.Lock()
        self._events: dict[Topic, deque[Event]] = {topic: deque() for topic in Topic}
        self._sequences: dict[Topic, int] = dict.fromkeys(Topic, 0)
        self._last_event_at: dict[Topic, datetime] = {}

    @property
    def capacity(self) -> int:
        return self._settings.max_events

    @property
    def ttl(self) -> float:
        return float(self._settings.event_ttl)

    def resolve_topic(self, topic: Topic | str) -> Topic:
        """Return the enabled Topic for ``topic``.

        Raises:
            UnsupportedTopic: Unknown topic name.
            TopicDisabled: Known topic switched off in configuration.
        """
        parsed = Topic.parse(topic)
        if parsed is None:
            raise UnsupportedTopic(topic)
        if not self._settings.is_enabled(parsed):
            raise TopicDisabled(parsed)
        return parsed

    async def ingest(self, topic: Topic | str, payload: Any, source: str = "poll") -> Event:
        """Store a new event and return it with its sequence metadata."""
        parsed = self.resolve_topic(topic)

        async with self._lock:
            events = self._events[parsed]
            if len(events) >= self.capacity:
                evicted = events.popleft()
                realtime_events_evicted_total.labels(topic=parsed.value, reason="capacity").inc()
                logger.debug(
                    "Event evicted at capacity",
                    extra={"topic": parsed.value, "sequence_id": evicted.sequence_id},
                )

            self._sequences[parsed] += 1
            event = Event(
                topic=parsed,
                payload=payload,
                created_at=self._wall_clock(),
                sequence_id=self._sequences[parsed],
                ingested_at=self._clock(),
            )
            events.append(event)
            self._last_event_at[parsed] = event.created_at

        realtime_events_ingested_total.labels(topic=parsed.value, source=source).inc()
        return event

    async def query(self, topic: Topic | str, since: int = 0) -> list[Event]:
        """Events of ``topic`` with ``sequence_id > since``, oldest first.

        Unknown topics yield an empty list; expired events are never returned.
        """
        parsed = Topic.parse(topic)
        if parsed is None:
            return []

        now = self._clock()
        async with self._lock:
            return [
                event
                for event in self._events[parsed]
                if event.sequence_id > since and event.age(now) < self.ttl
            ]

    async def expire(self, now: float | None = None) -> int:
        """Remove events older than ``event_ttl`` and return how many went."""
        now = self._clock() if now is None else now
        removed = 0

        async with self._lock:
            for topic, events in self._events.items():
                expired = 0
                # Insertion order is ingest order, so expired events are a prefix
                while events and events[0].age(now) >= self.ttl:
                    events.popleft()
                    expired += 1
                if expired:
                    realtime_events_evicted_total.labels(topic=topic.value, reason="ttl").inc(expired)
                    removed += expired

        return removed

    def last_sequence(self, topic: Topic | str) -> int:
        parsed = Topic.parse(topic)
        return self._sequences[parsed] if parsed is not None else 0

    def count(self, topic: Topic | str) -> int:
        parsed = Topic.parse(topic)
        return len(self._events[parsed]) if parsed is not None else 0

    @property
    def total_count(self) -> int:
        return sum(len(events) for events in self._events.values())

    async def snapshot(self) -> dict[str, dict[str, Any]]:
        """Per-topic counters for status reporting, read under the store lock."""
        result: dict[str, dict[str, Any]] = {}
        async with self._lock:
            for topic in Topic:
                last_at = self._last_event_at.get(topic)
                result[topic.value] = {
                    "enabled": self._settings.is_enabled(topic),
                    "stored": len(self._events[topic]),
                    "last_sequence": self._sequences[topic],
                    "last_event_at": last_at.isoformat() if last_at else None,
                }
        return result
