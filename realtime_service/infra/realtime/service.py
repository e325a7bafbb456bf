"""Realtime service composition root.

Wires the event store, subscription registry, delivery queue, connection
manager, backend poller and cleanup scheduler together, and owns the
per-topic publish locks that keep event order intact per subscriber.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import httpx

from realtime_service.core.exceptions import FatalServiceError, TopicDisabled, UnsupportedTopic
from realtime_service.core.topics import ALL_EVENTS, SubscriptionFilter, Topic
from realtime_service.features.realtime.schemas import SubscribedMessage
from realtime_service.infra.external.backend_client import BackendClient, BackendEventRecord
from realtime_service.infra.metrics.prometheus import realtime_fanout_recipients
from realtime_service.infra.realtime.cache import TTLCache
from realtime_service.infra.realtime.cleanup import CleanupScheduler
from realtime_service.infra.realtime.delivery import DeliveryQueue
from realtime_service.infra.realtime.manager import ConnectionManager
from realtime_service.infra.realtime.poller import BackendPoller
from realtime_service.infra.realtime.store import EventStore
from realtime_service.infra.realtime.subscriptions import SubscriptionRegistry
from realtime_service.infra.realtime.throughput import ThroughputTracker

if TYPE_CHECKING:
    from realtime_service.core.settings.realtime import RealtimeSettings
    from realtime_service.infra.realtime.events import Event

logger = logging.getLogger(__name__)


@dataclass
class ServiceHealth:
    """Lifecycle state shared with the status endpoints."""

    state: str = "created"
    started_at: datetime | None = None
    started_mono: float | None = None
    fatal_error: str | None = None
    fatal_at: datetime | None = None
    history: list[str] = field(default_factory=list)

    @property
    def is_fatal(self) -> bool:
        return self.state == "fatal"

    def transition(self, state: str) -> None:
        # Fatal is terminal
        if self.is_fatal:
            return
        self.state = state
        self.history.append(state)

    def mark_fatal(self, error: BaseException) -> None:
        self.state = "fatal"
        self.fatal_error = f"{type(error).__name__}: {error}"
        self.fatal_at = datetime.now(UTC)
        self.history.append("fatal")

    def uptime(self, now: float | None = None) -> float:
        if self.started_mono is None:
            return 0.0
        now = time.monotonic() if now is None else now
        return max(now - self.started_mono, 0.0)


class RealtimeService:
    """Owns every realtime component for the lifetime of the process.

    Example:
        service = RealtimeService(settings)
        await service.start()
        event = await service.publish("device_health", {"cpu": 10}, source="webhook")
        await service.stop()
    """

    def __init__(
        self,
        settings: RealtimeSettings,
        clock: Callable[[], float] = time.monotonic,
        backend_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings
        self.health = ServiceHealth()

        self.store = EventStore(settings, clock=clock)
        self.registry = SubscriptionRegistry(settings)
        self.delivery = DeliveryQueue(settings, clock=clock)
        self.cache = TTLCache(settings.cache_ttl_seconds, clock=clock)
        self.throughput = ThroughputTracker(
            retention=settings.monitoring.metrics_retention,
            enabled=settings.monitoring.enabled,
            clock=clock,
        )
        self.manager = ConnectionManager(settings, self.registry, self.delivery, clock=clock)

        self.backend = BackendClient(
            settings.backend_endpoint,
            service_key=settings.service_key.get_secret_value(),
            timeout=settings.poll_timeout_seconds,
            transport=backend_transport,
        )
        self.poller = BackendPoller(
            settings, self.backend, self.ingest_record, cache=self.cache, clock=clock
        )
        self.cleanup = CleanupScheduler(
            settings, self.store, self.delivery, self.cache, self.throughput, self.manager
        )

        self._topic_locks: dict[Topic, asyncio.Lock] = {topic: asyncio.Lock() for topic in Topic}

    # ──────────────────────────────────────────────────────────────
    # Lifecycle
    # ──────────────────────────────────────────────────────────────

    async def start(self) -> None:
        self.health.transition("starting")
        self.health.started_at = datetime.now(UTC)
        self.health.started_mono = time.monotonic()

        await self.manager.start()
        if self.settings.backend_poll_enabled:
            await self.poller.start()
        self.cleanup.start()

        self.health.transition("running")
        logger.info(
            "Realtime service started",
            extra={
                "topics": sorted(topic.value for topic in self.settings.enabled_topics),
                "websocket_port": self.settings.websocket_port,
                "status_port": self.settings.status_port,
            },
        )

    async def stop(self) -> None:
        self.health.transition("stopping")
        await self.poller.stop()
        self.cleanup.stop()
        await self.manager.stop()
        await self.backend.close()
        self.health.transition("stopped")
        logger.info("Realtime service stopped")

    # ──────────────────────────────────────────────────────────────
    # Event flow
    # ──────────────────────────────────────────────────────────────

    async def publish(self, topic: Topic | str, payload: Any, source: str = "poll") -> Event:
        """Ingest one event and queue it for every subscriber of its topic.

        Raises:
            UnsupportedTopic: Unknown or disabled topic.
            FatalServiceError: The process ran out of memory.
        """
        parsed = self.store.resolve_topic(topic)
        try:
            async with self._topic_locks[parsed]:
                event = await self.store.ingest(parsed, payload, source=source)
                recipients = self.registry.recipients(parsed, event.payload)
                for connection_id in recipients:
                    await self.delivery.enqueue(connection_id, event)
        except MemoryError as e:
            self.health.mark_fatal(e)
            logger.critical("Out of memory while publishing", extra={"topic": parsed.value})
            raise FatalServiceError("Out of memory while publishing") from e

        realtime_fanout_recipients.observe(len(recipients))
        self.throughput.record()
        self.cache.set(
            f"topic:{parsed.value}",
            {
                "last_sequence": event.sequence_id,
                "last_event_at": event.created_at.isoformat(),
                "count": self.store.count(parsed),
            },
        )
        return event

    async def ingest_record(self, record: BackendEventRecord, source: str = "poll") -> Event:
        """Publish a backend event record."""
        return await self.publish(record.type, record.to_payload(), source=source)

    async def subscribe(
        self,
        connection_id: str,
        topic: Topic | str,
        since: int | None = None,
        criteria: SubscriptionFilter | None = None,
    ) -> int:
        """Subscribe a connection, confirm it, and replay stored events.

        The topic's publish lock only covers registration and queueing the
        replay, so live events always follow replayed ones. The ``subscribed``
        frame is sent after the lock is released but while the connection's
        sends are held, so it still reaches the client before any batch.

        Returns:
            Number of replayed events queued.

        Raises:
            UnsupportedTopic, TopicDisabled, SubscriptionLimitExceeded
        """
        parsed = Topic.parse(topic)
        if parsed is None:
            raise UnsupportedTopic(topic)
        if not self.settings.is_enabled(parsed):
            raise TopicDisabled(parsed)
        criteria = criteria or ALL_EVENTS

        async with self.manager.hold_sends(connection_id) as conn:
            if conn is None or not conn.is_open:
                return 0

            async with self._topic_locks[parsed]:
                created = await self.registry.subscribe(connection_id, parsed, criteria)
                conn.topics.add(parsed)
                last_sequence = self.store.last_sequence(parsed)

                replayed = 0
                if since is not None:
                    for event in await self.store.query(parsed, since):
                        if criteria.matches(event.payload) and await self.delivery.enqueue(
                            connection_id, event
                        ):
                            replayed += 1

            confirmation = SubscribedMessage(
                topic=parsed.value,
                created=created,
                last_sequence=last_sequence,
                **criteria.to_dict(),
            )
            await self.manager.send(connection_id, confirmation.to_frame(), locked=True)

        logger.info(
            "Client subscribed",
            extra={
                "connection_id": connection_id,
                "topic": parsed.value,
                "new_subscription": created,
                "replayed": replayed,
                **criteria.to_dict(),
            },
        )
        return replayed

    async def unsubscribe(
        self,
        connection_id: str,
        topic: Topic | str,
        criteria: SubscriptionFilter | None = None,
    ) -> bool:
        """Drop a subscription and any of its events still waiting in the queue."""
        parsed = Topic.parse(topic)
        if parsed is None:
            raise UnsupportedTopic(topic)

        async with self._topic_locks[parsed]:
            removed = await self.registry.unsubscribe(connection_id, parsed, criteria)
            if removed:
                await self.delivery.purge(
                    connection_id,
                    parsed,
                    keep=lambda event: self.registry.matches(connection_id, parsed, event.payload),
                )

        conn = self.manager.get(connection_id)
        if conn is not None and parsed not in self.registry.topics_for(connection_id):
            conn.topics.discard(parsed)
        return removed

    def topic_list(self) -> list[dict[str, Any]]:
        """Describe every topic for ``topic_list`` frames."""
        counts = self.registry.subscriber_counts()
        return [
            {
                "topic": topic.value,
                "description": cfg.description,
                "enabled": cfg.enabled,
                "subscribers": counts.get(topic.value, 0),
                "last_sequence": self.store.last_sequence(topic),
            }
            for topic, cfg in self.settings.data_types.items()
        ]
