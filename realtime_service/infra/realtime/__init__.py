"""Realtime infrastructure for event broadcasting over WebSocket.

This package provides the core of the service:
- EventStore: bounded, TTL-expiring per-topic event history
- SubscriptionRegistry: topic -> connection id relation
- DeliveryQueue: bounded per-connection pending events
- ConnectionManager: connection lifecycle, batching flushes, heartbeat
- BackendPoller: HTTP bridge from the backend into the store
- CleanupScheduler: periodic expiry sweep
- RealtimeService: composition root owning all of the above

Data flow:

    Backend ──poll──► EventStore ──► SubscriptionRegistry ──► DeliveryQueue ──► ConnectionManager ──► sockets
                                                                                     ▲
                            CleanupScheduler (expires store, queues, cache) ─────────┘

Usage:
    from realtime_service.infra.realtime import RealtimeService

    service = RealtimeService(settings)
    await service.start()
"""

from realtime_service.infra.realtime.cache import CacheEntry, TTLCache
from realtime_service.infra.realtime.cleanup import CleanupReport, CleanupScheduler
from realtime_service.infra.realtime.delivery import DeliveryQueue
from realtime_service.infra.realtime.events import Event
from realtime_service.infra.realtime.manager import (
    Connection,
    ConnectionManager,
    ConnectionState,
)
from realtime_service.infra.realtime.poller import BackendPoller
from realtime_service.infra.realtime.service import RealtimeService, ServiceHealth
from realtime_service.infra.realtime.store import EventStore
from realtime_service.infra.realtime.subscriptions import SubscriptionRegistry
from realtime_service.infra.realtime.throughput import ThroughputTracker

__all__ = [
    "BackendPoller",
    "CacheEntry",
    "CleanupReport",
    "CleanupScheduler",
    "Connection",
    "ConnectionManager",
    "ConnectionState",
    "DeliveryQueue",
    "Event",
    "EventStore",
    "RealtimeService",
    "ServiceHealth",
    "SubscriptionRegistry",
    "TTLCache",
    "ThroughputTracker",
]
