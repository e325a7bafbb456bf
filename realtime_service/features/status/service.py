"""Builds status snapshots from the running realtime service."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from realtime_service.features.status.schemas import (
    ConnectionSummary,
    HealthResponse,
    QueueSummary,
    StatusSnapshot,
    TopicStatus,
)

if TYPE_CHECKING:
    from realtime_service.core.settings.app import AppSettings
    from realtime_service.infra.realtime.service import RealtimeService


class StatusReporter:
    """Read-only reporter over a RealtimeService.

    Nothing here mutates core state; snapshot building is bounded by
    ``status_timeout``.
    """

    def __init__(self, service: RealtimeService, app_settings: AppSettings) -> None:
        self._service = service
        self._app_settings = app_settings

    async def snapshot(self) -> StatusSnapshot:
        """Build a snapshot, giving up after ``status_timeout`` seconds.

        Raises:
            TimeoutError: The snapshot could not be built in time.
        """
        async with asyncio.timeout(self._service.settings.status_timeout):
            stored = await self._service.store.snapshot()
        return self._build(stored)

    def _build(self, stored: dict[str, dict[str, Any]]) -> StatusSnapshot:
        service = self._service
        settings = service.settings
        counts = service.registry.subscriber_counts()
        depths = service.delivery.depths()

        topics = {
            name: TopicStatus(subscribers=counts.get(name, 0), **info)
            for name, info in stored.items()
        }
        last_cleanup = service.cleanup.last_report

        return StatusSnapshot(
            service=self._app_settings.service_name,
            version=self._app_settings.version,
            state=service.health.state,
            fatal_error=service.health.fatal_error,
            started_at=service.health.started_at,
            uptime_seconds=round(service.health.uptime(), 3),
            connections=ConnectionSummary(
                total=service.manager.connection_count,
                per_ip=service.manager.connections_per_ip(),
                subscriptions=service.registry.total_subscriptions,
            ),
            topics=topics,
            queues=QueueSummary(
                total_depth=sum(depths.values()),
                max_depth=max(depths.values(), default=0),
                depths=depths,
            ),
            events_per_second=service.throughput.rate(),
            events_total=service.throughput.total,
            poller=service.poller.summary(),
            last_cleanup=last_cleanup.to_dict() if last_cleanup else None,
            config={
                "max_events": settings.max_events,
                "event_ttl": settings.event_ttl,
                "batch_size": settings.batch_size,
                "max_connections_per_ip": settings.max_connections_per_ip,
                "max_subscriptions_per_client": settings.max_subscriptions_per_client,
                "max_queue_size": settings.max_queue_size,
                "backend_poll_interval": settings.backend_poll_interval,
                "cleanup_interval": settings.cleanup_interval,
            },
        )

    def health(self) -> HealthResponse:
        health = self._service.health
        return HealthResponse(
            status="unhealthy" if health.is_fatal else "healthy",
            state=health.state,
            timestamp=datetime.now(UTC),
            connections=self._service.manager.connection_count,
            detail=health.fatal_error,
        )
