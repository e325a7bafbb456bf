"""Periodic expiry sweep driven by APScheduler."""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from realtime_service.infra.logging.context import get_logger
from realtime_service.infra.metrics.prometheus import (
    realtime_cleanup_removed_total,
    realtime_cleanup_runs_total,
)

if TYPE_CHECKING:
    from realtime_service.core.settings.realtime import RealtimeSettings
    from realtime_service.infra.realtime.cache import TTLCache
    from realtime_service.infra.realtime.delivery import DeliveryQueue
    from realtime_service.infra.realtime.manager import ConnectionManager
    from realtime_service.infra.realtime.store import EventStore
    from realtime_service.infra.realtime.throughput import ThroughputTracker

logger = get_logger(__name__, component="cleanup")

CLEANUP_JOB_ID = "realtime-cleanup"


@dataclass(frozen=True)
class CleanupReport:
    events_expired: int = 0
    queue_entries_expired: int = 0
    cache_entries_expired: int = 0
    samples_expired: int = 0
    connections_closed: int = 0
    finished_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    duration_ms: float = 0.0

    @property
    def total_removed(self) -> int:
        return (
            self.events_expired
            + self.queue_entries_expired
            + self.cache_entries_expired
            + self.samples_expired
            + self.connections_closed
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["finished_at"] = self.finished_at.isoformat()
        return data


class CleanupScheduler:
    """Expires stale state on a fixed interval.

    Sweeps the event store, delivery queues, cache and throughput samples,
    and closes connections that are no longer open. The APScheduler job runs
    with ``max_instances=1`` and ``coalesce=True`` so sweeps never overlap.
    """

    def __init__(
        self,
        settings: RealtimeSettings,
        store: EventStore,
        delivery: DeliveryQueue,
        cache: TTLCache,
        throughput: ThroughputTracker,
        manager: ConnectionManager,
    ) -> None:
        self._settings = settings
        self._store = store
        self._delivery = delivery
        self._cache = cache
        self._throughput = throughput
        self._manager = manager
        self._scheduler: AsyncIOScheduler | None = None
        self.last_report: CleanupReport | None = None
        self.runs = 0

    async def run_once(self) -> CleanupReport:
        """Run one sweep and return what it removed."""
        started = time.perf_counter()

        events = await self._store.expire()
        queued = await self._delivery.expire()
        cached = self._cache.expire()
        samples = self._throughput.expire()
        closed = await self._manager.close_stale()

        report = CleanupReport(
            events_expired=events,
            queue_entries_expired=queued,
            cache_entries_expired=cached,
            samples_expired=samples,
            connections_closed=closed,
            duration_ms=round((time.perf_counter() - started) * 1000, 3),
        )
        self.last_report = report
        self.runs += 1

        realtime_cleanup_runs_total.inc()
        for kind, count in (
            ("events", events),
            ("queue_entries", queued),
            ("cache_entries", cached),
            ("samples", samples),
            ("connections", closed),
        ):
            if count:
                realtime_cleanup_removed_total.labels(kind=kind).inc(count)

        if report.total_removed:
            logger.info("Cleanup sweep removed stale state", extra=report.to_dict())
        else:
            logger.debug("Cleanup sweep found nothing to remove")
        return report

    def start(self) -> None:
        """Schedule the sweep on the running event loop."""
        if self._scheduler is not None:
            return

        self._scheduler = AsyncIOScheduler(
            timezone="UTC",
            job_defaults={
                "coalesce": True,  # Combine missed runs into one
                "max_instances": 1,  # Never overlap sweeps
                "misfire_grace_time": 30,
            },
        )
        self._scheduler.add_job(
            self.run_once,
            trigger=IntervalTrigger(seconds=self._settings.cleanup_interval_seconds),
            id=CLEANUP_JOB_ID,
            name="Expire events, queues, cache and stale connections",
            replace_existing=True,
        )
        self._scheduler.start()
        logger.info(
            "Cleanup scheduler started",
            extra={"interval_ms": self._settings.cleanup_interval},
        )

    def stop(self) -> None:
        if self._scheduler is None:
            return
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("Cleanup scheduler stopped", extra={"runs": self.runs})

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running
