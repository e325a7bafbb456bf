"""Backend poller bridging HTTP event records into the service.

The poller runs as its own asyncio task. Each tick awaits one request before
sleeping, so polls never overlap. Failures are recorded and retried on the
next tick; the store is only touched by successful polls.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from realtime_service.core.exceptions import PollFailure, UnsupportedTopic
from realtime_service.infra.logging.context import get_logger
from realtime_service.infra.metrics.prometheus import (
    realtime_poll_duration_seconds,
    realtime_poll_failures_total,
    realtime_polls_total,
)

if TYPE_CHECKING:
    from realtime_service.core.settings.realtime import RealtimeSettings
    from realtime_service.infra.external.backend_client import BackendClient, BackendEventRecord
    from realtime_service.infra.realtime.cache import TTLCache

logger = get_logger(__name__, component="poller")

POLL_CACHE_KEY = "poll:last"

IngestCallback = Callable[["BackendEventRecord", str], Awaitable[Any]]


class BackendPoller:
    """Periodically fetches event records from the backend.

    Example:
        poller = BackendPoller(settings, client, service.ingest_record, cache)
        await poller.start()
        ...
        await poller.stop()
    """

    def __init__(
        self,
        settings: RealtimeSettings,
        client: BackendClient,
        ingest: IngestCallback,
        cache: TTLCache | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings
        self._client = client
        self._ingest = ingest
        self._cache = cache
        self._clock = clock
        self._task: asyncio.Task | None = None

        # Poll cursor: newest record timestamp accepted so far
        self.cursor: datetime | None = None
        self.polling = False
        self.total_polls = 0
        self.total_failures = 0
        self.consecutive_failures = 0
        self.events_ingested = 0
        self.last_error: str | None = None
        self.last_poll_at: datetime | None = None
        self.last_success_at: datetime | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="backend-poller")
        logger.info(
            "Backend poller started",
            extra={
                "endpoint": self._settings.backend_endpoint,
                "interval_ms": self._settings.backend_poll_interval,
                "timeout_s": self._settings.poll_timeout_seconds,
            },
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Backend poller stopped", extra={"total_polls": self.total_polls})

    async def _run(self) -> None:
        interval = self._settings.poll_interval_seconds
        while True:
            started = self._clock()
            with contextlib.suppress(PollFailure):
                await self.poll_once()
            elapsed = self._clock() - started
            await asyncio.sleep(max(0.0, interval - elapsed))

    async def poll_once(self) -> int:
        """Run one poll.

        Returns:
            Number of records ingested.

        Raises:
            PollFailure: The request or its body was unusable. The failure is
                recorded before it propagates.
        """
        self.polling = True
        self.total_polls += 1
        self.last_poll_at = datetime.now(UTC)
        started = self._clock()

        try:
            records = await self._client.fetch_events()
        except PollFailure as e:
            self._record_failure(e)
            raise
        finally:
            self.polling = False
            realtime_poll_duration_seconds.observe(max(self._clock() - started, 0.0))

        ingested = await self._ingest_new(records)

        self.consecutive_failures = 0
        self.last_error = None
        self.last_success_at = datetime.now(UTC)
        realtime_polls_total.labels(outcome="success").inc()
        if self._cache is not None:
            self._cache.set(POLL_CACHE_KEY, self.summary())

        if ingested:
            logger.debug("Backend poll ingested events", extra={"events": ingested})
        return ingested

    async def _ingest_new(self, records: list[BackendEventRecord]) -> int:
        # Oldest first so per-topic sequence order follows backend time
        fresh = sorted(
            (r for r in records if self.cursor is None or r.timestamp > self.cursor),
            key=lambda r: r.timestamp,
        )
        ingested = 0
        for record in fresh:
            try:
                await self._ingest(record, "poll")
            except UnsupportedTopic as e:
                logger.info(
                    "Skipping backend record with unsupported topic",
                    extra={"topic": record.type, "code": e.code},
                )
            else:
                ingested += 1
            # Skipped records still advance the cursor
            if self.cursor is None or record.timestamp > self.cursor:
                self.cursor = record.timestamp

        self.events_ingested += ingested
        return ingested

    def _record_failure(self, error: PollFailure) -> None:
        self.total_failures += 1
        self.consecutive_failures += 1
        self.last_error = error.reason
        realtime_polls_total.labels(outcome="failure").inc()
        realtime_poll_failures_total.labels(reason=error.reason).inc()
        logger.warning(
            "Backend poll failed",
            extra={
                "reason": error.reason,
                "detail": error.detail,
                "consecutive_failures": self.consecutive_failures,
            },
        )

    def summary(self) -> dict[str, Any]:
        """Poller state for status reports and the ``poll:last`` cache entry."""
        return {
            "enabled": self._settings.backend_poll_enabled,
            "running": self.running,
            "polling": self.polling,
            "endpoint": self._settings.backend_endpoint,
            "cursor": self.cursor.isoformat() if self.cursor else None,
            "total_polls": self.total_polls,
            "total_failures": self.total_failures,
            "consecutive_failures": self.consecutive_failures,
            "events_ingested": self.events_ingested,
            "last_error": self.last_error,
            "last_poll_at": self.last_poll_at.isoformat() if self.last_poll_at else None,
            "last_success_at": self.last_success_at.isoformat() if self.last_success_at else None,
        }
