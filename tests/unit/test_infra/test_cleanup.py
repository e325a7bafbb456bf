"""Tests for the periodic cleanup sweep."""

from __future__ import annotations

from starlette.websockets import WebSocketState

from realtime_service.core.topics import Topic
from realtime_service.infra.realtime.cleanup import CLEANUP_JOB_ID


class TestRunOnce:
    async def test_sweep_removes_expired_state(self, service, clock, make_websocket):
        conn = await service.manager.connect(make_websocket(), ip="10.0.0.1")
        await service.subscribe(conn.connection_id, Topic.DEVICE_HEALTH)
        await service.publish(Topic.DEVICE_HEALTH, {"n": 1})

        clock.advance(service.settings.event_ttl + 1)
        report = await service.cleanup.run_once()

        assert report.events_expired == 1
        assert report.queue_entries_expired == 1
        # The topic summary cached on publish outlived its TTL too
        assert report.cache_entries_expired == 1
        assert service.store.total_count == 0
        assert service.delivery.total_depth == 0
        assert service.cleanup.last_report is report
        assert service.cleanup.runs == 1

    async def test_sweep_expires_cache_entries(self, service, clock):
        service.cache.set("poll:last", {})

        clock.advance(service.settings.cache_ttl_seconds)
        report = await service.cleanup.run_once()

        assert report.cache_entries_expired == 1
        assert len(service.cache) == 0

    async def test_sweep_closes_stale_connections(self, service, make_websocket):
        ws = make_websocket()
        await service.manager.connect(ws, ip="10.0.0.1")
        ws.client_state = WebSocketState.DISCONNECTED

        report = await service.cleanup.run_once()

        assert report.connections_closed == 1
        assert service.manager.connection_count == 0

    async def test_report_to_dict(self, service):
        report = await service.cleanup.run_once()

        data = report.to_dict()

        assert report.total_removed == 0
        assert isinstance(data["finished_at"], str)
        assert data["events_expired"] == 0


class TestScheduler:
    async def test_start_schedules_single_job(self, service):
        service.cleanup.start()
        try:
            assert service.cleanup.running
            job = service.cleanup._scheduler.get_job(CLEANUP_JOB_ID)
            assert job is not None
            assert job.max_instances == 1
            assert job.coalesce is True

            # Starting twice keeps one scheduler
            scheduler = service.cleanup._scheduler
            service.cleanup.start()
            assert service.cleanup._scheduler is scheduler
        finally:
            service.cleanup.stop()

        assert not service.cleanup.running
