"""Tests for the backend HTTP client and event record parsing."""

from __future__ import annotations

from datetime import UTC, datetime
import logging

import httpx
import pytest

from realtime_service.core.exceptions import PollFailure
from realtime_service.infra.external.backend_client import (
    BackendClient,
    BackendEventRecord,
    parse_records,
)

ENDPOINT = "http://backend.test/api/realtime/events"


def client_for(handler, **kwargs) -> BackendClient:
    return BackendClient(ENDPOINT, transport=httpx.MockTransport(handler), **kwargs)


class TestBackendEventRecord:
    def test_aliases_and_id_coercion(self):
        record = BackendEventRecord.model_validate(
            {
                "dataType": "publisher_status",
                "data": {"live": True},
                "timestamp": "2025-01-01T00:00:00Z",
                "device": 7,
                "publisherId": 12,
            }
        )

        assert record.type == "publisher_status"
        assert record.device == "7"
        assert record.publisher_id == "12"

    def test_naive_timestamp_is_utc(self):
        record = BackendEventRecord(type="device_health", data={}, timestamp="2025-01-01T00:00:00")

        assert record.timestamp == datetime(2025, 1, 1, tzinfo=UTC)

    def test_to_payload_omits_missing_ids(self):
        record = BackendEventRecord(
            type="device_health",
            data={"cpu": 3},
            timestamp="2025-01-01T00:00:00Z",
            channel="2",
        )

        assert record.to_payload() == {
            "data": {"cpu": 3},
            "timestamp": "2025-01-01T00:00:00+00:00",
            "channel": "2",
        }

    def test_parse_records_rejects_non_list(self):
        with pytest.raises(PollFailure) as exc_info:
            parse_records({"type": "device_health"})

        assert exc_info.value.reason == "invalid_schema"

    def test_parse_records_rejects_missing_fields(self):
        with pytest.raises(PollFailure) as exc_info:
            parse_records([{"type": "device_health", "timestamp": "2025-01-01T00:00:00Z"}])

        assert exc_info.value.reason == "invalid_schema"


class TestFetchEvents:
    async def test_success_sends_headers(self):
        seen: dict[str, httpx.Request] = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["request"] = request
            return httpx.Response(
                200,
                json=[{"type": "device_health", "data": {}, "timestamp": "2025-01-01T00:00:00Z"}],
            )

        async with client_for(handler, service_key="k-123") as client:
            records = await client.fetch_events()

        assert len(records) == 1
        assert seen["request"].headers["X-Service-Key"] == "k-123"
        assert seen["request"].headers["Accept"] == "application/json"

    async def test_http_error_status(self):
        async with client_for(lambda request: httpx.Response(500, text="boom")) as client:
            with pytest.raises(PollFailure) as exc_info:
                await client.fetch_events()

        assert exc_info.value.reason == "http_status"
        assert exc_info.value.status_code == 500

    async def test_timeout(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("too slow", request=request)

        async with client_for(handler) as client:
            with pytest.raises(PollFailure) as exc_info:
                await client.fetch_events()

        assert exc_info.value.reason == "timeout"

    async def test_network_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        async with client_for(handler) as client:
            with pytest.raises(PollFailure) as exc_info:
                await client.fetch_events()

        assert exc_info.value.reason == "network"

    async def test_invalid_json(self):
        async with client_for(lambda request: httpx.Response(200, text="<html>")) as client:
            with pytest.raises(PollFailure) as exc_info:
                await client.fetch_events()

        assert exc_info.value.reason == "invalid_json"

    async def test_debug_log_carries_duration(self, caplog):
        caplog.set_level(logging.DEBUG, logger="realtime_service.infra.external.backend_client")

        async with client_for(lambda request: httpx.Response(200, json=[])) as client:
            records = await client.fetch_events()

        assert records == []
        record = next(r for r in caplog.records if r.getMessage() == "Backend poll response")
        assert record.status_code == 200
        assert record.duration_ms >= 0
