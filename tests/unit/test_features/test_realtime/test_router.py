"""Unit tests for the realtime WebSocket endpoint and frame parsing."""

from __future__ import annotations

import json
from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from realtime_service.app.main import create_websocket_app
from realtime_service.core.exceptions import InvalidMessage
from realtime_service.core.settings import AppSettings, LoggingSettings
from realtime_service.features.realtime.router import parse_client_message
from realtime_service.features.realtime.schemas import (
    ClientPingMessage,
    ListTopicsMessage,
    SubscribeMessage,
    UnsubscribeMessage,
)
from realtime_service.infra.realtime.service import RealtimeService

IDENTITY = {"X-Authenticated-User": "alice"}


# ──────────────────────────────────────────────────────────────
# Frame parsing
# ──────────────────────────────────────────────────────────────


class TestParseClientMessage:
    """Tests for parse_client_message."""

    def test_subscribe(self):
        frame = parse_client_message('{"type": "subscribe", "topic": "device_health", "since": 4}', 2048)

        assert isinstance(frame, SubscribeMessage)
        assert frame.topic == "device_health"
        assert frame.since == 4

    def test_subscribe_accepts_data_type_alias(self):
        frame = parse_client_message('{"type": "subscribe", "dataType": "publisher_status"}', 2048)

        assert frame.topic == "publisher_status"
        assert frame.since is None

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ('{"type": "unsubscribe", "topic": "device_health"}', UnsubscribeMessage),
            ('{"type": "ping"}', ClientPingMessage),
            ('{"type": "list_topics"}', ListTopicsMessage),
        ],
    )
    def test_other_types(self, raw, expected):
        assert isinstance(parse_client_message(raw, 2048), expected)

    def test_subscribe_with_filter(self):
        frame = parse_client_message(
            '{"type": "subscribe", "topic": "device_health", "device": " 10.0.0.5 ", '
            '"channel": 7, "publisherId": 42}',
            2048,
        )

        assert (frame.device, frame.channel, frame.publisher_id) == ("10.0.0.5", "7", "42")
        assert frame.criteria().to_dict() == {
            "device": "10.0.0.5",
            "channel": "7",
            "publisher_id": "42",
        }

    def test_whole_topic_has_no_criteria(self):
        frame = parse_client_message('{"type": "unsubscribe", "topic": "device_health"}', 2048)

        assert frame.criteria() is None

    @pytest.mark.parametrize(
        ("extra", "detail"),
        [
            ({"device": "encoder-1"}, "must be an IPv4 address"),
            ({"device": "10.0.0.256"}, "must be an IPv4 address"),
            ({"device": "10.0.0.5", "channel": 0}, "must be between 1 and 999"),
            ({"device": "10.0.0.5", "channel": "1000"}, "must be between 1 and 999"),
            ({"device": "10.0.0.5", "channel": "two"}, "must be a channel number"),
            ({"channel": 3}, "device is required"),
            ({"publisherId": "p1"}, "device is required"),
        ],
    )
    def test_invalid_filters(self, extra, detail):
        raw = json.dumps({"type": "subscribe", "topic": "device_health", **extra})

        with pytest.raises(InvalidMessage) as exc_info:
            parse_client_message(raw, 2048)

        assert exc_info.value.code == "invalid_message"
        assert detail in str(exc_info.value)

    @pytest.mark.parametrize(
        ("raw", "code"),
        [
            ("not json", "invalid_json"),
            ("[1, 2]", "invalid_message"),
            ('{"type": "dance"}', "unknown_type"),
            ('{"topic": "device_health"}', "unknown_type"),
            ('{"type": "subscribe"}', "invalid_message"),
            ('{"type": "subscribe", "topic": "device_health", "since": -1}', "invalid_message"),
        ],
    )
    def test_invalid_frames(self, raw, code):
        with pytest.raises(InvalidMessage) as exc_info:
            parse_client_message(raw, 2048)

        assert exc_info.value.code == code

    def test_oversized_frame(self):
        raw = json.dumps({"type": "ping", "padding": "x" * 100})

        with pytest.raises(InvalidMessage) as exc_info:
            parse_client_message(raw, 64)

        assert exc_info.value.code == "message_too_large"


# ──────────────────────────────────────────────────────────────
# WebSocket endpoint
# ──────────────────────────────────────────────────────────────


@pytest.fixture
def build_client(make_settings):
    """Factory for a TestClient around the WebSocket app.

    The app's lifespan starts and stops the service; events are published
    through the client's portal so they run on the app's event loop.
    """

    def _build(**overrides) -> tuple[TestClient, RealtimeService]:
        values = {"flush_threshold": 1, "flush_interval": 50}
        values.update(overrides)
        service = RealtimeService(make_settings(**values))
        app = create_websocket_app(
            service,
            app_settings=AppSettings(),
            logging_settings=LoggingSettings(console_enabled=False),
        )
        return TestClient(app), service

    return _build


@pytest.fixture
def client_and_service(build_client) -> Iterator[tuple[TestClient, RealtimeService]]:
    client, service = build_client()
    with client:
        yield client, service


class TestWebSocketHandshake:
    """Tests for accepting and rejecting connections."""

    def test_connected_frame(self, client_and_service):
        client, service = client_and_service

        with client.websocket_connect("/ws", headers=IDENTITY) as ws:
            frame = ws.receive_json()

            assert frame["type"] == "connected"
            assert frame["topics"] == ["device_health", "publisher_status"]
            assert frame["batch_size"] == service.settings.batch_size
            assert service.manager.get(frame["connection_id"]).identity == "alice"

    def test_identity_from_query(self, client_and_service):
        client, _ = client_and_service

        with client.websocket_connect("/ws?identity=bob") as ws:
            assert ws.receive_json()["type"] == "connected"

    def test_missing_identity_rejected(self, client_and_service):
        client, _ = client_and_service

        with client.websocket_connect("/ws") as ws:
            frame = ws.receive_json()
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_json()

        assert frame == {
            "type": "error",
            "code": "unauthenticated",
            "message": "Authentication required",
        }
        assert exc_info.value.code == 1008

    def test_identity_optional_when_disabled(self, build_client):
        client, _ = build_client(require_identity=False)

        with client, client.websocket_connect("/ws") as ws:
            assert ws.receive_json()["type"] == "connected"

    def test_ip_limit_rejects_second_connection(self, build_client):
        client, service = build_client(max_connections_per_ip=1)

        with client, client.websocket_connect("/ws", headers=IDENTITY) as first:
            first.receive_json()

            with client.websocket_connect("/ws", headers=IDENTITY) as second:
                frame = second.receive_json()
                with pytest.raises(WebSocketDisconnect) as exc_info:
                    second.receive_json()

            assert frame["code"] == "connection_limit"
            assert exc_info.value.code == 1008
            assert service.manager.connection_count == 1

    def test_fatal_service_refuses(self, client_and_service):
        client, service = client_and_service
        service.health.mark_fatal(MemoryError())

        with client.websocket_connect("/ws", headers=IDENTITY) as ws:
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_json()

        assert exc_info.value.code == 1013


class TestWebSocketMessages:
    """Tests for the client message protocol."""

    def test_subscribe_and_receive_events(self, client_and_service):
        client, service = client_and_service

        with client.websocket_connect("/ws", headers=IDENTITY) as ws:
            ws.receive_json()
            ws.send_json({"type": "subscribe", "topic": "device_health"})
            subscribed = ws.receive_json()

            client.portal.call(service.publish, "device_health", {"cpu": 12})
            events = ws.receive_json()

        assert subscribed == {
            "type": "subscribed",
            "topic": "device_health",
            "created": True,
            "last_sequence": 0,
        }
        assert events["type"] == "events"
        assert events["events"][0]["payload"] == {"cpu": 12}
        assert events["events"][0]["sequence_id"] == 1

    def test_subscribe_with_since_replays(self, client_and_service):
        client, service = client_and_service
        for i in range(3):
            client.portal.call(service.publish, "device_health", {"i": i})

        with client.websocket_connect("/ws", headers=IDENTITY) as ws:
            ws.receive_json()
            ws.send_json({"type": "subscribe", "topic": "device_health", "since": 1})
            ws.receive_json()
            events = ws.receive_json()

        assert [e["sequence_id"] for e in events["events"]] == [2, 3]

    def test_malformed_frame_keeps_connection_open(self, client_and_service):
        client, _ = client_and_service

        with client.websocket_connect("/ws", headers=IDENTITY) as ws:
            ws.receive_json()
            ws.send_text("{not json")
            error = ws.receive_json()

            ws.send_json({"type": "ping"})
            pong = ws.receive_json()

        assert error["type"] == "error"
        assert error["code"] == "invalid_json"
        assert pong["type"] == "pong"
        assert pong["timestamp"] > 0

    def test_oversized_frame_rejected(self, client_and_service):
        client, service = client_and_service
        padding = "x" * (service.settings.max_message_size + 1)

        with client.websocket_connect("/ws", headers=IDENTITY) as ws:
            ws.receive_json()
            ws.send_json({"type": "ping", "padding": padding})
            error = ws.receive_json()

        assert error["code"] == "message_too_large"

    def test_unknown_topic_error(self, client_and_service):
        client, _ = client_and_service

        with client.websocket_connect("/ws", headers=IDENTITY) as ws:
            ws.receive_json()
            ws.send_json({"type": "subscribe", "topic": "weather"})
            error = ws.receive_json()

        assert error == {
            "type": "error",
            "code": "unsupported_topic",
            "message": "Unsupported topic: weather",
            "topic": "weather",
        }

    def test_disabled_topic_error(self, client_and_service):
        client, _ = client_and_service

        with client.websocket_connect("/ws", headers=IDENTITY) as ws:
            ws.receive_json()
            ws.send_json({"type": "subscribe", "topic": "stream_quality"})
            error = ws.receive_json()

        assert error["code"] == "topic_disabled"
        assert error["topic"] == "stream_quality"

    def test_unsubscribe(self, client_and_service):
        client, service = client_and_service

        with client.websocket_connect("/ws", headers=IDENTITY) as ws:
            ws.receive_json()
            ws.send_json({"type": "subscribe", "topic": "device_health"})
            ws.receive_json()
            ws.send_json({"type": "unsubscribe", "topic": "device_health"})
            reply = ws.receive_json()

        assert reply == {"type": "unsubscribed", "topic": "device_health", "removed": True}
        assert service.registry.total_subscriptions == 0

    def test_list_topics(self, client_and_service):
        client, _ = client_and_service

        with client.websocket_connect("/ws", headers=IDENTITY) as ws:
            ws.receive_json()
            ws.send_json({"type": "list_topics"})
            reply = ws.receive_json()

        assert reply["type"] == "topic_list"
        assert {t["topic"] for t in reply["topics"]} >= {"device_health", "system_status"}

    def test_disconnect_releases_connection(self, client_and_service):
        client, service = client_and_service

        with client.websocket_connect("/ws", headers=IDENTITY) as ws:
            ws.receive_json()
            ws.send_json({"type": "subscribe", "topic": "device_health"})
            ws.receive_json()

        # The endpoint's finally block runs before the session closes
        assert service.manager.connection_count == 0
        assert service.registry.total_subscriptions == 0

    def test_filtered_subscribe_receives_matching_device(self, client_and_service):
        client, service = client_and_service

        with client.websocket_connect("/ws", headers=IDENTITY) as ws:
            ws.receive_json()
            ws.send_json(
                {"type": "subscribe", "topic": "device_health", "device": "10.0.0.5", "channel": 2}
            )
            subscribed = ws.receive_json()

            client.portal.call(service.publish, "device_health", {"device": "10.0.0.9", "channel": 2})
            client.portal.call(service.publish, "device_health", {"device": "10.0.0.5", "channel": 2})
            events = ws.receive_json()

            ws.send_json(
                {"type": "unsubscribe", "topic": "device_health", "device": "10.0.0.5", "channel": 2}
            )
            reply = ws.receive_json()

        assert subscribed["device"] == "10.0.0.5"
        assert subscribed["channel"] == "2"
        assert [e["sequence_id"] for e in events["events"]] == [2]
        assert reply == {
            "type": "unsubscribed",
            "topic": "device_health",
            "removed": True,
            "device": "10.0.0.5",
            "channel": "2",
        }
