"""Tests for the realtime exception hierarchy."""

from __future__ import annotations

from realtime_service.core.exceptions import (
    ConnectionClosedError,
    ConnectionLimitExceeded,
    LimitExceeded,
    PollFailure,
    RealtimeError,
    SubscriptionLimitExceeded,
    TopicDisabled,
    UnsupportedTopic,
)
from realtime_service.core.topics import Topic


class TestRealtimeError:
    def test_default_code(self):
        error = RealtimeError("boom")

        assert error.code == "internal_error"
        assert error.detail == "boom"
        assert error.extra == {}
        assert str(error) == "boom"

    def test_to_dict(self):
        error = RealtimeError("boom", code="custom", extra={"connection_id": "c1"})

        assert error.to_dict() == {"code": "custom", "message": "boom", "connection_id": "c1"}


class TestTopicErrors:
    def test_unsupported_topic_carries_topic(self):
        error = UnsupportedTopic("weather")

        assert error.code == "unsupported_topic"
        assert error.extra["topic"] == "weather"
        assert "weather" in error.detail

    def test_topic_disabled_is_unsupported(self):
        error = TopicDisabled(Topic.STREAM_QUALITY)

        assert isinstance(error, UnsupportedTopic)
        assert error.code == "topic_disabled"
        assert error.extra["topic"] == "stream_quality"


class TestLimitErrors:
    def test_connection_limit(self):
        error = ConnectionLimitExceeded("10.0.0.1", 25)

        assert isinstance(error, LimitExceeded)
        assert error.code == "connection_limit"
        assert error.limit == 25
        assert error.ip == "10.0.0.1"

    def test_subscription_limit(self):
        error = SubscriptionLimitExceeded("conn-1", 3)

        assert error.code == "subscription_limit"
        assert error.extra["limit"] == 3
        assert "3" in error.detail


class TestPollFailure:
    def test_reason_and_status(self):
        error = PollFailure("http_status", status_code=500)

        assert error.reason == "http_status"
        assert error.extra == {"reason": "http_status", "status_code": 500}

    def test_connection_closed_is_connection_error(self):
        error = ConnectionClosedError("conn-1")

        assert isinstance(error, ConnectionError)
        assert error.code == "connection_closed"


class TestTopicParse:
    def test_parse_normalizes(self):
        assert Topic.parse(" Device_Health ") is Topic.DEVICE_HEALTH
        assert Topic.parse(Topic.SYSTEM_STATUS) is Topic.SYSTEM_STATUS

    def test_parse_unknown(self):
        assert Topic.parse("weather") is None
        assert Topic.parse(42) is None
