"""Exception classes for the realtime service."""

from __future__ import annotations

from typing import Any


class RealtimeError(Exception):
    """Base realtime service exception.

    All custom exceptions inherit from this class. The ``code`` is a stable,
    machine-readable identifier sent to clients inside ``error`` frames.

    Attributes:
        code: Error code identifier.
        detail: Human-readable error message.
        extra: Additional context-specific information about the error.

    Example:
            raise RealtimeError(
            code="internal_error",
            detail="Something went wrong",
            extra={"connection_id": "abc123"},
        )
    """

    default_code = "internal_error"

    def __init__(
        self,
        detail: str,
        code: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        """Initialize realtime exception.

        Args:
            detail: Human-readable error message.
            code: Error code identifier (defaults to the class default).
            extra: Additional context about the error.
        """
        self.code = code or self.default_code
        self.detail = detail
        self.extra = extra or {}
        super().__init__(detail)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for logs and error frames."""
        return {"code": self.code, "message": self.detail, **self.extra}


class UnsupportedTopic(RealtimeError):
    """Raised when an event or subscription names a topic that is unknown or disabled."""

    default_code = "unsupported_topic"

    def __init__(self, topic: object, detail: str | None = None) -> None:
        self.topic = topic
        super().__init__(
            detail or f"Unsupported topic: {topic}",
            extra={"topic": str(getattr(topic, "value", topic))},
        )


class TopicDisabled(UnsupportedTopic):
    """Raised when a known topic is switched off in configuration."""

    default_code = "topic_disabled"

    def __init__(self, topic: object) -> None:
        super().__init__(topic, f"Topic is disabled: {getattr(topic, 'value', topic)}")


class LimitExceeded(RealtimeError):
    """Raised when a configured resource limit would be exceeded.

    Example:
            raise LimitExceeded(
            "Too many connections",
            limit=25,
        )
    """

    default_code = "limit_exceeded"

    def __init__(self, detail: str, limit: int, extra: dict[str, Any] | None = None) -> None:
        self.limit = limit
        super().__init__(detail, extra={"limit": limit, **(extra or {})})


class ConnectionLimitExceeded(LimitExceeded):
    """Raised when an IP address already holds the maximum number of connections."""

    default_code = "connection_limit"

    def __init__(self, ip: str, limit: int) -> None:
        self.ip = ip
        super().__init__(f"Too many connections from {ip}", limit)


class SubscriptionLimitExceeded(LimitExceeded):
    """Raised when a connection already holds the maximum number of subscriptions."""

    default_code = "subscription_limit"

    def __init__(self, connection_id: str, limit: int) -> None:
        self.connection_id = connection_id
        super().__init__(f"Maximum subscriptions ({limit}) reached", limit)


class PollFailure(RealtimeError):
    """Raised when a backend poll produces no usable data.

    The store is left untouched and the poller retries on the next tick.
    """

    default_code = "poll_failure"

    def __init__(self, reason: str, detail: str | None = None, status_code: int | None = None) -> None:
        self.reason = reason
        self.status_code = status_code
        extra: dict[str, Any] = {"reason": reason}
        if status_code is not None:
            extra["status_code"] = status_code
        super().__init__(detail or f"Backend poll failed: {reason}", extra=extra)


class ConnectionClosedError(RealtimeError, ConnectionError):
    """Raised when a send to a client socket fails; the connection is dropped."""

    default_code = "connection_closed"

    def __init__(self, connection_id: str, detail: str | None = None) -> None:
        self.connection_id = connection_id
        super().__init__(
            detail or f"Connection {connection_id} is closed",
            extra={"connection_id": connection_id},
        )


class InvalidMessage(RealtimeError):
    """Raised for client frames that cannot be processed.

    Codes: ``invalid_json``, ``message_too_large``, ``invalid_message``,
    ``unknown_type``.
    """

    default_code = "invalid_message"


class FatalServiceError(RealtimeError):
    """Raised when the process can no longer make progress (e.g. out of memory)."""

    default_code = "fatal"
