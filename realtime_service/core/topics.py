"""Topic enumeration and subscription filters for realtime events."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any


class Topic(str, Enum):
    """Categories of realtime events a client can subscribe to."""

    PUBLISHER_STATUS = "publisher_status"
    DEVICE_HEALTH = "device_health"
    STREAM_QUALITY = "stream_quality"
    RECORDING_STATUS = "recording_status"
    RECORDER_STATUS = "recorder_status"
    SYSTEM_IDENTITY = "system_identity"
    SYSTEM_STATUS = "system_status"

    @classmethod
    def parse(cls, value: object) -> Topic | None:
        """Return the matching topic, or None for unknown names."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


# topic -> (description, enabled by default)
DEFAULT_TOPIC_SETTINGS: dict[Topic, tuple[str, bool]] = {
    Topic.PUBLISHER_STATUS: ("Real-time streaming control status", True),
    Topic.DEVICE_HEALTH: ("Device connectivity and health metrics", True),
    Topic.STREAM_QUALITY: ("Video/audio quality metrics", False),
    Topic.RECORDING_STATUS: ("Recording state changes", False),
    Topic.RECORDER_STATUS: ("Recorder state per device", False),
    Topic.SYSTEM_IDENTITY: ("Device identity and firmware information", False),
    Topic.SYSTEM_STATUS: ("Device system load and uptime", False),
}


def _as_str(value: Any) -> str | None:
    return None if value is None else str(value)


@dataclass(frozen=True, slots=True)
class SubscriptionFilter:
    """Narrows a topic subscription to one device, channel or publisher.

    Fields left as None match anything, so the default instance matches every
    event of the topic. Non-wildcard filters only match mapping payloads.
    """

    device: str | None = None
    channel: str | None = None
    publisher_id: str | None = None

    @property
    def is_wildcard(self) -> bool:
        return self.device is None and self.channel is None and self.publisher_id is None

    def matches(self, payload: Any) -> bool:
        if self.is_wildcard:
            return True
        if not isinstance(payload, Mapping):
            return False
        if self.device is not None and _as_str(payload.get("device")) != self.device:
            return False
        if self.channel is not None and _as_str(payload.get("channel")) != self.channel:
            return False
        if self.publisher_id is not None:
            publisher = payload.get("publisher_id", payload.get("publisherId"))
            if _as_str(publisher) != self.publisher_id:
                return False
        return True

    def to_dict(self) -> dict[str, str]:
        fields = {"device": self.device, "channel": self.channel, "publisher_id": self.publisher_id}
        return {key: value for key, value in fields.items() if value is not None}


ALL_EVENTS = SubscriptionFilter()
