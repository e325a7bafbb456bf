"""Immutable event records held by the event store."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from realtime_service.core.topics import Topic


@dataclass(frozen=True, slots=True)
class Event:
    """A stored event.

    ``created_at`` is the wall-clock ingest time sent to clients;
    ``ingested_at`` is the monotonic reading used for TTL decisions.
    """

    topic: Topic
    payload: Any
    created_at: datetime
    sequence_id: int
    ingested_at: float = field(compare=False, repr=False)

    def age(self, now: float) -> float:
        return now - self.ingested_at

    def to_wire(self) -> dict[str, Any]:
        """Representation used inside ``events`` frames."""
        return {
            "topic": self.topic.value,
            "sequence_id": self.sequence_id,
            "created_at": self.created_at.isoformat(),
            "payload": self.payload,
        }
