"""Response schemas for the status port."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


class TopicStatus(BaseModel):
    enabled: bool
    subscribers: int = Field(..., ge=0)
    stored: int = Field(..., ge=0)
    last_sequence: int = Field(..., ge=0)
    last_event_at: str | None = None


class ConnectionSummary(BaseModel):
    total: int = Field(..., ge=0)
    per_ip: dict[str, int] = Field(default_factory=dict)
    subscriptions: int = Field(..., ge=0)


class QueueSummary(BaseModel):
    total_depth: int = Field(..., ge=0)
    max_depth: int = Field(..., ge=0)
    depths: dict[str, int] = Field(default_factory=dict, description="Connection id to depth")


class StatusSnapshot(BaseModel):
    """Read-only view of the whole service."""

    service: str
    version: str
    state: str
    fatal_error: str | None = None
    started_at: datetime | None = None
    uptime_seconds: float = Field(..., ge=0)
    connections: ConnectionSummary
    topics: dict[str, TopicStatus]
    queues: QueueSummary
    events_per_second: float = Field(..., ge=0)
    events_total: int = Field(..., ge=0)
    poller: dict[str, Any]
    last_cleanup: dict[str, Any] | None = None
    config: dict[str, Any] = Field(default_factory=dict)


class HealthResponse(BaseModel):
    status: Literal["healthy", "unhealthy"]
    state: str
    timestamp: datetime
    connections: int = Field(..., ge=0)
    detail: str | None = None


class WebhookAccepted(BaseModel):
    """Response of POST /webhook/event."""

    success: bool = True
    topic: str
    sequence_id: int = Field(..., ge=1)
    created_at: datetime
