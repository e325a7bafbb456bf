"""Realtime broadcasting configuration settings."""

from __future__ import annotations

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from realtime_service.core.topics import DEFAULT_TOPIC_SETTINGS, Topic


class TopicSettings(BaseModel):
    """Per-topic switch and human description."""

    model_config = {"frozen": True}

    description: str = Field(default="", max_length=200)
    enabled: bool = Field(default=False)


class MonitoringSettings(BaseModel):
    """Performance monitoring switches."""

    model_config = {"frozen": True}

    enabled: bool = Field(default=True, description="Collect throughput samples")
    metrics_retention: int = Field(
        default=3600,
        ge=60,
        le=86400,
        description="Seconds of throughput samples to keep",
    )


def _default_data_types() -> dict[Topic, TopicSettings]:
    return {
        topic: TopicSettings(description=description, enabled=enabled)
        for topic, (description, enabled) in DEFAULT_TOPIC_SETTINGS.items()
    }


class RealtimeSettings(BaseSettings):
    """Event storage, delivery and connection settings.

    Environment variables use REALTIME_ prefix. Nested values use a double
    underscore, e.g. REALTIME_DATA_TYPES__STREAM_QUALITY__ENABLED=true or
    REALTIME_MONITORING__METRICS_RETENTION=600.

    Units follow the names used by the backend configuration: ``event_ttl`` is
    in seconds, every other interval/TTL is in milliseconds.
    """

    # ──────────────────────────────────────────────────────────────
    # Event storage
    # ──────────────────────────────────────────────────────────────

    max_events: int = Field(
        default=1000,
        ge=1,
        le=1_000_000,
        description="Maximum stored events per topic",
    )

    event_ttl: int = Field(
        default=300,
        ge=1,
        le=86400,
        description="Seconds an event stays queryable",
    )

    batch_size: int = Field(
        default=20,
        ge=1,
        le=1000,
        description="Maximum events per delivered frame",
    )

    # ──────────────────────────────────────────────────────────────
    # Network
    # ──────────────────────────────────────────────────────────────

    host: str = Field(default="0.0.0.0", description="Bind address for both servers")

    websocket_port: int = Field(default=3446, ge=1, le=65535)

    websocket_path: str = Field(default="/ws", pattern=r"^/.*$", max_length=100)

    status_port: int = Field(default=3447, ge=1, le=65535)

    # ──────────────────────────────────────────────────────────────
    # Backend polling
    # ──────────────────────────────────────────────────────────────

    backend_poll_interval: int = Field(
        default=2000,
        ge=100,
        le=600_000,
        description="Milliseconds between backend polls",
    )

    backend_endpoint: str = Field(
        default="http://localhost:8000/api/realtime/events",
        pattern=r"^https?://.+",
        max_length=500,
        description="Backend URL returning a JSON list of event records",
    )

    backend_poll_enabled: bool = Field(default=True, description="Run the backend poller")

    poll_timeout: int = Field(
        default=1500,
        ge=50,
        le=60_000,
        description="Milliseconds before a poll request is abandoned (capped below the interval)",
    )

    service_key: SecretStr = Field(
        default=SecretStr("default-service-key"),
        description="Value sent as X-Service-Key to the backend",
    )

    # ──────────────────────────────────────────────────────────────
    # Connection limits
    # ──────────────────────────────────────────────────────────────

    max_connections_per_ip: int = Field(default=25, ge=1, le=10000)

    max_subscriptions_per_client: int = Field(default=50, ge=1, le=1000)

    max_queue_size: int = Field(default=100, ge=1, le=100_000)

    max_message_size: int = Field(
        default=2048,
        ge=64,
        le=65536,
        description="Maximum incoming control frame size in bytes",
    )

    # ──────────────────────────────────────────────────────────────
    # Delivery cadence and heartbeat
    # ──────────────────────────────────────────────────────────────

    flush_interval: int = Field(
        default=100,
        ge=5,
        le=60_000,
        description="Milliseconds between queue flushes for each connection",
    )

    flush_threshold: int | None = Field(
        default=None,
        ge=1,
        description="Queue depth that triggers an immediate flush (defaults to batch_size)",
    )

    heartbeat_interval: float = Field(
        default=30.0,
        ge=0,
        le=300,
        description="Seconds between server pings (0 to disable)",
    )

    idle_timeout: float = Field(
        default=120.0,
        ge=0,
        le=3600,
        description="Close connections idle for this many seconds (0 to disable)",
    )

    send_timeout: float = Field(
        default=5.0,
        gt=0,
        le=60,
        description="Seconds a single socket send may take before the connection is dropped",
    )

    # ──────────────────────────────────────────────────────────────
    # Cleanup
    # ──────────────────────────────────────────────────────────────

    cache_ttl: int = Field(default=300_000, ge=1000, description="Milliseconds a cache entry lives")

    queue_ttl: int = Field(default=30_000, ge=100, description="Milliseconds a queued event lives")

    cleanup_interval: int = Field(default=60_000, ge=100, description="Milliseconds between sweeps")

    status_timeout: float = Field(
        default=2.0,
        gt=0,
        le=30,
        description="Seconds allowed to build a status snapshot",
    )

    # ──────────────────────────────────────────────────────────────
    # Handshake
    # ──────────────────────────────────────────────────────────────

    require_identity: bool = Field(
        default=True,
        description="Reject handshakes that carry no authenticated identity",
    )

    identity_header: str = Field(default="X-Authenticated-User", max_length=100)

    trust_proxy_headers: bool = Field(
        default=True,
        description="Take the client IP from X-Forwarded-For and similar headers",
    )

    webhook_require_key: bool = Field(
        default=False,
        description="Require X-Service-Key on POST /webhook/event",
    )

    # ──────────────────────────────────────────────────────────────
    # Topics and monitoring
    # ──────────────────────────────────────────────────────────────

    data_types: dict[Topic, TopicSettings] = Field(default_factory=_default_data_types)

    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)

    model_config = SettingsConfigDict(
        env_prefix="REALTIME_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )

    @field_validator("data_types", mode="after")
    @classmethod
    def fill_missing_topics(cls, v: dict[Topic, TopicSettings]) -> dict[Topic, TopicSettings]:
        """Keep every known topic present, even when only some are overridden."""
        merged = _default_data_types()
        for topic, cfg in v.items():
            if not cfg.description:
                cfg = cfg.model_copy(update={"description": merged[topic].description})
            merged[topic] = cfg
        return merged

    @model_validator(mode="after")
    def check_ports(self) -> RealtimeSettings:
        if self.websocket_port == self.status_port:
            raise ValueError("websocket_port and status_port must differ")
        return self

    @property
    def enabled_topics(self) -> frozenset[Topic]:
        """Topics currently accepting events and subscriptions."""
        return frozenset(topic for topic, cfg in self.data_types.items() if cfg.enabled)

    def is_enabled(self, topic: Topic) -> bool:
        cfg = self.data_types.get(topic)
        return cfg is not None and cfg.enabled

    @property
    def effective_flush_threshold(self) -> int:
        return self.flush_threshold or self.batch_size

    @property
    def poll_interval_seconds(self) -> float:
        return self.backend_poll_interval / 1000

    @property
    def poll_timeout_seconds(self) -> float:
        """Request timeout, always shorter than the poll interval."""
        return min(self.poll_timeout, self.backend_poll_interval * 0.9) / 1000

    @property
    def queue_ttl_seconds(self) -> float:
        return self.queue_ttl / 1000

    @property
    def cache_ttl_seconds(self) -> float:
        return self.cache_ttl / 1000

    @property
    def cleanup_interval_seconds(self) -> float:
        return self.cleanup_interval / 1000

    @property
    def flush_interval_seconds(self) -> float:
        return self.flush_interval / 1000
