"""Prometheus metrics for the realtime service."""

from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

# Custom registry so /metrics only exposes this service's collectors
REGISTRY = CollectorRegistry()

# Covers poll round trips from 5ms to 10s
POLL_LATENCY_BUCKETS = (
    0.005,
    0.01,
    0.025,
    0.05,
    0.1,
    0.25,
    0.5,
    1.0,
    2.5,
    5.0,
    10.0,
)

# WebSocket metrics
websocket_connections_total = Gauge(
    "websocket_connections_total",
    "Current number of open WebSocket connections",
    registry=REGISTRY,
)

websocket_connections_rejected_total = Counter(
    "websocket_connections_rejected_total",
    "WebSocket handshakes rejected before the connection opened",
    ["reason"],
    registry=REGISTRY,
)

websocket_messages_received_total = Counter(
    "websocket_messages_received_total",
    "Total number of WebSocket messages received from clients",
    ["message_type"],
    registry=REGISTRY,
)

websocket_messages_sent_total = Counter(
    "websocket_messages_sent_total",
    "Total number of WebSocket messages sent to clients",
    ["message_type"],
    registry=REGISTRY,
)

websocket_connection_duration_seconds = Histogram(
    "websocket_connection_duration_seconds",
    "Duration of WebSocket connections in seconds",
    buckets=(1, 5, 10, 30, 60, 120, 300, 600, 1800, 3600),
    registry=REGISTRY,
)

# Event flow metrics
realtime_events_ingested_total = Counter(
    "realtime_events_ingested_total",
    "Events accepted into the event store",
    ["topic", "source"],
    registry=REGISTRY,
)

realtime_events_evicted_total = Counter(
    "realtime_events_evicted_total",
    "Events removed from the store by capacity or TTL",
    ["topic", "reason"],
    registry=REGISTRY,
)

realtime_subscriptions = Gauge(
    "realtime_subscriptions",
    "Current subscriptions per topic",
    ["topic"],
    registry=REGISTRY,
)

realtime_fanout_recipients = Histogram(
    "realtime_fanout_recipients",
    "Number of connections an event was queued for",
    buckets=(0, 1, 5, 10, 25, 50, 100, 250, 500, 1000),
    registry=REGISTRY,
)

realtime_queue_depth = Gauge(
    "realtime_queue_depth",
    "Total pending events across all delivery queues",
    registry=REGISTRY,
)

realtime_queue_dropped_total = Counter(
    "realtime_queue_dropped_total",
    "Queued events dropped before delivery",
    ["reason"],
    registry=REGISTRY,
)

realtime_batches_sent_total = Counter(
    "realtime_batches_sent_total",
    "Event batches flushed to client sockets",
    registry=REGISTRY,
)

# Backend poll metrics
realtime_polls_total = Counter(
    "realtime_polls_total",
    "Backend polls by outcome",
    ["outcome"],
    registry=REGISTRY,
)

realtime_poll_failures_total = Counter(
    "realtime_poll_failures_total",
    "Backend poll failures by reason",
    ["reason"],
    registry=REGISTRY,
)

realtime_poll_duration_seconds = Histogram(
    "realtime_poll_duration_seconds",
    "Backend poll round trip in seconds",
    buckets=POLL_LATENCY_BUCKETS,
    registry=REGISTRY,
)

# Cleanup metrics
realtime_cleanup_runs_total = Counter(
    "realtime_cleanup_runs_total",
    "Completed cleanup sweeps",
    registry=REGISTRY,
)

realtime_cleanup_removed_total = Counter(
    "realtime_cleanup_removed_total",
    "Items removed by cleanup sweeps",
    ["kind"],
    registry=REGISTRY,
)

# Application metrics
application_info = Gauge(
    "application_info",
    "Application information",
    ["version", "service", "environment"],
    registry=REGISTRY,
)
