"""WebSocket connection manager.

This module provides a connection manager that:
- Tracks open connections and enforces the per-IP connection limit
- Runs one flush task per connection that drains its delivery queue in batches
- Handles the connection lifecycle (connect, disconnect, shutdown)
- Sends heartbeat pings and closes idle connections
- Provides metrics for observability
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections import Counter
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from starlette.websockets import WebSocketState

from realtime_service.core.exceptions import ConnectionClosedError, ConnectionLimitExceeded
from realtime_service.features.realtime.schemas import EventsMessage, ServerPingMessage
from realtime_service.infra.metrics.prometheus import (
    realtime_batches_sent_total,
    websocket_connection_duration_seconds,
    websocket_connections_rejected_total,
    websocket_connections_total,
    websocket_messages_sent_total,
)

if TYPE_CHECKING:
    from fastapi import WebSocket

    from realtime_service.core.settings.realtime import RealtimeSettings
    from realtime_service.core.topics import Topic
    from realtime_service.infra.realtime.delivery import DeliveryQueue
    from realtime_service.infra.realtime.subscriptions import SubscriptionRegistry

logger = logging.getLogger(__name__)

# Close codes
CLOSE_NORMAL = 1000
CLOSE_GOING_AWAY = 1001


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass
class Connection:
    """Metadata about a WebSocket connection."""

    connection_id: str
    websocket: WebSocket
    ip: str
    identity: str | None = None
    state: ConnectionState = ConnectionState.CONNECTING
    topics: set[Topic] = field(default_factory=set)
    opened_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    connected_mono: float = field(default_factory=time.monotonic)
    last_activity: float = field(default_factory=time.monotonic)
    messages_sent: int = 0
    close_reason: str | None = None
    flush_task: asyncio.Task | None = field(default=None, repr=False)
    send_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @property
    def is_open(self) -> bool:
        return self.state is ConnectionState.OPEN

    def to_dict(self) -> dict[str, Any]:
        return {
            "connection_id": self.connection_id,
            "ip": self.ip,
            "identity": self.identity,
            "state": self.state.value,
            "topics": sorted(topic.value for topic in self.topics),
            "opened_at": self.opened_at.isoformat(),
            "messages_sent": self.messages_sent,
        }


class ConnectionManager:
    """Manages open WebSocket connections and flushes their delivery queues.

    Example:
        manager = ConnectionManager(settings, registry, delivery)
        await manager.start()

        # In the WebSocket endpoint, after accept()
        conn = await manager.connect(websocket, ip="10.0.0.1", identity="alice")
        try:
            async for message in websocket.iter_text():
                manager.touch(conn.connection_id)
        finally:
            await manager.disconnect(conn.connection_id, "client_closed")
    """

    def __init__(
        self,
        settings: RealtimeSettings,
        registry: SubscriptionRegistry,
        delivery: DeliveryQueue,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings
        self._registry = registry
        self._delivery = delivery
        self._clock = clock

        # connection_id -> Connection
        self._connections: dict[str, Connection] = {}
        # ip -> reserved slots
        self._per_ip: Counter[str] = Counter()

        self._heartbeat_task: asyncio.Task | None = None
        self._running = False

    async def start(self) -> None:
        """Start the heartbeat task."""
        if self._running:
            return
        self._running = True

        if self._settings.heartbeat_interval > 0:
            self._heartbeat_task = asyncio.create_task(
                self._heartbeat_loop(), name="realtime-heartbeat"
            )
            logger.debug(
                "Heartbeat task started",
                extra={"interval": self._settings.heartbeat_interval},
            )
        logger.info("Connection manager started")

    async def stop(self) -> None:
        """Stop the heartbeat and close every connection with 1001."""
        self._running = False

        if self._heartbeat_task:
            self._heartbeat_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._heartbeat_task
            self._heartbeat_task = None

        closed = 0
        for connection_id in list(self._connections):
            if await self.disconnect(
                connection_id, "server_shutdown", code=CLOSE_GOING_AWAY
            ):
                closed += 1

        logger.info("Connection manager stopped", extra={"connections_closed": closed})

    async def connect(
        self,
        websocket: WebSocket,
        ip: str,
        identity: str | None = None,
    ) -> Connection:
        """Register an accepted WebSocket.

        Reserves a slot for ``ip``, opens the delivery queue and starts the
        flush task. The returned connection is OPEN.

        Raises:
            ConnectionLimitExceeded: ``ip`` already holds the maximum.
        """
        limit = self._settings.max_connections_per_ip
        if self._per_ip[ip] >= limit:
            websocket_connections_rejected_total.labels(reason="ip_limit").inc()
            logger.warning(
                "Connection refused: per-IP limit reached",
                extra={"client_ip": ip, "limit": limit},
            )
            raise ConnectionLimitExceeded(ip, limit)

        conn = Connection(
            connection_id=str(uuid4()),
            websocket=websocket,
            ip=ip,
            identity=identity,
            connected_mono=self._clock(),
            last_activity=self._clock(),
        )
        self._per_ip[ip] += 1
        self._connections[conn.connection_id] = conn
        self._delivery.open(conn.connection_id)

        conn.state = ConnectionState.OPEN
        conn.flush_task = asyncio.create_task(
            self._flush_loop(conn), name=f"realtime-flush-{conn.connection_id[:8]}"
        )

        websocket_connections_total.set(self.connection_count)
        logger.info(
            "WebSocket connected",
            extra={
                "connection_id": conn.connection_id,
                "client_ip": ip,
                "identity": identity,
                "total_connections": self.connection_count,
            },
        )
        return conn

    async def disconnect(
        self,
        connection_id: str,
        reason: str = "closed",
        code: int = CLOSE_NORMAL,
    ) -> bool:
        """Close a connection and release everything it holds.

        Idempotent: returns False when the connection is unknown or already
        closing.
        """
        conn = self._connections.get(connection_id)
        if conn is None or conn.state in (ConnectionState.CLOSING, ConnectionState.CLOSED):
            return False

        conn.state = ConnectionState.CLOSING
        conn.close_reason = reason

        task = conn.flush_task
        conn.flush_task = None
        if task is asyncio.current_task():
            task = None
        elif task is not None:
            task.cancel()

        # Slot, queue and map entry are released before the first await so a
        # cancelled caller cannot leak them
        self._connections.pop(connection_id, None)
        self._per_ip[conn.ip] -= 1
        if self._per_ip[conn.ip] <= 0:
            del self._per_ip[conn.ip]
        dropped = self._delivery.discard(connection_id)
        websocket_connections_total.set(self.connection_count)

        try:
            # Shielded so the registry is cleaned up even if the caller is cancelled
            topics = await asyncio.shield(self._registry.remove_connection(connection_id))
            conn.topics.clear()

            duration = self._clock() - conn.connected_mono
            websocket_connection_duration_seconds.observe(max(duration, 0.0))
            logger.info(
                "WebSocket disconnected",
                extra={
                    "connection_id": connection_id,
                    "client_ip": conn.ip,
                    "reason": reason,
                    "code": code,
                    "topics": len(topics),
                    "dropped_events": dropped,
                    "duration_seconds": round(duration, 3),
                    "total_connections": self.connection_count,
                },
            )

            if conn.websocket.application_state is not WebSocketState.DISCONNECTED:
                # Socket may already be gone on the client side
                with contextlib.suppress(Exception):
                    async with asyncio.timeout(self._settings.send_timeout):
                        await conn.websocket.close(code=code, reason=reason[:120])
        finally:
            conn.state = ConnectionState.CLOSED

        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        return True

    def touch(self, connection_id: str) -> None:
        """Record inbound activity for idle tracking."""
        conn = self._connections.get(connection_id)
        if conn is not None:
            conn.last_activity = self._clock()

    async def send(
        self,
        connection_id: str,
        message: dict[str, Any],
        *,
        locked: bool = False,
    ) -> bool:
        """Send a JSON frame to one connection.

        A failed or timed out send disconnects the connection. Pass
        ``locked=True`` from inside :meth:`hold_sends`.

        Returns:
            True if sent, False if the connection is gone or the send failed.
        """
        conn = self._connections.get(connection_id)
        if conn is None or not conn.is_open:
            return False

        try:
            if locked:
                await self._send(conn, message)
            else:
                async with conn.send_lock:
                    await self._send(conn, message)
        except ConnectionClosedError as e:
            logger.warning(
                "Failed to send message to connection",
                extra={"connection_id": connection_id, "error": repr(e.__cause__ or e)},
            )
            await self.disconnect(connection_id, "send_failed")
            return False
        return True

    async def _send(self, conn: Connection, message: dict[str, Any]) -> None:
        try:
            async with asyncio.timeout(self._settings.send_timeout):
                await conn.websocket.send_json(message)
        except Exception as e:
            raise ConnectionClosedError(conn.connection_id) from e
        conn.messages_sent += 1
        websocket_messages_sent_total.labels(message_type=message.get("type", "unknown")).inc()

    @contextlib.asynccontextmanager
    async def hold_sends(self, connection_id: str) -> AsyncIterator[Connection | None]:
        """Keep other frames (event batches, pings) off one connection.

        Frames sent inside the block with ``send(..., locked=True)`` reach the
        client before any batch flushed afterwards. Only this connection waits.

        Example:
            async with manager.hold_sends(connection_id) as conn:
                ...queue events...
                await manager.send(connection_id, frame, locked=True)
        """
        conn = self._connections.get(connection_id)
        if conn is None:
            yield None
            return
        async with conn.send_lock:
            yield conn

    async def flush(self, connection_id: str) -> int:
        """Drain the connection's queue in ``batch_size`` frames.

        Returns:
            Number of events delivered.
        """
        delivered = 0
        while True:
            conn = self._connections.get(connection_id)
            if conn is None or not conn.is_open:
                return delivered

            batch = await self._delivery.drain(connection_id, self._settings.batch_size)
            if not batch:
                return delivered

            frame = EventsMessage(events=[event.to_wire() for event in batch]).to_frame()
            if not await self.send(connection_id, frame):
                return delivered
            realtime_batches_sent_total.inc()
            delivered += len(batch)

    async def _flush_loop(self, conn: Connection) -> None:
        """Flush every ``flush_interval`` or as soon as the threshold is crossed."""
        interval = self._settings.flush_interval_seconds
        while conn.is_open:
            await self._delivery.wait(conn.connection_id, interval)
            await self.flush(conn.connection_id)

    async def _heartbeat_loop(self) -> None:
        """Send periodic pings and close idle connections."""
        interval = self._settings.heartbeat_interval
        while self._running:
            await asyncio.sleep(interval)
            await self.heartbeat()

    async def heartbeat(self) -> int:
        """Run one heartbeat pass. Returns the number of idle connections closed.

        Pings go out concurrently, so one stalled socket only delays itself.
        """
        now = self._clock()
        timeout = self._settings.idle_timeout
        idle: list[str] = []
        alive: list[str] = []

        for connection_id, conn in list(self._connections.items()):
            if not conn.is_open:
                continue
            if timeout > 0 and (now - conn.last_activity) > timeout:
                idle.append(connection_id)
            else:
                alive.append(connection_id)

        for connection_id in idle:
            logger.warning("Connection timed out", extra={"connection_id": connection_id})
        closed = await asyncio.gather(
            *(self.disconnect(connection_id, "idle_timeout") for connection_id in idle)
        )

        ping = ServerPingMessage(timestamp=_now_ms()).to_frame()
        await asyncio.gather(*(self.send(connection_id, ping) for connection_id in alive))
        return sum(closed)

    async def close_stale(self) -> int:
        """Close tracked connections whose socket or state is no longer open."""
        closed = 0
        for connection_id, conn in list(self._connections.items()):
            socket_gone = WebSocketState.DISCONNECTED in (
                conn.websocket.client_state,
                conn.websocket.application_state,
            )
            if conn.is_open and not socket_gone:
                continue
            if await self.disconnect(connection_id, "stale"):
                closed += 1
        return closed

    def get(self, connection_id: str) -> Connection | None:
        """Get connection by ID."""
        return self._connections.get(connection_id)

    def connections(self) -> list[Connection]:
        return list(self._connections.values())

    def connections_per_ip(self) -> dict[str, int]:
        return dict(self._per_ip)

    @property
    def connection_count(self) -> int:
        """Total number of tracked connections."""
        return len(self._connections)

    @property
    def running(self) -> bool:
        return self._running


def _now_ms() -> int:
    return int(time.time() * 1000)
