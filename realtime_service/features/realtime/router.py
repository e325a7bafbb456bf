"""WebSocket router for realtime event delivery.

Endpoints:
- WS {websocket_path}: event subscription endpoint (default /ws)
"""

from __future__ import annotations

import json
import logging
import time
from typing import TYPE_CHECKING

from fastapi import APIRouter, WebSocket, status
from pydantic import ValidationError

from realtime_service.core.exceptions import (
    ConnectionLimitExceeded,
    InvalidMessage,
    RealtimeError,
)
from realtime_service.features.realtime.schemas import (
    ClientFrame,
    ClientMessageType,
    ClientPingMessage,
    ClientPongMessage,
    ConnectedMessage,
    ErrorMessage,
    ListTopicsMessage,
    ServerPongMessage,
    SubscribeMessage,
    TopicInfo,
    TopicListMessage,
    UnsubscribedMessage,
    UnsubscribeMessage,
    client_frame_adapter,
)
from realtime_service.infra.logging import clear_log_context, set_log_context
from realtime_service.infra.metrics.prometheus import (
    websocket_connections_rejected_total,
    websocket_messages_received_total,
)
from realtime_service.utils.network import get_client_ip

if TYPE_CHECKING:
    from realtime_service.infra.realtime.manager import Connection
    from realtime_service.infra.realtime.service import RealtimeService

logger = logging.getLogger(__name__)

_KNOWN_TYPES = frozenset(t.value for t in ClientMessageType)


def build_router(websocket_path: str) -> APIRouter:
    """Router exposing the WebSocket endpoint at ``websocket_path``."""
    router = APIRouter(tags=["realtime"])
    router.add_api_websocket_route(websocket_path, websocket_endpoint, name="realtime_ws")
    return router


async def _reject(websocket: WebSocket, code: str, message: str, reason: str) -> None:
    websocket_connections_rejected_total.labels(reason=reason).inc()
    await websocket.send_json(ErrorMessage(code=code, message=message).to_frame())
    await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=message[:120])


async def websocket_endpoint(websocket: WebSocket) -> None:
    """WebSocket connection endpoint.

    The handshake must carry an authenticated identity, either in the
    configured identity header or the ``identity`` query parameter.

    Message Protocol:
        Client → Server:
        - {"type": "subscribe", "topic": "device_health", "since": 0}
        - {"type": "subscribe", "topic": "device_health", "device": "10.0.0.5", "channel": 2}
        - {"type": "unsubscribe", "topic": "device_health"}
        - {"type": "ping"}
        - {"type": "pong"}
        - {"type": "list_topics"}

        Server → Client:
        - {"type": "connected", "connection_id": "...", "topics": [...], ...}
        - {"type": "subscribed", "topic": "...", "created": true, "last_sequence": 4}
        - {"type": "unsubscribed", "topic": "...", "removed": true}
        - {"type": "events", "events": [{"topic", "sequence_id", "created_at", "payload"}]}
        - {"type": "topic_list", "topics": [...]}
        - {"type": "ping"} / {"type": "pong"}
        - {"type": "error", "code": "...", "message": "...", "topic": "..."}
    """
    service: RealtimeService = websocket.app.state.realtime_service
    settings = service.settings

    ip = get_client_ip(websocket, settings.trust_proxy_headers)
    identity = (
        websocket.headers.get(settings.identity_header)
        or websocket.query_params.get("identity")
        or None
    )
    set_log_context(client_ip=ip)

    await websocket.accept()

    if service.health.is_fatal:
        websocket_connections_rejected_total.labels(reason="unavailable").inc()
        await websocket.close(code=status.WS_1013_TRY_AGAIN_LATER, reason="Service unavailable")
        return

    if settings.require_identity and not identity:
        logger.warning("WebSocket rejected: no authenticated identity")
        await _reject(websocket, "unauthenticated", "Authentication required", "identity")
        return

    try:
        conn = await service.manager.connect(websocket, ip=ip, identity=identity)
    except ConnectionLimitExceeded as e:
        await _reject(websocket, e.code, e.detail, "ip_limit")
        return

    set_log_context(connection_id=conn.connection_id, identity=identity)
    reason = "client_closed"
    try:
        connected = ConnectedMessage(
            connection_id=conn.connection_id,
            topics=sorted(topic.value for topic in settings.enabled_topics),
            max_subscriptions=settings.max_subscriptions_per_client,
            max_message_size=settings.max_message_size,
            batch_size=settings.batch_size,
        )
        await service.manager.send(conn.connection_id, connected.to_frame())
        await _receive_loop(websocket, conn, service)
    except Exception:
        reason = "server_error"
        logger.exception("WebSocket error")
    finally:
        await service.manager.disconnect(conn.connection_id, reason)
        clear_log_context()


async def _receive_loop(websocket: WebSocket, conn: Connection, service: RealtimeService) -> None:
    """Handle incoming frames until the client goes away or the server closes."""
    while conn.is_open:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return

        raw = message.get("text")
        if raw is None and message.get("bytes") is not None:
            raw = message["bytes"].decode("utf-8", errors="replace")
        if raw is None:
            continue

        service.manager.touch(conn.connection_id)
        try:
            await handle_client_message(service, conn, raw)
        except RealtimeError as e:
            await service.manager.send(
                conn.connection_id,
                ErrorMessage(
                    code=e.code,
                    message=e.detail,
                    topic=e.extra.get("topic"),
                ).to_frame(),
            )


def parse_client_message(raw: str, max_size: int) -> ClientFrame:
    """Decode and validate one client frame.

    Raises:
        InvalidMessage: with code ``message_too_large``, ``invalid_json``,
            ``unknown_type`` or ``invalid_message``.
    """
    if len(raw.encode("utf-8")) > max_size:
        raise InvalidMessage(f"Message exceeds {max_size} bytes", code="message_too_large")

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise InvalidMessage("Invalid JSON message", code="invalid_json") from e

    if not isinstance(data, dict):
        raise InvalidMessage("Message must be a JSON object", code="invalid_message")

    msg_type = data.get("type")
    if not isinstance(msg_type, str) or msg_type not in _KNOWN_TYPES:
        raise InvalidMessage(f"Unknown message type: {msg_type}", code="unknown_type")

    try:
        return client_frame_adapter.validate_python(data)
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first["loc"][1:]) or "message"
        raise InvalidMessage(f"Invalid {msg_type} message: {field} {first['msg']}") from e


async def handle_client_message(service: RealtimeService, conn: Connection, raw: str) -> None:
    """Dispatch one client frame."""
    frame = parse_client_message(raw, service.settings.max_message_size)
    websocket_messages_received_total.labels(message_type=frame.type).inc()
    connection_id = conn.connection_id

    if isinstance(frame, SubscribeMessage):
        await service.subscribe(
            connection_id, frame.topic, since=frame.since, criteria=frame.criteria()
        )

    elif isinstance(frame, UnsubscribeMessage):
        criteria = frame.criteria()
        removed = await service.unsubscribe(connection_id, frame.topic, criteria)
        reply = UnsubscribedMessage(
            topic=frame.topic.strip().lower(),
            removed=removed,
            **(criteria.to_dict() if criteria else {}),
        )
        await service.manager.send(connection_id, reply.to_frame())

    elif isinstance(frame, ClientPingMessage):
        pong = ServerPongMessage(timestamp=int(time.time() * 1000))
        await service.manager.send(connection_id, pong.to_frame())

    elif isinstance(frame, ClientPongMessage):
        # Activity already recorded by the receive loop
        pass

    elif isinstance(frame, ListTopicsMessage):
        topics = [TopicInfo(**info) for info in service.topic_list()]
        await service.manager.send(connection_id, TopicListMessage(topics=topics).to_frame())

    else:
        raise InvalidMessage(f"Unknown message type: {frame.type}", code="unknown_type")
