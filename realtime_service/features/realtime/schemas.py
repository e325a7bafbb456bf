"""Pydantic schemas for realtime WebSocket frames.

Message Types:
- Client → Server: subscribe, unsubscribe, ping, pong, list_topics
- Server → Client: connected, subscribed, unsubscribed, events, topic_list,
  ping, pong, error
"""

from __future__ import annotations

import ipaddress
from enum import Enum
from typing import Annotated, Any, Literal, Self, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    field_validator,
    model_validator,
)

from realtime_service.core.topics import SubscriptionFilter


class ClientMessageType(str, Enum):
    """Message types sent from client to server."""

    SUBSCRIBE = "subscribe"
    UNSUBSCRIBE = "unsubscribe"
    PING = "ping"
    PONG = "pong"
    LIST_TOPICS = "list_topics"


class ServerMessageType(str, Enum):
    """Message types sent from server to client."""

    CONNECTED = "connected"
    SUBSCRIBED = "subscribed"
    UNSUBSCRIBED = "unsubscribed"
    EVENTS = "events"
    TOPIC_LIST = "topic_list"
    PING = "ping"
    PONG = "pong"
    ERROR = "error"


# ──────────────────────────────────────────────────────────────
# Client → Server Messages
# ──────────────────────────────────────────────────────────────


class ClientMessage(BaseModel):
    """Base model for messages from client to server."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class FilterFields(ClientMessage):
    """Optional device, channel and publisher narrowing of a topic subscription.

    ``device`` must be an IPv4 address; ``channel`` and ``publisher_id``
    only make sense together with a device.
    """

    device: str | None = Field(None, description="Device IPv4 address")
    channel: str | None = Field(None, description="Channel number 1-999")
    publisher_id: str | None = Field(
        None,
        min_length=1,
        max_length=100,
        validation_alias=AliasChoices("publisher_id", "publisherId"),
    )

    @field_validator("device")
    @classmethod
    def validate_device(cls, v: str | None) -> str | None:
        if v is None:
            return v
        try:
            return str(ipaddress.IPv4Address(v.strip()))
        except ValueError as e:
            raise ValueError("must be an IPv4 address") from e

    @field_validator("channel", mode="before")
    @classmethod
    def validate_channel(cls, v: Any) -> Any:
        if v is None:
            return v
        if isinstance(v, bool) or not isinstance(v, int | str):
            raise ValueError("must be a channel number")
        try:
            number = int(v)
        except ValueError as e:
            raise ValueError("must be a channel number") from e
        if not 1 <= number <= 999:
            raise ValueError("must be between 1 and 999")
        return str(number)

    @field_validator("publisher_id", mode="before")
    @classmethod
    def stringify_publisher(cls, v: Any) -> Any:
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @model_validator(mode="after")
    def require_device(self) -> Self:
        if self.device is None and (self.channel is not None or self.publisher_id is not None):
            raise ValueError("device is required when channel or publisher_id is set")
        return self

    def criteria(self) -> SubscriptionFilter | None:
        """The subscription filter, or None for the whole topic."""
        criteria = SubscriptionFilter(self.device, self.channel, self.publisher_id)
        return None if criteria.is_wildcard else criteria


class SubscribeMessage(FilterFields):
    """Request to subscribe to a topic, optionally replaying stored events."""

    type: Literal["subscribe"] = "subscribe"
    topic: str = Field(
        ...,
        min_length=1,
        max_length=100,
        validation_alias=AliasChoices("topic", "dataType"),
        description="Topic to subscribe to",
    )
    since: int | None = Field(
        None,
        ge=0,
        description="Replay stored events with a sequence id greater than this",
    )


class UnsubscribeMessage(FilterFields):
    """Request to unsubscribe from a topic, or from one filter on it."""

    type: Literal["unsubscribe"] = "unsubscribe"
    topic: str = Field(
        ...,
        min_length=1,
        max_length=100,
        validation_alias=AliasChoices("topic", "dataType"),
    )


class ClientPingMessage(ClientMessage):
    """Ping message from client."""

    type: Literal["ping"] = "ping"


class ClientPongMessage(ClientMessage):
    """Pong response to server ping."""

    type: Literal["pong"] = "pong"


class ListTopicsMessage(ClientMessage):
    """Request for the topic catalogue."""

    type: Literal["list_topics"] = "list_topics"


ClientFrame = Annotated[
    Union[
        SubscribeMessage,
        UnsubscribeMessage,
        ClientPingMessage,
        ClientPongMessage,
        ListTopicsMessage,
    ],
    Field(discriminator="type"),
]

client_frame_adapter: TypeAdapter[ClientFrame] = TypeAdapter(ClientFrame)


# ──────────────────────────────────────────────────────────────
# Server → Client Messages
# ──────────────────────────────────────────────────────────────


class ServerMessage(BaseModel):
    """Base model for messages from server to client."""

    type: ServerMessageType

    def to_frame(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class ConnectedMessage(ServerMessage):
    """Sent immediately after the connection is registered."""

    type: Literal[ServerMessageType.CONNECTED] = ServerMessageType.CONNECTED
    connection_id: str = Field(..., description="Unique connection identifier")
    topics: list[str] = Field(default_factory=list, description="Topics accepting subscriptions")
    max_subscriptions: int = Field(..., ge=1)
    max_message_size: int = Field(..., ge=1)
    batch_size: int = Field(..., ge=1)


class SubscribedMessage(ServerMessage):
    """Confirmation of a subscription.

    Replayed events, if any, arrive in ``events`` frames after this one.
    """

    type: Literal[ServerMessageType.SUBSCRIBED] = ServerMessageType.SUBSCRIBED
    topic: str
    created: bool = Field(..., description="False when the subscription already existed")
    last_sequence: int = Field(..., ge=0, description="Newest stored sequence id for the topic")
    device: str | None = None
    channel: str | None = None
    publisher_id: str | None = None


class UnsubscribedMessage(ServerMessage):
    """Confirmation of topic unsubscription."""

    type: Literal[ServerMessageType.UNSUBSCRIBED] = ServerMessageType.UNSUBSCRIBED
    topic: str
    removed: bool = Field(..., description="False when there was no subscription")
    device: str | None = None
    channel: str | None = None
    publisher_id: str | None = None


class EventsMessage(ServerMessage):
    """One batch of events, oldest first."""

    type: Literal[ServerMessageType.EVENTS] = ServerMessageType.EVENTS
    events: list[dict[str, Any]]

    def to_frame(self) -> dict[str, Any]:
        # Payload values may legitimately be null
        return self.model_dump(mode="json")


class TopicInfo(BaseModel):
    topic: str
    description: str
    enabled: bool
    subscribers: int = Field(..., ge=0)
    last_sequence: int = Field(..., ge=0)


class TopicListMessage(ServerMessage):
    """Catalogue of topics with their current state."""

    type: Literal[ServerMessageType.TOPIC_LIST] = ServerMessageType.TOPIC_LIST
    topics: list[TopicInfo]


class ServerPingMessage(ServerMessage):
    """Heartbeat ping; clients answer with a pong frame."""

    type: Literal[ServerMessageType.PING] = ServerMessageType.PING
    timestamp: int = Field(..., description="Server time in epoch milliseconds")


class ServerPongMessage(ServerMessage):
    """Pong response to client ping."""

    type: Literal[ServerMessageType.PONG] = ServerMessageType.PONG
    timestamp: int = Field(..., description="Server time in epoch milliseconds")


class ErrorMessage(ServerMessage):
    """Error message from server."""

    type: Literal[ServerMessageType.ERROR] = ServerMessageType.ERROR
    code: str = Field(..., description="Error code")
    message: str = Field(..., description="Human-readable error message")
    topic: str | None = Field(None, description="Topic the error refers to")
