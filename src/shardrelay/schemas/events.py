from __future__ import annotations

from typing import Any, ClassVar, Dict, List, Optional, Type

from pydantic import BaseModel, ConfigDict, Field


class GatewayModel(BaseModel):
    # newer gateway payloads carry fields we don't model; keep decoding them
    model_config = ConfigDict(extra="ignore")


class User(GatewayModel):
    id: int
    username: str = ""
    discriminator: Optional[str] = None
    bot: bool = False
    system: bool = False


class Emoji(GatewayModel):
    id: Optional[int] = None
    name: Optional[str] = None
    animated: bool = False


class Attachment(GatewayModel):
    id: int
    filename: str
    url: Optional[str] = None
    size: int = 0


class BaseEvent(GatewayModel):
    """A decoded gateway dispatch.

    The type tag lives on the class rather than in the payload: several
    gateway payloads (interactions, channels) carry their own ``type`` field.
    """

    event_type: ClassVar[str] = ""


class ReadyEvent(BaseEvent):
    event_type: ClassVar[str] = "READY"
    user: User
    session_id: Optional[str] = None
    shard: Optional[List[int]] = None


class ResumedEvent(BaseEvent):
    event_type: ClassVar[str] = "RESUMED"


class HeartbeatAckEvent(BaseEvent):
    """Synthesized by the shard connection when a heartbeat is acknowledged."""

    event_type: ClassVar[str] = "HEARTBEAT_ACK"
    latency_ms: int = 0


class MessageCreateEvent(BaseEvent):
    event_type: ClassVar[str] = "MESSAGE_CREATE"
    id: int
    channel_id: int
    guild_id: Optional[int] = None
    author: User
    content: str = ""
    timestamp: Optional[str] = None
    webhook_id: Optional[int] = None
    mentions: List[User] = Field(default_factory=list)
    attachments: List[Attachment] = Field(default_factory=list)


class MessageUpdateEvent(BaseEvent):
    # partial message: everything but the ids may be missing
    event_type: ClassVar[str] = "MESSAGE_UPDATE"
    id: int
    channel_id: int
    guild_id: Optional[int] = None
    author: Optional[User] = None
    content: Optional[str] = None
    edited_timestamp: Optional[str] = None


class MessageDeleteEvent(BaseEvent):
    event_type: ClassVar[str] = "MESSAGE_DELETE"
    id: int
    channel_id: int
    guild_id: Optional[int] = None


class MessageDeleteBulkEvent(BaseEvent):
    event_type: ClassVar[str] = "MESSAGE_DELETE_BULK"
    ids: List[int]
    channel_id: int
    guild_id: Optional[int] = None


class MessageReactionAddEvent(BaseEvent):
    event_type: ClassVar[str] = "MESSAGE_REACTION_ADD"
    user_id: int
    channel_id: int
    message_id: int
    guild_id: Optional[int] = None
    emoji: Emoji


class InteractionCreateEvent(BaseEvent):
    event_type: ClassVar[str] = "INTERACTION_CREATE"
    id: int
    application_id: int
    # interaction kind as sent by the gateway (2 = command, 3 = component, ...)
    kind: int = Field(..., alias="type")
    token: str
    guild_id: Optional[int] = None
    channel_id: Optional[int] = None
    data: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


# type tag -> model, the closed set of shapes the registry is built from
EVENT_MODELS: Dict[str, Type[BaseEvent]] = {
    "READY": ReadyEvent,
    "RESUMED": ResumedEvent,
    "HEARTBEAT_ACK": HeartbeatAckEvent,
    "MESSAGE_CREATE": MessageCreateEvent,
    "MESSAGE_UPDATE": MessageUpdateEvent,
    "MESSAGE_DELETE": MessageDeleteEvent,
    "MESSAGE_DELETE_BULK": MessageDeleteBulkEvent,
    "MESSAGE_REACTION_ADD": MessageReactionAddEvent,
    "INTERACTION_CREATE": InteractionCreateEvent,
}
