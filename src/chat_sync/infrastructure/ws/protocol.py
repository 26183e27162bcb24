"""WebSocket frame envelope and payload models."""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from chat_sync.domain.entities.message import Message
from chat_sync.domain.entities.presence import Presence
from chat_sync.domain.entities.receipt import Receipt
from chat_sync.domain.value_objects.enums import (
    MessageKind,
    MessageStatus,
    OutboundType,
    PresenceStatus,
    ReceiptStatus,
)


class Frame(BaseModel):
    """Both directions: {type, data?, error?}."""

    model_config = ConfigDict(frozen=True)

    type: str
    data: dict[str, Any] | None = None
    error: str | None = None

    def to_wire(self) -> str:
        return self.model_dump_json(exclude_none=True)


class _Payload(BaseModel):
    """camelCase on the wire, snake_case accepted too."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_data(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# Server → Client


class MessagePayload(_Payload):
    id: str
    chat_id: str
    sender_id: str
    content: str = ""
    kind: MessageKind = Field(default=MessageKind.TEXT, alias="type")
    timestamp: int
    status: MessageStatus = MessageStatus.SENT
    edited_at: int | None = None
    correlation_id: str | None = None
    metadata: dict[str, Any] | None = None

    def to_entity(self) -> Message:
        return Message(
            id=self.id,
            chat_id=self.chat_id,
            sender_id=self.sender_id,
            content=self.content,
            kind=self.kind,
            timestamp=self.timestamp,
            status=self.status,
            edited_at=self.edited_at,
            correlation_id=self.correlation_id,
            metadata=self.metadata,
        )


class MessageSentPayload(_Payload):
    correlation_id: str
    id: str | None = None
    timestamp: int | None = None


class TypingPayload(_Payload):
    user_id: str
    chat_id: str
    is_typing: bool


class PresenceBody(_Payload):
    status: PresenceStatus
    last_activity: int
    session_count: int = 0


class PresencePayload(_Payload):
    user_id: str
    presence: PresenceBody

    def to_entity(self) -> Presence:
        return Presence(
            user_id=self.user_id,
            status=self.presence.status,
            last_activity=self.presence.last_activity,
            session_count=self.presence.session_count,
        )


class ReceiptPayload(_Payload):
    message_id: str
    user_id: str
    status: ReceiptStatus
    timestamp: int | None = None

    def to_entity(self, default_timestamp: int) -> Receipt:
        return Receipt(
            message_id=self.message_id,
            user_id=self.user_id,
            status=self.status,
            timestamp=self.timestamp if self.timestamp is not None else default_timestamp,
        )


class AuthSuccessPayload(_Payload):
    user_id: str | None = None


class ErrorPayload(_Payload):
    error: str = ""


# Client → Server


class SendMessageData(_Payload):
    chat_id: str
    content: str
    kind: MessageKind = Field(default=MessageKind.TEXT, alias="type")
    correlation_id: str
    metadata: dict[str, Any] | None = None


class ChatRefData(_Payload):
    chat_id: str


class TypingData(_Payload):
    chat_id: str
    is_typing: bool


class MarkReadData(_Payload):
    message_id: str


def outbound(frame_type: OutboundType, data: _Payload | None = None) -> Frame:
    return Frame(type=frame_type.value, data=data.to_data() if data is not None else {})
