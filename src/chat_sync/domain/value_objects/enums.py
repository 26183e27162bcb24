from __future__ import annotations

from enum import StrEnum


class ConnectionState(StrEnum):
    CLOSED = "closed"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    RECONNECT_WAIT = "reconnect_wait"


class MessageStatus(StrEnum):
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"

    @property
    def rank(self) -> int:
        """Position in the delivery order; Pending and Failed sit below Sent."""
        return _STATUS_RANK[self]


_STATUS_RANK = {
    MessageStatus.PENDING: 0,
    MessageStatus.FAILED: 0,
    MessageStatus.SENT: 1,
    MessageStatus.DELIVERED: 2,
    MessageStatus.READ: 3,
}


class MessageKind(StrEnum):
    TEXT = "text"
    IMAGE = "image"
    FILE = "file"
    AUDIO = "audio"
    VIDEO = "video"
    SYSTEM = "system"
    LOCATION = "location"


class ChatType(StrEnum):
    DIRECT = "direct"
    GROUP = "group"
    CHANNEL = "channel"


class ReceiptStatus(StrEnum):
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"

    def as_message_status(self) -> MessageStatus:
        return MessageStatus(self.value)


class PresenceStatus(StrEnum):
    ONLINE = "online"
    AWAY = "away"
    OFFLINE = "offline"


class InboundType(StrEnum):
    MESSAGE = "message"
    MESSAGE_SENT = "message_sent"
    TYPING = "typing"
    PRESENCE = "presence"
    RECEIPT = "receipt"
    AUTH_SUCCESS = "auth_success"
    AUTH_ERROR = "auth_error"
    ERROR = "error"
    PONG = "pong"


class OutboundType(StrEnum):
    SEND_MESSAGE = "send_message"
    JOIN_CHAT = "join_chat"
    LEAVE_CHAT = "leave_chat"
    TYPING = "typing"
    MARK_READ = "mark_read"
    PING = "ping"
