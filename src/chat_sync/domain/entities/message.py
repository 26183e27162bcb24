from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from chat_sync.domain.value_objects.enums import MessageKind, MessageStatus


@dataclass(frozen=True, slots=True)
class Message:
    id: str
    chat_id: str
    sender_id: str
    content: str
    kind: MessageKind
    timestamp: int
    status: MessageStatus
    edited_at: int | None = None
    correlation_id: str | None = None
    metadata: dict[str, Any] | None = None

    @property
    def sort_key(self) -> tuple[int, str]:
        return (self.timestamp, self.id)
