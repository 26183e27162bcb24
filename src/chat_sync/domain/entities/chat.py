from __future__ import annotations

from dataclasses import dataclass

from chat_sync.domain.value_objects.enums import ChatType


@dataclass(frozen=True, slots=True)
class Chat:
    id: str
    type: ChatType
    name: str | None = None
    last_message_at: int | None = None
    message_count: int = 0
    last_read_at: int | None = None
