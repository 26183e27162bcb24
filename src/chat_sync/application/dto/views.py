from __future__ import annotations

from dataclasses import dataclass

from chat_sync.domain.entities.chat import Chat


@dataclass(frozen=True, slots=True)
class ChatListItem:
    chat: Chat
    unread_count: int
    last_activity: int
    typing_users: tuple[str, ...] = ()

    @property
    def id(self) -> str:
        return self.chat.id
