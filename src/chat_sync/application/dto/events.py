from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from chat_sync.application.exceptions import SyncError
from chat_sync.domain.value_objects.enums import ConnectionState


@dataclass(frozen=True, slots=True)
class SessionSnapshot:
    state: ConnectionState
    attempts: int
    last_error: SyncError | None


@dataclass(frozen=True, slots=True)
class ConnectionStateChanged:
    previous: ConnectionState
    current: ConnectionState
    attempts: int
    error: SyncError | None = None
    terminal: bool = False

    @property
    def connected(self) -> bool:
        return self.current == ConnectionState.OPEN


class StoreChangeKind(StrEnum):
    CHATS = "chats"
    MESSAGES = "messages"
    RECEIPTS = "receipts"
    TYPING = "typing"
    PRESENCE = "presence"


@dataclass(frozen=True, slots=True)
class StoreChange:
    kind: StoreChangeKind
    chat_id: str | None = None
    message_id: str | None = None
    user_id: str | None = None
