from __future__ import annotations

from dataclasses import dataclass

from chat_sync.domain.value_objects.enums import PresenceStatus


@dataclass(frozen=True, slots=True)
class Presence:
    user_id: str
    status: PresenceStatus
    last_activity: int
    session_count: int = 0
