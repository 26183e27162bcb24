from __future__ import annotations

from dataclasses import dataclass

from chat_sync.domain.value_objects.enums import ReceiptStatus


@dataclass(frozen=True, slots=True)
class Receipt:
    message_id: str
    user_id: str
    status: ReceiptStatus
    timestamp: int
