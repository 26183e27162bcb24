from __future__ import annotations

import uuid
from typing import NewType

ChatId = NewType("ChatId", str)
MessageId = NewType("MessageId", str)
UserId = NewType("UserId", str)
CorrelationId = NewType("CorrelationId", str)


def new_local_message_id() -> MessageId:
    return MessageId(f"local-{uuid.uuid4().hex}")


def new_correlation_id() -> CorrelationId:
    return CorrelationId(uuid.uuid4().hex)
