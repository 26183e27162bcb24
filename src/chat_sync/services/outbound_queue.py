"""Optimistic sends: local Pending entry first, reconcile on server ack."""
from __future__ import annotations

import asyncio
import logging
from typing import Any

from chat_sync.application.dto.events import ConnectionStateChanged
from chat_sync.application.exceptions import SendError
from chat_sync.application.ports.clock import Clock
from chat_sync.domain.entities.message import Message
from chat_sync.domain.value_objects.enums import ConnectionState, MessageKind, MessageStatus, OutboundType
from chat_sync.domain.value_objects.ids import new_correlation_id, new_local_message_id
from chat_sync.infrastructure.ws.manager import ConnectionManager
from chat_sync.infrastructure.ws.protocol import MessageSentPayload, SendMessageData, outbound
from chat_sync.services.reconciliation_store import ReconciliationStore

logger = logging.getLogger(__name__)


class OutboundQueue:
    """Owns the lifecycle of locally originated messages.

    A send that cannot be transmitted is marked Failed and stays in the
    store. A transmitted send stays Pending until the server acks it; every
    transition to OPEN re-sends whatever is still Pending under its original
    correlation id, which the server uses to deduplicate.
    """

    def __init__(
        self,
        store: ReconciliationStore,
        connection: ConnectionManager,
        clock: Clock,
    ) -> None:
        self._store = store
        self._connection = connection
        self._clock = clock
        self._pending: dict[str, str] = {}
        self._tasks: set[asyncio.Task[int]] = set()

    @property
    def pending(self) -> dict[str, str]:
        """correlation id -> local message id of entries awaiting an ack."""
        return dict(self._pending)

    async def send(
        self,
        chat_id: str,
        content: str,
        kind: MessageKind = MessageKind.TEXT,
        *,
        metadata: dict[str, Any] | None = None,
        message_id: str | None = None,
    ) -> Message:
        """Create (or, given ``message_id``, re-send) an optimistic message."""
        existing = self._store.get_message(message_id) if message_id else None
        if existing is not None and existing.status.rank > MessageStatus.PENDING.rank:
            logger.debug("Message %s already %s, not re-sending", existing.id, existing.status)
            return existing

        if existing is not None:
            message = Message(
                id=existing.id,
                chat_id=existing.chat_id,
                sender_id=existing.sender_id,
                content=content,
                kind=kind,
                timestamp=existing.timestamp,
                status=MessageStatus.PENDING,
                correlation_id=existing.correlation_id or new_correlation_id(),
                metadata=metadata if metadata is not None else existing.metadata,
            )
        else:
            message = Message(
                id=message_id or new_local_message_id(),
                chat_id=chat_id,
                sender_id=self._store.current_user_id,
                content=content,
                kind=kind,
                timestamp=self._clock.now_ms(),
                status=MessageStatus.PENDING,
                correlation_id=new_correlation_id(),
                metadata=metadata,
            )

        stored = self._store.upsert_message(message)
        assert stored.correlation_id is not None
        self._pending[stored.correlation_id] = stored.id

        await self._transmit(stored)
        return self._store.get_message(stored.id) or stored

    async def retry(self, message_id: str) -> Message:
        message = self._store.get_message(message_id)
        if message is None:
            raise KeyError(message_id)
        return await self.send(message.chat_id, message.content, message.kind, message_id=message.id)

    def handle_ack(self, ack: MessageSentPayload) -> Message | None:
        self._pending.pop(ack.correlation_id, None)
        return self._store.acknowledge(ack.correlation_id, ack.id, ack.timestamp)

    def handle_message(self, message: Message) -> Message:
        """Authoritative message from the server; settles a matching Pending entry."""
        if message.correlation_id:
            self._pending.pop(message.correlation_id, None)
        return self._store.upsert_message(message)

    async def flush(self) -> int:
        """Re-send every entry still Pending. Returns how many went out."""
        sent = 0
        for correlation_id, message_id in list(self._pending.items()):
            message = self._store.get_message(message_id)
            if message is None or message.status != MessageStatus.PENDING:
                self._pending.pop(correlation_id, None)
                continue
            if await self._transmit(message):
                sent += 1
        if sent:
            logger.info("Flushed %d pending message(s)", sent)
        return sent

    def on_connection_state(self, event: ConnectionStateChanged) -> None:
        if event.current != ConnectionState.OPEN or not self._pending:
            return
        task = asyncio.get_running_loop().create_task(self.flush())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _transmit(self, message: Message) -> bool:
        assert message.correlation_id is not None
        frame = outbound(
            OutboundType.SEND_MESSAGE,
            SendMessageData(
                chat_id=message.chat_id,
                content=message.content,
                kind=message.kind,
                correlation_id=message.correlation_id,
                metadata=message.metadata,
            ),
        )
        try:
            await self._connection.send(frame)
        except SendError as exc:
            logger.warning("Send of %s failed: %s", message.id, exc.detail)
            self._pending.pop(message.correlation_id, None)
            self._store.set_message_status(message.id, MessageStatus.FAILED)
            return False
        return True
