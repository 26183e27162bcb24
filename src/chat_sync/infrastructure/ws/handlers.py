"""Inbound frame handlers: payload validation and store updates."""
from __future__ import annotations

import logging
from typing import Any

from chat_sync.application.ports.clock import Clock
from chat_sync.domain.value_objects.enums import InboundType
from chat_sync.infrastructure.ws.dispatcher import FrameHandler, MessageDispatcher
from chat_sync.infrastructure.ws.manager import ConnectionManager
from chat_sync.infrastructure.ws.protocol import (
    AuthSuccessPayload,
    ErrorPayload,
    MessagePayload,
    MessageSentPayload,
    PresencePayload,
    ReceiptPayload,
    TypingPayload,
)
from chat_sync.services.outbound_queue import OutboundQueue
from chat_sync.services.reconciliation_store import ReconciliationStore

logger = logging.getLogger(__name__)


class FrameHandlers:
    def __init__(
        self,
        store: ReconciliationStore,
        queue: OutboundQueue,
        connection: ConnectionManager,
        clock: Clock,
    ) -> None:
        self._store = store
        self._queue = queue
        self._connection = connection
        self._clock = clock

    def table(self) -> dict[InboundType, FrameHandler]:
        return {
            InboundType.MESSAGE: self.on_message,
            InboundType.MESSAGE_SENT: self.on_message_sent,
            InboundType.TYPING: self.on_typing,
            InboundType.PRESENCE: self.on_presence,
            InboundType.RECEIPT: self.on_receipt,
            InboundType.AUTH_SUCCESS: self.on_auth_success,
            InboundType.AUTH_ERROR: self.on_auth_error,
            InboundType.ERROR: self.on_error,
            InboundType.PONG: self.on_pong,
        }

    def register_all(self, dispatcher: MessageDispatcher) -> None:
        for frame_type, handler in self.table().items():
            dispatcher.register(frame_type, handler)
        dispatcher.assert_exhaustive()

    def on_message(self, data: dict[str, Any]) -> None:
        payload = MessagePayload.model_validate(data)
        self._queue.handle_message(payload.to_entity())

    def on_message_sent(self, data: dict[str, Any]) -> None:
        ack = MessageSentPayload.model_validate(data)
        if self._queue.handle_ack(ack) is None:
            logger.debug("Ack %s matched no local message", ack.correlation_id)

    def on_typing(self, data: dict[str, Any]) -> None:
        payload = TypingPayload.model_validate(data)
        if payload.user_id == self._store.current_user_id:
            return
        self._store.set_typing(payload.chat_id, payload.user_id, payload.is_typing)

    def on_presence(self, data: dict[str, Any]) -> None:
        payload = PresencePayload.model_validate(data)
        self._store.set_presence(payload.to_entity())

    def on_receipt(self, data: dict[str, Any]) -> None:
        payload = ReceiptPayload.model_validate(data)
        self._store.apply_receipt(payload.to_entity(self._clock.now_ms()))

    def on_auth_success(self, data: dict[str, Any]) -> None:
        payload = AuthSuccessPayload.model_validate(data)
        logger.info("WebSocket authenticated for user %s", payload.user_id)

    def on_auth_error(self, data: dict[str, Any]) -> None:
        payload = ErrorPayload.model_validate(data)
        self._connection.fail_auth(payload.error or "authentication rejected")

    def on_error(self, data: dict[str, Any]) -> None:
        payload = ErrorPayload.model_validate(data)
        logger.error("Server error: %s", payload.error)

    def on_pong(self, data: dict[str, Any]) -> None:
        self._connection.record_pong()
