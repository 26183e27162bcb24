from __future__ import annotations

import logging
from typing import Any, Callable

from chat_sync.application.dto.events import ConnectionStateChanged
from chat_sync.application.ports.auth import TokenProvider
from chat_sync.application.ports.clock import Clock, Scheduler, TimerHandle
from chat_sync.application.ports.transport import TransportFactory
from chat_sync.config import Settings, settings as default_settings
from chat_sync.domain.entities.message import Message
from chat_sync.domain.value_objects.enums import MessageKind, OutboundType
from chat_sync.infrastructure.timers.asyncio_scheduler import AsyncioScheduler, SystemClock
from chat_sync.infrastructure.ws.dispatcher import MessageDispatcher
from chat_sync.infrastructure.ws.handlers import FrameHandlers
from chat_sync.infrastructure.ws.manager import ConnectionManager
from chat_sync.infrastructure.ws.protocol import ChatRefData, MarkReadData, TypingData, outbound
from chat_sync.infrastructure.ws.transport import WebsocketsTransportFactory
from chat_sync.services.outbound_queue import OutboundQueue
from chat_sync.services.reconciliation_store import ReconciliationStore

logger = logging.getLogger(__name__)


class ChatSyncClient:
    """Composition root: one connection, one dispatcher, one store, one queue.

    Every collaborator is built here and owned by the instance, so several
    clients can live side by side (in tests, or for multiple accounts).
    """

    def __init__(
        self,
        current_user_id: str,
        token_provider: TokenProvider,
        *,
        config: Settings | None = None,
        transport_factory: TransportFactory | None = None,
        scheduler: Scheduler | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.config = config or default_settings
        self.clock = clock or SystemClock()
        self.scheduler = scheduler or AsyncioScheduler()

        self.store = ReconciliationStore(current_user_id, self.clock, config=self.config)
        self.connection = ConnectionManager(
            token_provider,
            transport_factory or WebsocketsTransportFactory(),
            self.scheduler,
            config=self.config,
        )
        self.outbound = OutboundQueue(self.store, self.connection, self.clock)
        self.dispatcher = MessageDispatcher()
        FrameHandlers(self.store, self.outbound, self.connection, self.clock).register_all(self.dispatcher)

        self._unsubscribers: list[Callable[[], None]] = []
        self._sweep_timer: TimerHandle | None = None
        self._running = False

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._unsubscribers = [
            self.connection.on_message(self.dispatcher.dispatch),
            self.connection.on_state_change(self.outbound.on_connection_state),
            self.connection.on_state_change(self._log_state),
        ]
        self._schedule_sweep()
        await self.connection.connect()

    async def stop(self) -> None:
        self._running = False
        if self._sweep_timer is not None:
            self._sweep_timer.cancel()
            self._sweep_timer = None
        await self.connection.disconnect()
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    async def __aenter__(self) -> ChatSyncClient:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    # -- outbound ------------------------------------------------------

    async def send_message(
        self,
        chat_id: str,
        content: str,
        kind: MessageKind = MessageKind.TEXT,
        metadata: dict[str, Any] | None = None,
    ) -> Message:
        return await self.outbound.send(chat_id, content, kind, metadata=metadata)

    async def retry(self, message_id: str) -> Message:
        return await self.outbound.retry(message_id)

    async def join_chat(self, chat_id: str) -> None:
        await self.connection.send(outbound(OutboundType.JOIN_CHAT, ChatRefData(chat_id=chat_id)))

    async def leave_chat(self, chat_id: str) -> None:
        await self.connection.send(outbound(OutboundType.LEAVE_CHAT, ChatRefData(chat_id=chat_id)))

    async def send_typing(self, chat_id: str, is_typing: bool) -> None:
        await self.connection.send(
            outbound(OutboundType.TYPING, TypingData(chat_id=chat_id, is_typing=is_typing)),
        )

    async def mark_read(self, message_id: str) -> None:
        message = self.store.get_message(message_id)
        if message is None:
            raise KeyError(message_id)
        await self.connection.send(outbound(OutboundType.MARK_READ, MarkReadData(message_id=message_id)))
        self.store.mark_chat_read(message.chat_id, message.timestamp)

    # -- internals -----------------------------------------------------

    def _schedule_sweep(self) -> None:
        self._sweep_timer = self.scheduler.call_later(self.config.TYPING_SWEEP_INTERVAL_MS, self._sweep)

    def _sweep(self) -> None:
        if not self._running:
            return
        removed = self.store.sweep_typing()
        if removed:
            logger.debug("Expired %d typing indicator(s)", removed)
        self._schedule_sweep()

    @staticmethod
    def _log_state(event: ConnectionStateChanged) -> None:
        if event.terminal:
            logger.error("Connection terminated: %s", event.error.detail if event.error else event.current)
        else:
            logger.info("Connection %s -> %s (attempts=%d)", event.previous, event.current, event.attempts)
