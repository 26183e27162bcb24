"""Client-side WebSocket session: connect, heartbeat, reconnect with backoff."""
from __future__ import annotations

import asyncio
import logging
from typing import Callable
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from chat_sync.application.dto.events import ConnectionStateChanged, SessionSnapshot
from chat_sync.application.exceptions import (
    AuthError,
    ConnectionFailed,
    ConnectionLost,
    HandshakeRejected,
    HeartbeatTimeout,
    NotConnected,
    SendError,
    SyncError,
    TransportClosed,
)
from chat_sync.application.ports.auth import TokenProvider
from chat_sync.application.ports.clock import Scheduler, TimerHandle
from chat_sync.application.ports.transport import Transport, TransportFactory
from chat_sync.config import Settings, settings as default_settings
from chat_sync.domain.value_objects.enums import ConnectionState, OutboundType
from chat_sync.infrastructure.ws.protocol import Frame, outbound

logger = logging.getLogger(__name__)

NORMAL_CLOSURE = 1000
HEARTBEAT_CLOSE_CODE = 4000
AUTH_CLOSE_CODE = 4001
_AUTH_REJECT_STATUSES = (401, 403)

StateListener = Callable[[ConnectionStateChanged], None]
RawListener = Callable[[str | bytes], None]


def backoff_delay(attempt: int, base_ms: int, max_ms: int) -> int:
    """Delay before reconnect attempt ``attempt`` (1-indexed)."""
    return min(base_ms * (2 ** (attempt - 1)), max_ms)


class ConnectionManager:
    """Owns one transport session.

    State machine::

        CLOSED -> CONNECTING -> OPEN -> CLOSING -> CLOSED
        CONNECTING/OPEN --unexpected close--> RECONNECT_WAIT -> CONNECTING

    Every transport gets a generation number. Timer callbacks and reader
    loops carry the generation they were started for and do nothing once it
    is stale, so a cancelled session can never be resurrected by a callback
    that was already queued.
    """

    def __init__(
        self,
        token_provider: TokenProvider,
        transport_factory: TransportFactory,
        scheduler: Scheduler,
        *,
        config: Settings | None = None,
    ) -> None:
        self._config = config or default_settings
        self._tokens = token_provider
        self._factory = transport_factory
        self._scheduler = scheduler

        self._state = ConnectionState.CLOSED
        self._attempts = 0
        self._last_error: SyncError | None = None
        self._manual_close = False
        self._generation = 0

        self._transport: Transport | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._heartbeat_timer: TimerHandle | None = None
        self._pong_timer: TimerHandle | None = None
        self._reconnect_timer: TimerHandle | None = None
        self._background: set[asyncio.Task[None]] = set()

        self._state_listeners: list[StateListener] = []
        self._raw_listeners: list[RawListener] = []

    # -- introspection -------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.OPEN

    @property
    def session(self) -> SessionSnapshot:
        return SessionSnapshot(state=self._state, attempts=self._attempts, last_error=self._last_error)

    # -- listeners -----------------------------------------------------

    def on_state_change(self, listener: StateListener) -> Callable[[], None]:
        self._state_listeners.append(listener)
        return lambda: _discard(self._state_listeners, listener)

    def on_message(self, listener: RawListener) -> Callable[[], None]:
        self._raw_listeners.append(listener)
        return lambda: _discard(self._raw_listeners, listener)

    # -- lifecycle -----------------------------------------------------

    async def connect(self) -> None:
        if self._state in (ConnectionState.CONNECTING, ConnectionState.OPEN):
            return

        self._manual_close = False
        self._cancel_reconnect()
        self._generation += 1
        generation = self._generation
        self._set_state(ConnectionState.CONNECTING)

        try:
            transport = await self._open()
        except AuthError as exc:
            if generation == self._generation:
                self._fail_auth(exc)
            return
        except ConnectionFailed as exc:
            if generation == self._generation:
                logger.warning("Connect failed: %s", exc.detail)
                self._handle_failure(exc)
            return
        except Exception as exc:
            if generation == self._generation:
                logger.exception("Connect failed")
                self._handle_failure(ConnectionFailed(f"{type(exc).__name__}: {exc}"))
            return

        if generation != self._generation:
            # disconnect() ran while the handshake was in flight
            await transport.close(NORMAL_CLOSURE, "Manual disconnect")
            return

        self._transport = transport
        self._attempts = 0
        self._last_error = None
        self._reader_task = asyncio.create_task(
            self._read_loop(transport, generation), name=f"ws-reader-{generation}",
        )
        self._schedule_ping(generation)
        logger.info("WebSocket connected")
        self._set_state(ConnectionState.OPEN)

    async def disconnect(self) -> None:
        """Close for good; idempotent. Suppresses auto-reconnect."""
        self._manual_close = True
        transport = self._transport
        self._cancel_reconnect()
        self._teardown()
        self._attempts = 0
        self._last_error = None

        if transport is not None:
            self._set_state(ConnectionState.CLOSING)
            await transport.close(NORMAL_CLOSURE, "Manual disconnect")
            if self._state != ConnectionState.CLOSING:
                return
        self._set_state(ConnectionState.CLOSED)

    async def send(self, frame: Frame) -> None:
        transport = self._transport
        if self._state != ConnectionState.OPEN or transport is None:
            raise NotConnected(f"cannot send {frame.type!r} while {self._state}")
        try:
            await transport.send(frame.to_wire())
        except TransportClosed as exc:
            raise SendError(f"transport closed while sending {frame.type!r}") from exc
        logger.debug("Sent frame %s", frame.type)

    def record_pong(self) -> None:
        if self._pong_timer is not None:
            self._pong_timer.cancel()
            self._pong_timer = None

    def fail_auth(self, detail: str) -> None:
        """Token rejected by the server: terminal, no reconnect."""
        self._fail_auth(AuthError(detail))

    # -- internals -----------------------------------------------------

    async def _open(self) -> Transport:
        token = await self._tokens.current_token()
        try:
            return await self._factory.open(self._build_url(token))
        except HandshakeRejected as exc:
            if exc.status not in _AUTH_REJECT_STATUSES:
                raise

        logger.warning("Handshake rejected as unauthorized, refreshing token")
        try:
            token = await self._tokens.refresh()
        except Exception as exc:
            raise AuthError(f"token refresh failed: {exc}") from exc

        try:
            return await self._factory.open(self._build_url(token))
        except HandshakeRejected as exc:
            if exc.status in _AUTH_REJECT_STATUSES:
                raise AuthError("handshake rejected after token refresh") from exc
            raise

    def _build_url(self, token: str | None) -> str:
        url = self._config.WS_URL
        if not token:
            return url
        parts = urlsplit(url)
        query = parse_qsl(parts.query, keep_blank_values=True)
        query.append((self._config.WS_TOKEN_PARAM, token))
        return urlunsplit(parts._replace(query=urlencode(query)))

    async def _read_loop(self, transport: Transport, generation: int) -> None:
        while True:
            try:
                raw = await transport.recv()
            except TransportClosed as exc:
                if generation == self._generation and not self._manual_close:
                    self._on_transport_closed(exc)
                return
            except Exception as exc:
                if generation == self._generation and not self._manual_close:
                    logger.exception("WebSocket receive failed")
                    self._handle_failure(ConnectionFailed(f"receive failed: {type(exc).__name__}: {exc}"))
                    self._spawn(transport.close(NORMAL_CLOSURE, "Receive failed"))
                return
            if generation != self._generation:
                return
            logger.debug("Received frame (%d bytes)", len(raw))
            for listener in list(self._raw_listeners):
                try:
                    listener(raw)
                except Exception:
                    logger.exception("Message listener failed")

    def _on_transport_closed(self, exc: TransportClosed) -> None:
        logger.info("WebSocket closed: code=%s reason=%s", exc.code, exc.reason)
        if exc.code == AUTH_CLOSE_CODE:
            self._fail_auth(AuthError(exc.reason or "authentication failed"))
            return
        self._handle_failure(ConnectionFailed(f"closed unexpectedly (code={exc.code})"))

    def _handle_failure(self, exc: ConnectionFailed) -> None:
        self._last_error = exc
        self._teardown()
        if self._manual_close:
            self._set_state(ConnectionState.CLOSED)
            return

        self._attempts += 1
        max_attempts = self._config.MAX_RECONNECT_ATTEMPTS
        if self._attempts > max_attempts:
            lost = ConnectionLost(f"gave up after {max_attempts} reconnect attempts")
            self._last_error = lost
            logger.error("Reconnect budget exhausted: %s", exc.detail)
            self._set_state(ConnectionState.CLOSED, error=lost, terminal=True)
            return

        delay = backoff_delay(
            self._attempts,
            self._config.RECONNECT_BASE_INTERVAL_MS,
            self._config.RECONNECT_MAX_DELAY_MS,
        )
        logger.info("Scheduling reconnect attempt %d in %dms", self._attempts, delay)
        self._set_state(ConnectionState.RECONNECT_WAIT, error=exc)
        self._reconnect_timer = self._scheduler.call_later(delay, self._on_reconnect_due)

    async def _on_reconnect_due(self) -> None:
        self._reconnect_timer = None
        if self._manual_close or self._state != ConnectionState.RECONNECT_WAIT:
            return
        await self.connect()

    def _fail_auth(self, exc: AuthError) -> None:
        logger.error("Authentication failed: %s", exc.detail)
        transport = self._transport
        self._cancel_reconnect()
        self._teardown()
        self._last_error = exc
        self._set_state(ConnectionState.CLOSED, error=exc, terminal=True)
        if transport is not None:
            self._spawn(transport.close(AUTH_CLOSE_CODE, "Authentication failed"))

    def _schedule_ping(self, generation: int) -> None:
        self._heartbeat_timer = self._scheduler.call_later(
            self._config.HEARTBEAT_INTERVAL_MS, lambda: self._send_ping(generation),
        )

    async def _send_ping(self, generation: int) -> None:
        if generation != self._generation or self._state != ConnectionState.OPEN:
            return
        self._schedule_ping(generation)
        if self._pong_timer is None:
            self._pong_timer = self._scheduler.call_later(
                self._config.HEARTBEAT_TIMEOUT_MS, lambda: self._on_pong_timeout(generation),
            )
        try:
            await self.send(outbound(OutboundType.PING))
        except SendError as exc:
            logger.warning("Ping not sent: %s", exc.detail)

    async def _on_pong_timeout(self, generation: int) -> None:
        if generation != self._generation or self._state != ConnectionState.OPEN:
            return
        logger.warning("No pong within %dms, forcing close", self._config.HEARTBEAT_TIMEOUT_MS)
        transport = self._transport
        self._pong_timer = None
        self._handle_failure(HeartbeatTimeout("no pong received"))
        if transport is not None:
            await transport.close(HEARTBEAT_CLOSE_CODE, "Heartbeat timeout")

    def _teardown(self) -> None:
        """Drop the current transport and its timers; stale callbacks become no-ops."""
        self._generation += 1
        for timer in (self._heartbeat_timer, self._pong_timer):
            if timer is not None:
                timer.cancel()
        self._heartbeat_timer = None
        self._pong_timer = None
        reader = self._reader_task
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
        self._reader_task = None
        self._transport = None

    def _cancel_reconnect(self) -> None:
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
            self._reconnect_timer = None

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _set_state(
        self,
        state: ConnectionState,
        *,
        error: SyncError | None = None,
        terminal: bool = False,
    ) -> None:
        previous = self._state
        if previous == state and not terminal:
            return
        self._state = state
        event = ConnectionStateChanged(
            previous=previous,
            current=state,
            attempts=self._attempts,
            error=error,
            terminal=terminal,
        )
        logger.debug("Connection state %s -> %s", previous, state)
        for listener in list(self._state_listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Connection state listener failed")


def _discard(items: list, item) -> None:
    try:
        items.remove(item)
    except ValueError:
        pass
