"""Shared test fixtures."""
from __future__ import annotations

import asyncio
import inspect
import json
from dataclasses import dataclass, field
from typing import Any, Mapping

import pytest

from chat_sync.application.exceptions import TransportClosed
from chat_sync.application.ports.clock import TimerCallback
from chat_sync.config import Settings
from chat_sync.domain.entities.chat import Chat
from chat_sync.domain.entities.message import Message
from chat_sync.domain.value_objects.enums import ChatType, MessageKind, MessageStatus
from chat_sync.infrastructure.ws.manager import ConnectionManager
from chat_sync.services.reconciliation_store import ReconciliationStore

CURRENT_USER = "u-me"
T0 = 1_700_000_000_000


async def settle(rounds: int = 10) -> None:
    """Let tasks spawned on the loop run to their next suspension point."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "WS_URL": "ws://chat.test/ws",
        "RECONNECT_BASE_INTERVAL_MS": 5000,
        "RECONNECT_MAX_DELAY_MS": 30000,
        "MAX_RECONNECT_ATTEMPTS": 10,
        "HEARTBEAT_INTERVAL_MS": 30000,
        "HEARTBEAT_TIMEOUT_MS": 10000,
        "TYPING_TTL_MS": 3000,
        "TYPING_SWEEP_INTERVAL_MS": 1000,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def make_message(
    *,
    message_id: str = "m-1",
    chat_id: str = "chat1",
    sender_id: str = "u-other",
    content: str = "hello",
    timestamp: int = T0,
    status: MessageStatus = MessageStatus.SENT,
    correlation_id: str | None = None,
) -> Message:
    return Message(
        id=message_id,
        chat_id=chat_id,
        sender_id=sender_id,
        content=content,
        kind=MessageKind.TEXT,
        timestamp=timestamp,
        status=status,
        correlation_id=correlation_id,
    )


def make_chat(chat_id: str = "chat1", **kwargs: Any) -> Chat:
    return Chat(id=chat_id, type=kwargs.pop("type", ChatType.DIRECT), **kwargs)


@dataclass
class FakeClock:
    now: int = T0

    def now_ms(self) -> int:
        return self.now


@dataclass
class FakeTimer:
    due: int
    seq: int
    callback: TimerCallback
    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True


@dataclass
class FakeScheduler:
    """Deterministic scheduler driven by ``advance``."""

    clock: FakeClock
    _timers: list[FakeTimer] = field(default_factory=list)
    _seq: int = 0

    def call_later(self, delay_ms: int, callback: TimerCallback) -> FakeTimer:
        timer = FakeTimer(due=self.clock.now + max(delay_ms, 0), seq=self._seq, callback=callback)
        self._seq += 1
        self._timers.append(timer)
        return timer

    @property
    def pending(self) -> list[FakeTimer]:
        return sorted(
            (t for t in self._timers if not t.cancelled),
            key=lambda t: (t.due, t.seq),
        )

    async def advance(self, ms: int) -> None:
        target = self.clock.now + ms
        while True:
            due = [t for t in self.pending if t.due <= target]
            if not due:
                break
            timer = due[0]
            self._timers.remove(timer)
            self.clock.now = timer.due
            result = timer.callback()
            if inspect.isawaitable(result):
                await result
            await settle()
        self.clock.now = target
        await settle()


class FakeTransport:
    def __init__(self) -> None:
        self.sent: list[str] = []
        self.closed: tuple[int | None, str] | None = None
        self._inbox: asyncio.Queue[str | bytes | Exception] = asyncio.Queue()

    async def send(self, raw: str) -> None:
        if self.closed is not None:
            raise TransportClosed(*self.closed)
        self.sent.append(raw)

    async def recv(self) -> str | bytes:
        item = await self._inbox.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self.closed is None:
            self.closed = (code, reason)
            self._inbox.put_nowait(TransportClosed(code, reason))

    def feed(self, frame: dict[str, Any] | str | bytes) -> None:
        self._inbox.put_nowait(json.dumps(frame) if isinstance(frame, dict) else frame)

    def drop(self, code: int = 1006, reason: str = "") -> None:
        """Server side went away."""
        self.closed = (code, reason)
        self._inbox.put_nowait(TransportClosed(code, reason))

    def fail(self, exc: Exception) -> None:
        """Next recv raises something other than a close."""
        self._inbox.put_nowait(exc)

    def sent_frames(self) -> list[dict[str, Any]]:
        return [json.loads(raw) for raw in self.sent]


@dataclass
class FakeTransportFactory:
    failures: list[Exception] = field(default_factory=list)
    opened: list[FakeTransport] = field(default_factory=list)
    urls: list[str] = field(default_factory=list)

    async def open(self, url: str, headers: Mapping[str, str] | None = None) -> FakeTransport:
        self.urls.append(url)
        if self.failures:
            raise self.failures.pop(0)
        transport = FakeTransport()
        self.opened.append(transport)
        return transport

    @property
    def current(self) -> FakeTransport:
        return self.opened[-1]


@dataclass
class FakeTokenProvider:
    token: str | None = "tok-1"
    refreshed_token: str = "tok-2"
    refresh_error: Exception | None = None
    refresh_calls: int = 0

    async def current_token(self) -> str | None:
        return self.token

    async def refresh(self) -> str:
        self.refresh_calls += 1
        if self.refresh_error is not None:
            raise self.refresh_error
        self.token = self.refreshed_token
        return self.token


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def scheduler(clock: FakeClock) -> FakeScheduler:
    return FakeScheduler(clock)


@pytest.fixture
def config() -> Settings:
    return make_settings()


@pytest.fixture
def factory() -> FakeTransportFactory:
    return FakeTransportFactory()


@pytest.fixture
def tokens() -> FakeTokenProvider:
    return FakeTokenProvider()


@pytest.fixture
def store(clock: FakeClock, config: Settings) -> ReconciliationStore:
    return ReconciliationStore(CURRENT_USER, clock, config=config)


@pytest.fixture
def manager(
    tokens: FakeTokenProvider,
    factory: FakeTransportFactory,
    scheduler: FakeScheduler,
    config: Settings,
) -> ConnectionManager:
    return ConnectionManager(tokens, factory, scheduler, config=config)
