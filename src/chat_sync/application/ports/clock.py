from __future__ import annotations

from typing import Awaitable, Callable, Protocol

TimerCallback = Callable[[], Awaitable[None] | None]


class Clock(Protocol):
    def now_ms(self) -> int: ...


class TimerHandle(Protocol):
    def cancel(self) -> None: ...

    @property
    def cancelled(self) -> bool: ...


class Scheduler(Protocol):
    """Schedules delayed callbacks on the single event loop.

    Callbacks may be plain functions or coroutine functions; coroutines are
    run to completion by the scheduler. A cancelled handle never fires, even
    if its deadline has already passed.
    """

    def call_later(self, delay_ms: int, callback: TimerCallback) -> TimerHandle: ...
