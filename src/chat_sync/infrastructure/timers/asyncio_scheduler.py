"""Event-loop backed clock and scheduler."""
from __future__ import annotations

import asyncio
import inspect
import logging
import time

from chat_sync.application.ports.clock import TimerCallback

logger = logging.getLogger(__name__)


class SystemClock:
    """Default wall-clock implementation."""

    def now_ms(self) -> int:
        return int(time.time() * 1000)


class _LoopTimer:
    def __init__(self) -> None:
        self._handle: asyncio.TimerHandle | None = None
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True
        if self._handle is not None:
            self._handle.cancel()


class AsyncioScheduler:
    """Implements application.ports.clock.Scheduler on the running loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop
        self._tasks: set[asyncio.Task[None]] = set()

    def call_later(self, delay_ms: int, callback: TimerCallback) -> _LoopTimer:
        loop = self._loop or asyncio.get_running_loop()
        timer = _LoopTimer()
        timer._handle = loop.call_later(max(delay_ms, 0) / 1000, self._fire, timer, callback)
        return timer

    def _fire(self, timer: _LoopTimer, callback: TimerCallback) -> None:
        if timer.cancelled:
            return
        try:
            result = callback()
        except Exception:
            logger.exception("Timer callback failed")
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(self._run(result))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    @staticmethod
    async def _run(awaitable) -> None:
        try:
            await awaitable
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Timer coroutine failed")
