"""Cancellable timers on the running asyncio event loop.

Every periodic or delayed action in the call client (connectivity poll,
duration tick, connecting delay, segment cutting) is scheduled through a
``Scheduler`` so its owner can tear all of them down deterministically.

Usage::

    scheduler = Scheduler()
    handle = scheduler.call_every(1.0, on_tick)
    ...
    handle.cancel()
    await scheduler.cancel_all()
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

TimerCallback = Callable[[], Awaitable[None]]


class TimerHandle:
    """Handle to one scheduled timer task."""

    def __init__(self, name: str, task: asyncio.Task) -> None:
        self.name = name
        self._task = task

    @property
    def active(self) -> bool:
        return not self._task.done()

    def cancel(self) -> None:
        """Stop the timer; a callback already running is cancelled too."""
        if not self._task.done():
            self._task.cancel()

    async def wait(self) -> None:
        """Wait for the timer task to finish (used by tests and teardown)."""
        try:
            await self._task
        except asyncio.CancelledError:
            pass


class Scheduler:
    """Owns a set of cancellable timer tasks.

    Callback exceptions are logged and never stop a repeating timer.
    """

    def __init__(self) -> None:
        self._handles: set[TimerHandle] = set()

    @property
    def active_count(self) -> int:
        return sum(1 for h in self._handles if h.active)

    def call_later(self, delay: float, callback: TimerCallback, name: str = "timer") -> TimerHandle:
        """Run *callback* once after *delay* seconds."""

        async def _runner() -> None:
            await asyncio.sleep(delay)
            await self._invoke(name, callback)

        return self._track(name, _runner())

    def call_every(
        self,
        interval: float,
        callback: TimerCallback,
        name: str = "interval",
        immediate: bool = False,
    ) -> TimerHandle:
        """Run *callback* every *interval* seconds until cancelled.

        Args:
            interval: Seconds between the end of one run and the next.
            callback: Coroutine function to invoke.
            name: Label used in log messages.
            immediate: Also run once right away before the first interval.
        """

        async def _runner() -> None:
            if immediate:
                await self._invoke(name, callback)
            while True:
                await asyncio.sleep(interval)
                await self._invoke(name, callback)

        return self._track(name, _runner())

    async def cancel_all(self) -> None:
        """Cancel every outstanding timer and wait for them to unwind."""
        handles = list(self._handles)
        for handle in handles:
            handle.cancel()
        for handle in handles:
            await handle.wait()
        self._handles.clear()

    def _track(self, name: str, coro: Awaitable[None]) -> TimerHandle:
        task = asyncio.create_task(coro, name=name)
        handle = TimerHandle(name, task)
        self._handles.add(handle)
        task.add_done_callback(lambda _t: self._handles.discard(handle))
        return handle

    @staticmethod
    async def _invoke(name: str, callback: TimerCallback) -> None:
        try:
            await callback()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Timer callback %r failed", name)
