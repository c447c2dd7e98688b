"""
Time sources and schedulers driving the session.

`AsyncioScheduler` runs callbacks on the event loop in production.
`VirtualScheduler` keeps its own clock and only moves when told to, which
lets a whole exam be replayed in tests without waiting.
"""

import asyncio
import heapq
import itertools
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from typing import Protocol


logger = logging.getLogger(__name__)

AsyncCallback = Callable[[], Awaitable[None]]


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def now(self) -> datetime: ...

    def call_every(self, interval: float, callback: AsyncCallback) -> TimerHandle: ...

    def call_later(self, delay: float, callback: AsyncCallback) -> TimerHandle: ...

    async def sleep(self, seconds: float) -> None: ...


_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def epoch_ms(moment: datetime) -> int:
    return (moment - _EPOCH) // timedelta(milliseconds=1)


def format_time(seconds: int) -> str:
    seconds = max(0, int(seconds))
    return f"{seconds // 60:02d}:{seconds % 60:02d}"


class _TaskHandle:
    """Cancels the backing task, unless called from inside it.

    A callback that cancels its own handle (the clock stopping on expiry, a
    session closing from its own timer) must keep running to completion, so
    only the flag is set and the loop exits after the callback returns.
    """

    def __init__(self) -> None:
        self._task: asyncio.Task | None = None
        self.stopped = False

    def attach(self, task: asyncio.Task) -> "_TaskHandle":
        self._task = task
        return self

    def cancel(self) -> None:
        self.stopped = True
        if self._task is not None and self._task is not asyncio.current_task():
            self._task.cancel()

    @property
    def cancelled(self) -> bool:
        return self.stopped


class AsyncioScheduler:
    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def call_every(self, interval: float, callback: AsyncCallback) -> TimerHandle:
        loop = asyncio.get_running_loop()
        handle = _TaskHandle()
        return handle.attach(loop.create_task(self._repeat(interval, callback, handle)))

    def call_later(self, delay: float, callback: AsyncCallback) -> TimerHandle:
        loop = asyncio.get_running_loop()
        handle = _TaskHandle()
        return handle.attach(loop.create_task(self._once(delay, callback, handle)))

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)

    async def _repeat(self, interval: float, callback: AsyncCallback, handle: _TaskHandle) -> None:
        loop = asyncio.get_running_loop()
        # anchored to the loop clock so a slow callback does not stretch the period
        due = loop.time() + interval
        while not handle.stopped:
            await asyncio.sleep(max(0.0, due - loop.time()))
            if handle.stopped:
                break
            due += interval
            try:
                await callback()
            except Exception:
                logger.exception("Scheduled callback failed")

    async def _once(self, delay: float, callback: AsyncCallback, handle: _TaskHandle) -> None:
        await asyncio.sleep(max(0.0, delay))
        if handle.stopped:
            return
        try:
            await callback()
        except Exception:
            logger.exception("Delayed callback failed")


class _VirtualTimer:
    def __init__(self, due: datetime, interval: float | None, callback: AsyncCallback) -> None:
        self.due = due
        self.interval = interval
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class VirtualScheduler:
    """Deterministic scheduler whose clock only moves through `advance` and `sleep`."""

    def __init__(self, start: datetime | None = None) -> None:
        self._now = start or datetime(2025, 1, 1, tzinfo=timezone.utc)
        self._queue: list[tuple[datetime, int, _VirtualTimer]] = []
        self._counter = itertools.count()
        self.sleeps: list[float] = []

    def now(self) -> datetime:
        return self._now

    def call_every(self, interval: float, callback: AsyncCallback) -> TimerHandle:
        return self._push(_VirtualTimer(self._now + timedelta(seconds=interval), interval, callback))

    def call_later(self, delay: float, callback: AsyncCallback) -> TimerHandle:
        return self._push(_VirtualTimer(self._now + timedelta(seconds=max(0.0, delay)), None, callback))

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        await self.advance(seconds)

    async def advance(self, seconds: float) -> None:
        target = self._now + timedelta(seconds=seconds)
        while self._queue and self._queue[0][0] <= target:
            due, _, timer = heapq.heappop(self._queue)
            if timer.cancelled:
                continue
            self._now = max(self._now, due)
            if timer.interval is not None:
                timer.due = due + timedelta(seconds=timer.interval)
                heapq.heappush(self._queue, (timer.due, next(self._counter), timer))
            await timer.callback()
        self._now = max(self._now, target)

    @property
    def pending(self) -> int:
        return sum(1 for _, _, timer in self._queue if not timer.cancelled)

    def _push(self, timer: _VirtualTimer) -> _VirtualTimer:
        heapq.heappush(self._queue, (timer.due, next(self._counter), timer))
        return timer
