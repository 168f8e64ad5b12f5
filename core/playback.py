from __future__ import annotations

import asyncio
import heapq
import itertools
import time
from typing import Callable, List, Optional, Protocol, Tuple


TICK_INTERVAL_MS = 800


class TaskHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> TaskHandle: ...


class AsyncioScheduler:
    """Schedules callbacks on an asyncio event loop (the loop's TimerHandle is the task handle)."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    def call_later(self, delay: float, callback: Callable[[], None]) -> TaskHandle:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(delay, callback)


class _PendingCall:
    def __init__(self, callback: Callable[[], None]):
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class PollingScheduler:
    """Scheduler driven by an outer loop that calls run_pending().

    Used where the host owns the loop (Streamlit reruns) and in tests with a
    fake clock.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._queue: List[Tuple[float, int, _PendingCall]] = []
        self._counter = itertools.count()

    def call_later(self, delay: float, callback: Callable[[], None]) -> TaskHandle:
        call = _PendingCall(callback)
        heapq.heappush(self._queue, (self._clock() + delay, next(self._counter), call))
        return call

    def _drop_cancelled(self) -> None:
        while self._queue and self._queue[0][2].cancelled:
            heapq.heappop(self._queue)

    def seconds_until_next(self) -> Optional[float]:
        self._drop_cancelled()
        if not self._queue:
            return None
        return max(0.0, self._queue[0][0] - self._clock())

    def run_pending(self) -> int:
        now = self._clock()
        ran = 0
        while True:
            self._drop_cancelled()
            if not self._queue or self._queue[0][0] > now:
                return ran
            _, _, call = heapq.heappop(self._queue)
            call.callback()
            ran += 1


class PlaybackTimer:
    """Repeating tick with a single live handle; start() always cancels the previous one."""

    def __init__(self, scheduler: Scheduler, interval: float = TICK_INTERVAL_MS / 1000):
        self._scheduler = scheduler
        self.interval = interval
        self._handle: Optional[TaskHandle] = None
        self._callback: Optional[Callable[[], None]] = None
        self._generation = 0

    @property
    def active(self) -> bool:
        return self._handle is not None

    def start(self, callback: Callable[[], None]) -> None:
        self.cancel()
        self._callback = callback
        self._schedule()

    def cancel(self) -> None:
        self._generation += 1
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._callback = None

    def _schedule(self) -> None:
        generation = self._generation
        self._handle = self._scheduler.call_later(self.interval, lambda: self._fire(generation))

    def _fire(self, generation: int) -> None:
        if generation != self._generation or self._callback is None:
            return
        self._handle = None
        self._callback()
        # The callback may have cancelled or restarted the timer.
        if generation == self._generation and self._callback is not None:
            self._schedule()
