"""Time sources and scheduled callbacks.

The controllers never call ``time.time()`` or ``asyncio.sleep()``
themselves.  They ask a Clock for "now" and a Scheduler for "run this
later".  Production wires SystemClock + AsyncioScheduler; tests wire
ManualClock + ManualScheduler and move time forward explicitly:

    clock.advance(600)
    await scheduler.run_due()   # quiz timers due by now fire here

Same Protocol pattern as the repos: one interface, one real
implementation, one in-memory implementation for tests.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)

TimerCallback = Callable[[], Awaitable[None]]


@runtime_checkable
class Clock(Protocol):
    def now(self) -> float:
        """Current time as epoch seconds."""
        ...


class SystemClock:
    def now(self) -> float:
        return time.time()


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self._now = start

    def now(self) -> float:
        return self._now

    def set(self, t: float) -> None:
        self._now = t

    def advance(self, seconds: float) -> None:
        if seconds < 0:
            raise ValueError("cannot move a clock backwards")
        self._now += seconds


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


@runtime_checkable
class Scheduler(Protocol):
    def call_later(self, delay: float, callback: TimerCallback) -> TimerHandle: ...


class AsyncioScheduler:
    """Runs callbacks on the current event loop.

    The callback is started as a task when the delay elapses; an exception
    inside it is logged rather than left as an unretrieved task error.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[None]] = set()

    def call_later(self, delay: float, callback: TimerCallback) -> asyncio.TimerHandle:
        loop = asyncio.get_running_loop()
        return loop.call_later(max(delay, 0.0), self._spawn, callback)

    def _spawn(self, callback: TimerCallback) -> None:
        task = asyncio.ensure_future(callback())
        self._tasks.add(task)
        task.add_done_callback(self._finished)

    def _finished(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Scheduled callback failed", exc_info=exc)


@dataclass(order=True)
class _ManualTimer:
    due: float
    seq: int
    callback: TimerCallback = field(compare=False)
    cancelled: bool = field(default=False, compare=False)

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Scheduler driven by a ManualClock; nothing fires until run_due()."""

    def __init__(self, clock: ManualClock) -> None:
        self._clock = clock
        self._heap: list[_ManualTimer] = []
        self._seq = itertools.count()

    def call_later(self, delay: float, callback: TimerCallback) -> _ManualTimer:
        timer = _ManualTimer(
            due=self._clock.now() + max(delay, 0.0),
            seq=next(self._seq),
            callback=callback,
        )
        heapq.heappush(self._heap, timer)
        return timer

    @property
    def pending(self) -> int:
        return sum(1 for t in self._heap if not t.cancelled)

    async def run_due(self) -> int:
        """Await every callback due by now, earliest first.  Returns the count."""
        fired = 0
        while self._heap and self._heap[0].due <= self._clock.now():
            timer = heapq.heappop(self._heap)
            if timer.cancelled:
                continue
            await timer.callback()
            fired += 1
        return fired
