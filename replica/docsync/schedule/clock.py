"""
Delayed and low-priority task scheduling port.

The SyncScheduler never touches timers directly; it goes through a
TaskScheduler so the same state machine runs on a real event loop and on
a deterministic, manually advanced fake in tests.

Implementations:
    AsyncioTaskScheduler - loop.call_later on the running loop
    ManualTaskScheduler  - virtual clock advanced explicitly (testing)

Invariants:
    - A cancelled handle never runs its callback
    - Coroutine callbacks are run as tasks that the handle can cancel
"""

from __future__ import annotations

import asyncio
import heapq
import inspect
import itertools
import logging
import time
from collections import deque
from typing import Any, Awaitable, Callable, Deque, List, Optional, Protocol, Set, Tuple

logger = logging.getLogger(__name__)

Callback = Callable[[], Any]


class Handle(Protocol):
    """Cancellable scheduled call."""

    def cancel(self) -> None:
        ...


class TaskScheduler(Protocol):
    """Port for "run after a delay" and "run at low priority"."""

    def call_later(self, delay_seconds: float, callback: Callback) -> Handle:
        ...

    def call_idle(self, callback: Callback, timeout_seconds: float) -> Handle:
        ...

    def now_ms(self) -> int:
        ...


class _AsyncioHandle:
    def __init__(self) -> None:
        self.timer: Optional[asyncio.Handle] = None
        self.task: Optional[asyncio.Task] = None
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True
        if self.timer is not None:
            self.timer.cancel()
        if self.task is not None and not self.task.done():
            self.task.cancel()


class AsyncioTaskScheduler:
    """TaskScheduler on the running asyncio loop.

    asyncio has no idle signal, so call_idle() defers the callback by a
    short quiet period (idle_delay_seconds) and lets work that is already
    queued run first. The delay is capped at timeout_seconds, the latest
    point the callback may start.
    """

    def __init__(
        self,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        idle_delay_seconds: float = 0.05,
    ) -> None:
        self._loop = loop
        self.idle_delay_seconds = idle_delay_seconds
        self._tasks: Set[asyncio.Task] = set()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop or asyncio.get_running_loop()

    def call_later(self, delay_seconds: float, callback: Callback) -> Handle:
        handle = _AsyncioHandle()
        handle.timer = self.loop.call_later(delay_seconds, self._invoke, handle, callback)
        return handle

    def call_idle(self, callback: Callback, timeout_seconds: float = 2.0) -> Handle:
        handle = _AsyncioHandle()
        delay = max(0.0, min(self.idle_delay_seconds, timeout_seconds))
        handle.timer = self.loop.call_later(delay, self._invoke, handle, callback)
        return handle

    def now_ms(self) -> int:
        return int(time.time() * 1000)

    def _invoke(self, handle: _AsyncioHandle, callback: Callback) -> None:
        if handle.cancelled:
            return
        try:
            result = callback()
        except Exception:
            logger.exception("Scheduled callback failed")
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            handle.task = task
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for every coroutine callback started so far."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class _ManualHandle:
    def __init__(self, callback: Callback, honor_cancel: bool) -> None:
        self.callback = callback
        self.cancelled = False
        self._honor_cancel = honor_cancel

    def cancel(self) -> None:
        if self._honor_cancel:
            self.cancelled = True


class ManualTaskScheduler:
    """Deterministic TaskScheduler driven by a virtual clock (testing).

    Timers fire only from advance(); idle callbacks run only from
    run_idle(); coroutine callbacks are collected and awaited by flush().

    Attributes:
        honor_cancel: When False, cancel() is ignored, simulating hosts that
            cannot cancel a queued callback

    Example:
        >>> clock = ManualTaskScheduler()
        >>> clock.call_later(2.0, lambda: print("fired"))
        >>> clock.advance(2.0)
        fired
    """

    def __init__(self, start_ms: int = 1_700_000_000_000, honor_cancel: bool = True) -> None:
        self._now_ms = float(start_ms)
        self.honor_cancel = honor_cancel
        self._timers: List[Tuple[float, int, _ManualHandle]] = []
        self._idle: Deque[_ManualHandle] = deque()
        self._awaitables: Deque[Awaitable[Any]] = deque()
        self._seq = itertools.count()

    def call_later(self, delay_seconds: float, callback: Callback) -> Handle:
        handle = _ManualHandle(callback, self.honor_cancel)
        due = self._now_ms + delay_seconds * 1000
        heapq.heappush(self._timers, (due, next(self._seq), handle))
        return handle

    def call_idle(self, callback: Callback, timeout_seconds: float = 2.0) -> Handle:
        handle = _ManualHandle(callback, self.honor_cancel)
        self._idle.append(handle)
        return handle

    def now_ms(self) -> int:
        return int(self._now_ms)

    def advance(self, seconds: float) -> None:
        """Move the clock forward, firing due timers in order."""
        target = self._now_ms + seconds * 1000
        while self._timers and self._timers[0][0] <= target:
            due, _, handle = heapq.heappop(self._timers)
            self._now_ms = due
            self._run(handle)
        self._now_ms = target

    def run_idle(self) -> int:
        """Run every queued idle callback; returns how many ran."""
        ran = 0
        while self._idle:
            handle = self._idle.popleft()
            if self._run(handle):
                ran += 1
        return ran

    async def flush(self) -> None:
        """Await every coroutine produced by callbacks so far."""
        while self._awaitables:
            await self._awaitables.popleft()

    async def settle(self, seconds: float = 0.0) -> None:
        """advance(), then run idle callbacks and flush until quiet."""
        self.advance(seconds)
        while self._idle or self._awaitables:
            self.run_idle()
            await self.flush()

    @property
    def pending_timers(self) -> int:
        return sum(1 for _, _, h in self._timers if not h.cancelled)

    @property
    def pending_idle(self) -> int:
        return sum(1 for h in self._idle if not h.cancelled)

    def _run(self, handle: _ManualHandle) -> bool:
        if handle.cancelled:
            return False
        result = handle.callback()
        if inspect.isawaitable(result):
            self._awaitables.append(result)
        return True
