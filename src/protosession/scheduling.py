"""
Timer and task scheduling for the session engine.

The autosave coordinator and the attribute synchronizer never touch the event
loop directly. They go through a Scheduler so that the same code runs against
asyncio in production and against a virtual clock in tests.

Two implementations:
- AsyncioScheduler: loop.call_later() for timers, loop.create_task() for saves
- VirtualScheduler: time only moves when advance() is called

All delays are in milliseconds. now() returns seconds, matching time.time().
"""

import asyncio
import heapq
import itertools
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Coroutine, List, Optional, Set, Tuple

logger = logging.getLogger(__name__)


class TimerHandle(ABC):
    """Cancellable reference to a pending delayed callback."""

    @abstractmethod
    def cancel(self) -> None:
        """Cancel the callback. Cancelling twice or after firing is a no-op."""

    @property
    @abstractmethod
    def cancelled(self) -> bool:
        """True once cancel() has been called."""


class Scheduler(ABC):
    """Minimal scheduling surface used by the coordinator and synchronizer."""

    @abstractmethod
    def now(self) -> float:
        """Current time in seconds."""

    @abstractmethod
    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> TimerHandle:
        """Run callback once after delay_ms milliseconds."""

    @abstractmethod
    def spawn(self, coro: Coroutine[Any, Any, Any]) -> Any:
        """Run a coroutine concurrently with the caller."""


class _AsyncioTimerHandle(TimerHandle):

    def __init__(self, handle: asyncio.TimerHandle):
        self._handle = handle

    def cancel(self) -> None:
        self._handle.cancel()

    @property
    def cancelled(self) -> bool:
        return self._handle.cancelled()


class AsyncioScheduler(Scheduler):
    """Scheduler backed by an asyncio event loop.

    The loop is resolved lazily so the scheduler can be built before the loop
    starts. Spawned tasks are kept referenced until they finish; otherwise the
    loop only holds a weak reference and a pending save could be collected.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop
        self._tasks: Set[asyncio.Task] = set()

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def now(self) -> float:
        return time.time()

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> TimerHandle:
        handle = self._get_loop().call_later(max(delay_ms, 0) / 1000.0, callback)
        return _AsyncioTimerHandle(handle)

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = self._get_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task


class _VirtualTimerHandle(TimerHandle):

    def __init__(self, due_ms: float):
        self.due_ms = due_ms
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class VirtualScheduler(Scheduler):
    """Deterministic scheduler with a manually advanced clock.

    Timers fire in due order; timers due at the same instant fire in the order
    they were armed. Coroutines passed to spawn() become tasks on the running
    asyncio loop, so tests that await saves drive the scheduler from inside
    asyncio.run() and use advance_async(), which lets spawned tasks run after
    each batch of timers.

    Example:
        scheduler = VirtualScheduler()
        scheduler.call_later(50, on_tick)
        scheduler.advance(50)   # on_tick runs here
    """

    def __init__(self, start_ms: float = 0.0):
        self._now_ms = start_ms
        self._queue: List[Tuple[float, int, _VirtualTimerHandle, Callable[[], None]]] = []
        self._sequence = itertools.count()
        self._tasks: List[asyncio.Task] = []

    @property
    def now_ms(self) -> float:
        return self._now_ms

    def now(self) -> float:
        return self._now_ms / 1000.0

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> TimerHandle:
        handle = _VirtualTimerHandle(self._now_ms + max(delay_ms, 0))
        heapq.heappush(self._queue, (handle.due_ms, next(self._sequence), handle, callback))
        return handle

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.append(task)
        return task

    def pending_timers(self) -> int:
        """Number of armed, non-cancelled timers."""
        return sum(1 for _, _, handle, _ in self._queue if not handle.cancelled)

    def next_due_ms(self) -> Optional[float]:
        """Due time of the earliest live timer, or None."""
        live = [due for due, _, handle, _ in self._queue if not handle.cancelled]
        return min(live) if live else None

    def _pop_due(self, until_ms: float) -> Optional[Tuple[_VirtualTimerHandle, Callable[[], None]]]:
        while self._queue and self._queue[0][0] <= until_ms:
            due_ms, _, handle, callback = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self._now_ms = max(self._now_ms, due_ms)
            return handle, callback
        return None

    def advance(self, delta_ms: float) -> int:
        """Move the clock forward, firing due timers synchronously.

        Returns:
            Number of callbacks fired
        """
        target = self._now_ms + delta_ms
        fired = 0
        while True:
            entry = self._pop_due(target)
            if entry is None:
                break
            _, callback = entry
            callback()
            fired += 1
        self._now_ms = target
        return fired

    async def settle(self, rounds: int = 10) -> None:
        """Yield to the loop so spawned tasks reach their next suspension point."""
        for _ in range(rounds):
            await asyncio.sleep(0)
        self._tasks = [task for task in self._tasks if not task.done()]

    async def advance_async(self, delta_ms: float) -> int:
        """Like advance(), but lets spawned tasks run after every timer.

        A save started by one timer therefore reaches its await before the
        next timer fires, as it would on a real loop.
        """
        target = self._now_ms + delta_ms
        fired = 0
        await self.settle()
        while True:
            entry = self._pop_due(target)
            if entry is None:
                break
            _, callback = entry
            callback()
            fired += 1
            await self.settle()
        self._now_ms = target
        await self.settle()
        return fired


_default_scheduler: Optional[Scheduler] = None


def get_default_scheduler() -> Scheduler:
    """Process-wide AsyncioScheduler, created on first use."""
    global _default_scheduler
    if _default_scheduler is None:
        _default_scheduler = AsyncioScheduler()
        logger.debug("Created default AsyncioScheduler")
    return _default_scheduler


def set_default_scheduler(scheduler: Optional[Scheduler]) -> None:
    """Replace the process-wide scheduler (None restores lazy creation)."""
    global _default_scheduler
    _default_scheduler = scheduler
