"""
scheduler.py - Injectable clock and timer service.

Every timer-driven loop in the arbiter (engine ticks, policy trigger
checks, combat ticks, retaliation deadlines, movement timeouts) goes
through a Scheduler instead of touching the event loop or wall clock
directly:
- AsyncioScheduler: real time on the running asyncio loop
- VirtualScheduler: virtual time advanced explicitly, for tests and
  deterministic simulation
"""

import asyncio
import heapq
import inspect
import itertools
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, List, Optional

logger = logging.getLogger(__name__)


class Scheduler(ABC):
    """Clock, sleeps, one-shot timers and periodic jobs."""

    @abstractmethod
    def now(self) -> float:
        """Current time in seconds."""

    @abstractmethod
    async def sleep(self, seconds: float) -> None:
        """Suspend the calling coroutine for the given time."""

    @abstractmethod
    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> Any:
        """
        Run callback(*args) after delay seconds.

        Returns:
            A handle with a cancel() method
        """

    def spawn(self, coro: Awaitable[Any], name: Optional[str] = None) -> asyncio.Task:
        """Run a coroutine as a task on the current loop."""
        return asyncio.get_running_loop().create_task(coro, name=name)

    def every(
        self,
        interval: float,
        callback: Callable[[], Any],
        name: Optional[str] = None
    ) -> asyncio.Task:
        """
        Call callback every interval seconds until the returned task is cancelled.

        The callback may be a plain function or return an awaitable; the
        next interval starts once it has finished, so runs never overlap.
        Exceptions are logged and the job keeps running.

        Args:
            interval: Seconds between runs
            callback: Job body
            name: Task name, used in log messages

        Returns:
            The asyncio task driving the job
        """
        label = name or getattr(callback, '__name__', 'job')

        async def _run() -> None:
            while True:
                await self.sleep(interval)
                try:
                    result = callback()
                    if inspect.isawaitable(result):
                        await result
                except Exception as e:
                    logger.error(f"Periodic job {label} failed: {e}", exc_info=True)

        return self.spawn(_run(), name=name)


class AsyncioScheduler(Scheduler):
    """Scheduler backed by the running asyncio loop and the wall clock."""

    def now(self) -> float:
        return time.time()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> asyncio.TimerHandle:
        return asyncio.get_running_loop().call_later(delay, callback, *args)


class _VirtualTimer:
    """A pending one-shot timer in virtual time."""

    __slots__ = ('deadline', 'seq', 'callback', 'args', '_cancelled')

    def __init__(self, deadline: float, seq: int, callback: Callable[..., Any], args: tuple):
        self.deadline = deadline
        self.seq = seq
        self.callback = callback
        self.args = args
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    def cancelled(self) -> bool:
        return self._cancelled

    def __lt__(self, other: '_VirtualTimer') -> bool:
        return (self.deadline, self.seq) < (other.deadline, other.seq)


def _wake(future: asyncio.Future) -> None:
    if not future.done():
        future.set_result(None)


class VirtualScheduler(Scheduler):
    """
    Scheduler whose clock only moves when advance() is awaited.

    Timers fire in deadline order (ties in creation order). After each
    timer the event loop is drained so woken coroutines run up to their
    next suspension point before the clock moves again.

    Usage:
        scheduler = VirtualScheduler()
        engine = StateMachineEngine(scheduler)
        engine.start()
        await scheduler.advance(2.0)   # one engine tick
    """

    def __init__(self, start: float = 0.0, drain_rounds: int = 50):
        """
        Initialize the virtual clock.

        Args:
            start: Initial clock value in seconds
            drain_rounds: Loop iterations yielded after each timer fires
        """
        self._now = start
        self._timers: List[_VirtualTimer] = []
        self._seq = itertools.count()
        self._drain_rounds = drain_rounds

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> _VirtualTimer:
        timer = _VirtualTimer(self._now + max(0.0, delay), next(self._seq), callback, args)
        heapq.heappush(self._timers, timer)
        return timer

    async def sleep(self, seconds: float) -> None:
        if seconds <= 0:
            await asyncio.sleep(0)
            return
        future = asyncio.get_running_loop().create_future()
        timer = self.call_later(seconds, _wake, future)
        try:
            await future
        finally:
            timer.cancel()

    async def advance(self, seconds: float) -> None:
        """Move the clock forward, firing every timer that comes due."""
        target = self._now + max(0.0, seconds)
        await self.drain()
        while self._timers and self._timers[0].deadline <= target:
            timer = heapq.heappop(self._timers)
            if timer.cancelled():
                continue
            self._now = max(self._now, timer.deadline)
            try:
                timer.callback(*timer.args)
            except Exception as e:
                logger.error(f"Timer callback failed: {e}", exc_info=True)
            await self.drain()
        self._now = target
        await self.drain()

    async def run_until(
        self,
        condition: Callable[[], bool],
        timeout: float,
        step: float = 0.05
    ) -> bool:
        """
        Advance in small steps until condition() holds or timeout elapses.

        Returns:
            True if the condition was met
        """
        deadline = self._now + timeout
        while not condition():
            if self._now >= deadline:
                return False
            await self.advance(min(step, deadline - self._now))
        return True

    async def drain(self) -> None:
        """Let ready coroutines run without moving the clock."""
        for _ in range(self._drain_rounds):
            await asyncio.sleep(0)

    def pending_timers(self) -> int:
        return sum(1 for t in self._timers if not t.cancelled())
