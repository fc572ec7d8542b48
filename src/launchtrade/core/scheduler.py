"""Clocks and cancelable periodic tasks.

Every recurring job in the engine (simulated price ticks, checkpoints,
per-position trailing stops) is a :class:`PeriodicTask` driven by a
:class:`Clock`. Production code uses :class:`SystemClock`; tests use
:class:`ManualClock` and either call :meth:`PeriodicTask.tick` directly or
advance the clock.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable

from launchtrade.logging import get_logger

logger = get_logger(__name__)


class Clock(ABC):
    """Time source and sleep primitive."""

    @abstractmethod
    def time(self) -> float:
        """Current time in seconds since the epoch."""

    @abstractmethod
    async def sleep(self, seconds: float) -> None:
        """Suspend the calling task for ``seconds``."""


class SystemClock(Clock):
    """Wall clock backed by ``time.time`` and ``asyncio.sleep``."""

    def time(self) -> float:
        return time.time()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))


class ManualClock(Clock):
    """Clock that only moves when :meth:`advance` is called.

    Sleepers with a positive duration stay suspended until the clock is
    advanced past their deadline.
    """

    def __init__(self, start: float = 0.0) -> None:
        self._now = start
        self._sleepers: list[tuple[float, asyncio.Future[None]]] = []

    def time(self) -> float:
        return self._now

    async def sleep(self, seconds: float) -> None:
        if seconds <= 0:
            await asyncio.sleep(0)
            return
        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._sleepers.append((self._now + seconds, future))
        try:
            await future
        finally:
            self._sleepers = [(d, f) for d, f in self._sleepers if f is not future]

    async def advance(self, seconds: float) -> None:
        """Move time forward and let every due sleeper run."""
        # Let freshly started tasks reach their first sleep
        for _ in range(3):
            await asyncio.sleep(0)
        self._now += seconds
        for deadline, future in sorted(self._sleepers, key=lambda item: item[0]):
            if deadline <= self._now and not future.done():
                future.set_result(None)
        # Several loop passes so woken tasks can reach their next await
        for _ in range(10):
            await asyncio.sleep(0)


class PeriodicTask:
    """Runs an async callback every ``interval`` seconds until stopped.

    A failing tick is logged and the loop keeps going; only cancellation or
    :meth:`stop` ends it. The callback may call :meth:`stop` on its own task.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        callback: Callable[[], Awaitable[None]],
        clock: Clock | None = None,
    ) -> None:
        if interval <= 0:
            raise ValueError(f"Invalid interval: {interval}, must be > 0")
        self.name = name
        self.interval = interval
        self._callback = callback
        self._clock = clock or SystemClock()
        self._running = False
        self._task: asyncio.Task[None] | None = None
        self.ticks = 0
        self.failures = 0

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Schedule the loop on the running event loop."""
        if self._running:
            logger.warning(f"PeriodicTask {self.name} already running")
            return
        self._running = True
        self._task = asyncio.create_task(self._run(), name=self.name)
        logger.debug(f"PeriodicTask {self.name} started (interval={self.interval}s)")

    async def stop(self) -> None:
        """Stop the loop; safe to call from inside the callback."""
        if not self._running and self._task is None:
            return
        self._running = False
        task, self._task = self._task, None
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug(f"PeriodicTask {self.name} stopped after {self.ticks} ticks")

    async def tick(self) -> bool:
        """Run the callback once. Returns False if it raised."""
        self.ticks += 1
        try:
            await self._callback()
            return True
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.failures += 1
            logger.error(f"PeriodicTask {self.name} tick failed: {e}", exc_info=True)
            return False

    async def _run(self) -> None:
        while self._running:
            await self._clock.sleep(self.interval)
            if not self._running:
                break
            await self.tick()
