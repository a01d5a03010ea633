"""Time sources and the periodic task used for background eviction."""

import asyncio
import contextlib
import time
from collections.abc import Awaitable, Callable
from typing import Protocol

import structlog

logger = structlog.get_logger()

Sleeper = Callable[[float], Awaitable[None]]


class Clock(Protocol):
    """Anything that can report the current wall-clock time in milliseconds."""

    def now_ms(self) -> int: ...


class SystemClock:
    """Wall-clock time from the operating system."""

    def now_ms(self) -> int:
        return int(time.time() * 1000)


system_clock = SystemClock()


class PeriodicTask:
    """
    Run a synchronous callback every ``interval`` seconds on the event loop.

    The task is owned by whoever constructs it: ``start()`` schedules it on the
    running loop and ``stop()`` cancels it. ``sleep`` is injectable so tests
    can step the loop without waiting on real time.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        callback: Callable[[], int],
        sleep: Sleeper | None = None,
    ) -> None:
        self._name = name
        self._interval = interval
        self._callback = callback
        self._sleep = sleep or asyncio.sleep
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Schedule the task on the running event loop (no-op if already running)."""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name=self._name)
        logger.debug("periodic_task_started", task=self._name, interval=self._interval)

    async def stop(self) -> None:
        """Cancel the task and wait for it to finish."""
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.debug("periodic_task_stopped", task=self._name)

    async def _run(self) -> None:
        while True:
            await self._sleep(self._interval)
            try:
                removed = self._callback()
            except Exception as e:
                logger.error("periodic_task_failed", task=self._name, error=str(e))
                continue
            if removed:
                logger.debug("periodic_task_evicted", task=self._name, removed=removed)
