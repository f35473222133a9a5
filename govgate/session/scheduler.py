"""
Sweep Schedulers

The SessionManager never owns a timer directly. It hands its sweep callback
to a Scheduler:

- AsyncioScheduler: background task calling the callback every interval
- ManualScheduler: runs the callback only when tick() is awaited (tests)
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


SweepCallback = Callable[[], Awaitable[object]]


class Scheduler(ABC):
    """Runs one periodic callback."""

    @abstractmethod
    def start(self, interval_seconds: float, callback: SweepCallback) -> None:
        ...

    @abstractmethod
    async def stop(self) -> None:
        ...

    @property
    @abstractmethod
    def running(self) -> bool:
        ...


class AsyncioScheduler(Scheduler):
    """Background asyncio task with a sleep loop."""

    def __init__(self):
        self._task: asyncio.Task | None = None

    def start(self, interval_seconds: float, callback: SweepCallback) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._loop(interval_seconds, callback))

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    @property
    def running(self) -> bool:
        return self._task is not None

    async def _loop(self, interval_seconds: float, callback: SweepCallback) -> None:
        while True:
            try:
                await asyncio.sleep(interval_seconds)
                await callback()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in scheduled sweep: {e}")


class ManualScheduler(Scheduler):
    """Deterministic scheduler driven by explicit tick() calls."""

    def __init__(self):
        self._callback: SweepCallback | None = None
        self.interval_seconds: float | None = None
        self.ticks = 0

    def start(self, interval_seconds: float, callback: SweepCallback) -> None:
        self.interval_seconds = interval_seconds
        self._callback = callback

    async def stop(self) -> None:
        self._callback = None

    @property
    def running(self) -> bool:
        return self._callback is not None

    async def tick(self) -> object:
        """Run the callback once, if started."""
        if self._callback is None:
            return None
        self.ticks += 1
        return await self._callback()
