"""
Cancellable scheduled tasks on the running asyncio loop.

Every timer a client component owns comes from one TaskScheduler, so teardown
is a single cancel_all().
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

Job = Callable[[], Awaitable[Any]]


class ScheduledTask:
    __slots__ = ("name", "_task")

    def __init__(self, name: str, task: asyncio.Task):
        self.name = name
        self._task = task

    @property
    def done(self) -> bool:
        return self._task.done()

    def cancel(self) -> None:
        if not self._task.done():
            self._task.cancel()

    def __repr__(self) -> str:
        return f"ScheduledTask(name={self.name!r}, done={self.done})"


class TaskScheduler:
    def __init__(self) -> None:
        self._tasks: set[ScheduledTask] = set()

    @property
    def active(self) -> int:
        return sum(1 for t in self._tasks if not t.done)

    def call_later(self, delay: float, job: Job, name: str = "job") -> ScheduledTask:
        """Run ``job`` once after ``delay`` seconds."""
        async def runner() -> None:
            await asyncio.sleep(delay)
            await job()
        return self._spawn(runner(), name)

    def call_every(self, interval: float, job: Job, name: str = "job") -> ScheduledTask:
        """Run ``job`` every ``interval`` seconds until cancelled."""
        async def runner() -> None:
            while True:
                await asyncio.sleep(interval)
                try:
                    await job()
                except asyncio.CancelledError:
                    raise
                except Exception:
                    logger.exception("Periodic task %s failed", name)
        return self._spawn(runner(), name)

    def spawn(self, coro: Awaitable[Any], name: str = "job") -> ScheduledTask:
        """Run a coroutine now, tracked for cancellation."""
        return self._spawn(coro, name)

    def _spawn(self, coro: Awaitable[Any], name: str) -> ScheduledTask:
        task = asyncio.get_running_loop().create_task(coro)  # type: ignore[arg-type]
        scheduled = ScheduledTask(name, task)
        self._tasks.add(scheduled)
        task.add_done_callback(lambda t, s=scheduled: self._finished(s, t))
        return scheduled

    def _finished(self, scheduled: ScheduledTask, task: asyncio.Task) -> None:
        self._tasks.discard(scheduled)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Scheduled task %s failed: %s", scheduled.name, exc)

    def cancel_all(self) -> None:
        for scheduled in list(self._tasks):
            scheduled.cancel()
        self._tasks.clear()

