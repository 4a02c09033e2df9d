"""Periodic eviction of expired statuses and idle users.

Runs as one asyncio task. Each registered task is a zero-argument callable
returning how many entries it removed; a failing task is logged and the
loop carries on.
"""

import asyncio
import contextlib
import logging
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class Sweeper:
    def __init__(
        self,
        interval_sec: float,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if interval_sec <= 0:
            raise ValueError(f"Interval must be > 0: {interval_sec}")
        self.interval_sec = interval_sec
        self.tasks: dict[str, Callable[[], int]] = {}
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None

    def register_task(self, name: str, func: Callable[[], int]) -> None:
        if not callable(func):
            raise ValueError(f"Task function must be callable: {func}")
        self.tasks[name] = func

    def run_once(self) -> dict[str, int]:
        """Run every task once and return removed counts by task name."""
        removed: dict[str, int] = {}
        for name, func in self.tasks.items():
            try:
                removed[name] = func()
            except Exception as e:
                logger.error("Sweep task '%s' failed: %s", name, e)
                continue
            if removed[name]:
                logger.debug("Sweep '%s': removed %d expired entries", name, removed[name])
        return removed

    async def run(self) -> None:
        while True:
            await self._sleep(self.interval_sec)
            self.run_once()

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self.run(), name="sweeper")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
