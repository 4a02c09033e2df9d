"""Background persistence of the durable user directory.

Request handlers and the poller only mutate memory. This task flushes the
directory to disk every few seconds on a worker thread so the event loop
never waits on file I/O.
"""

import asyncio
import contextlib
import logging
from typing import Any, Awaitable, Callable, Optional

from stores.directory import UserDirectory

logger = logging.getLogger(__name__)


class DirectoryPersister:
    def __init__(
        self,
        directory: UserDirectory,
        interval_sec: float = 1.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if interval_sec <= 0:
            raise ValueError(f"Interval must be > 0: {interval_sec}")
        self.directory = directory
        self.interval_sec = interval_sec
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None

    async def flush(self) -> bool:
        return await asyncio.to_thread(self.directory.flush)

    async def run(self) -> None:
        while True:
            await self._sleep(self.interval_sec)
            try:
                await self.flush()
            except Exception:
                logger.exception("Flushing user directory failed")

    def start(self) -> None:
        if not self.directory.durable:
            return
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self.run(), name="directory-persister")

    async def stop(self) -> None:
        """Cancel the loop and write whatever is still pending."""
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await self.flush()
