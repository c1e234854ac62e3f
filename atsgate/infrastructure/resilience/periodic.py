"""Cancellable periodic task.

Runs a coroutine function on a fixed interval inside the running event loop
until stopped. Owned by the component whose state it maintains (the rate
limiter and cache sweeps), so shutting the component down stops the work.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

class PeriodicTask:
    """Repeats `func` every `interval` seconds on the current event loop."""

    def __init__(
        self,
        func: Callable[[], Awaitable[Any]],
        interval: float,
        name: str = "periodic",
    ):
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self.func = func
        self.interval = interval
        self.name = name
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Schedules the loop. Must be called from within a running event loop."""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name=self.name)
        logger.debug(f"Periodic task '{self.name}' started (every {self.interval}s)")

    async def stop(self) -> None:
        """Cancels the loop and waits for it to finish."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug(f"Periodic task '{self.name}' stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.func()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # A failed run must not kill the schedule
                logger.error(f"Periodic task '{self.name}' failed: {e}", exc_info=True)
