"""
Periodic background tasks for the bridge service.

Every periodic concern (inbound polling, dedup cleanup, rate-limiter sweep,
delivery status reconciliation) runs as its own ``PeriodicTask``. A run that
raises is logged and the task keeps its schedule; only cancellation stops it.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class PeriodicTask:
    """
    Fixed-rate asyncio loop around an async callable.

    Ticks are spaced ``interval_seconds`` apart measured from the loop start.
    If a run overruns one or more ticks, the missed ticks are skipped rather
    than queued.

    Attributes:
        name: Label used in log lines
        interval_seconds: Spacing between ticks
        func: Coroutine function invoked on every tick
        run_immediately: Whether the first run happens at start instead of after one interval
    """

    def __init__(
        self,
        name: str,
        interval_seconds: float,
        func: Callable[[], Awaitable[object]],
        run_immediately: bool = False,
    ):
        if interval_seconds <= 0:
            raise ValueError(f"Interval for {name} must be positive")
        self.name = name
        self.interval_seconds = interval_seconds
        self.func = func
        self.run_immediately = run_immediately
        self.runs = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the background loop on the running event loop."""
        if self.running:
            logger.info("Periodic task %s already running", self.name)
            return
        self._task = asyncio.create_task(self._loop(), name=f"periodic:{self.name}")
        logger.info("Started periodic task %s (every %.1fs)", self.name, self.interval_seconds)

    async def stop(self) -> None:
        """Cancel the loop, including any run in flight, and wait for it to exit."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Stopped periodic task %s", self.name)

    async def run_once(self) -> None:
        """Invoke the callable once, logging and swallowing any error."""
        self.runs += 1
        try:
            await self.func()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Periodic task %s failed: %s", self.name, e, exc_info=True)

    async def _loop(self) -> None:
        started = time.monotonic()
        if self.run_immediately:
            await self.run_once()

        while True:
            elapsed = time.monotonic() - started
            # Next tick strictly in the future; overrun ticks are dropped
            ticks_done = int(elapsed // self.interval_seconds) + 1
            delay = started + ticks_done * self.interval_seconds - time.monotonic()
            await asyncio.sleep(max(delay, 0))
            await self.run_once()
