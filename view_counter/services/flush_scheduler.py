"""
Flush Scheduler

Triggers FlushCoordinator.flush() on a fixed interval from a background
asyncio task. The increment path and the scheduler share nothing but the
aggregation buffer.

Stopping never interrupts a cycle that already drained the buffer: the
loop only exits between cycles, and the task is cancelled only if a cycle
outlives the stop timeout.
"""

import asyncio
import logging
from typing import Optional

from view_counter.services.flush_coordinator import FlushCoordinator, FlushStatus

logger = logging.getLogger(__name__)


class FlushScheduler:
    """
    Periodic flush trigger.

    Args:
        coordinator: Coordinator to trigger
        interval: Seconds between triggers
        stop_timeout: Seconds stop() waits for a running cycle before cancelling it
    """

    def __init__(self, coordinator: FlushCoordinator, interval: float, stop_timeout: float = 30.0):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.coordinator = coordinator
        self.interval = interval
        self.stop_timeout = stop_timeout
        self._task: Optional[asyncio.Task] = None
        self._stopping: Optional[asyncio.Event] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the background loop (no-op if already running)."""
        if self.running:
            logger.warning("Flush scheduler already running")
            return
        self._stopping = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name="view-count-flush")
        logger.info(f"Flush scheduler started (every {self.interval}s)")

    async def stop(self) -> None:
        """Stop the loop, letting a cycle in progress finish first."""
        if self._task is None:
            return
        self._stopping.set()

        done, _ = await asyncio.wait({self._task}, timeout=self.stop_timeout)
        if not done:
            logger.error(
                f"Flush cycle still running after {self.stop_timeout}s; cancelling it"
            )
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

        self._task = None
        logger.info("Flush scheduler stopped")

    async def _run(self) -> None:
        while True:
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval)
                return
            except asyncio.TimeoutError:
                pass

            result = await self.coordinator.flush()
            if result.status == FlushStatus.FAILED:
                logger.warning(f"Scheduled flush failed: {result.message}")
