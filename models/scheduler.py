"""Periodic reconciliation of the read-state retry queue.

ReconciliationScheduler runs a background asyncio task that calls
ReadStateStore.sync_all() at a fixed interval for the lifetime of the
application. It holds no reconciliation logic of its own.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from models.read_state import DrainReport, ReadStateStore

logger = logging.getLogger(__name__)


class ReconciliationScheduler:
    """Background loop draining the retry queue on a timer.

    Responsibilities:
    - Task management (create, start, stop)
    - Timing control (wait one interval between ticks)
    - Stop signal handling
    - Error isolation (a failing tick is logged, the loop keeps running)

    Attributes:
        store: The store whose retry queue is drained.
        interval: Time between ticks.
        run_immediately: Whether the first tick runs right after start().
        shutdown_timeout: Seconds stop() waits for a running tick before
            cancelling it.
        tick_count: Number of ticks run so far.
        last_tick_at: When the last tick started, or None.
    """

    def __init__(
        self,
        store: "ReadStateStore",
        interval: timedelta = timedelta(minutes=30),
        run_immediately: bool = False,
        shutdown_timeout: float = 5.0,
    ) -> None:
        if interval <= timedelta(0):
            raise ValueError(f"interval must be positive, got {interval}")
        self.store = store
        self.interval = interval
        self.run_immediately = run_immediately
        self.shutdown_timeout = shutdown_timeout

        self.tick_count = 0
        self.last_tick_at: Optional[datetime] = None

        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the background loop on the running event loop.

        Raises:
            RuntimeError: If the scheduler is already running or no event
                loop is running.
        """
        if self.is_running:
            raise RuntimeError("Reconciliation scheduler is already running")

        self._stop_event = asyncio.Event()
        self._task = asyncio.get_running_loop().create_task(
            self._run_loop(), name="read-state-reconciliation"
        )
        logger.info(f"ReconciliationScheduler started (interval {self.interval})")

    async def stop(self) -> None:
        """Stop the loop, letting a tick in progress finish."""
        if self._task is None:
            return

        self._stop_event.set()
        try:
            await asyncio.wait_for(self._task, timeout=self.shutdown_timeout)
        except asyncio.TimeoutError:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
        self._task = None

        logger.info("ReconciliationScheduler stopped")

    async def tick(self) -> "DrainReport":
        """Run one reconciliation pass."""
        self.tick_count += 1
        self.last_tick_at = datetime.now(timezone.utc)
        return await self.store.sync_all()

    async def _run_loop(self) -> None:
        if self.run_immediately:
            await self._safe_tick()

        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(), timeout=self.interval.total_seconds()
                )
            except asyncio.TimeoutError:
                await self._safe_tick()

    async def _safe_tick(self) -> None:
        try:
            await self.tick()
        except Exception as e:
            logger.error(f"Error during reconciliation tick: {e}", exc_info=True)
