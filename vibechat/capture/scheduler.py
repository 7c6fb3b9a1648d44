"""CaptureScheduler: APScheduler jobs for periodic capture and eviction."""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from vibechat.errors import CaptureError

if TYPE_CHECKING:
    from vibechat.capture.models import CaptureRecord
    from vibechat.capture.store import CaptureStore

logger = logging.getLogger(__name__)

CAPTURE_JOB_ID = "capture"
SWEEP_JOB_ID = "capture_sweep"


class CaptureScheduler:
    """Runs the periodic screen capture and the age-based sweep.

    Args:
        store: CaptureStore that owns the capture directory.
        interval_seconds: Seconds between automatic captures.
        max_age: Captures older than this are evicted by the sweep.
        sweep_interval: Time between sweeps.
    """

    def __init__(
        self,
        store: CaptureStore,
        interval_seconds: int,
        max_age: timedelta,
        sweep_interval: timedelta,
    ) -> None:
        self._store = store
        self._interval_seconds = interval_seconds
        self._max_age = max_age
        self._sweep_interval = sweep_interval
        self._scheduler = AsyncIOScheduler()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def interval_seconds(self) -> int:
        return self._interval_seconds

    # -- Lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        """Register both jobs on a fresh scheduler and start it.

        AsyncIOScheduler.shutdown() completes on a later loop iteration, so
        the previous instance is never restarted.
        """
        if self._running:
            return
        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self.capture_once,
            trigger=IntervalTrigger(seconds=self._interval_seconds),
            id=CAPTURE_JOB_ID,
            name="Periodic screen capture",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self._scheduler.add_job(
            self.sweep_once,
            trigger=IntervalTrigger(seconds=self._sweep_interval.total_seconds()),
            id=SWEEP_JOB_ID,
            name="Capture eviction sweep",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self._scheduler.start()
        self._running = True
        logger.info(
            "Capture scheduler started (every %ds, keep %s)",
            self._interval_seconds,
            self._max_age,
        )

    async def stop(self) -> None:
        """Shut down the scheduler."""
        if self._running:
            self._scheduler.shutdown(wait=False)
            self._running = False
            logger.info("Capture scheduler stopped")

    def reschedule(self, interval_seconds: int) -> None:
        """Change the capture interval, live if the scheduler is running."""
        self._interval_seconds = interval_seconds
        if self._running:
            self._scheduler.reschedule_job(
                CAPTURE_JOB_ID, trigger=IntervalTrigger(seconds=interval_seconds)
            )
        logger.info("Capture interval → %ds", interval_seconds)

    # -- Jobs ------------------------------------------------------------------

    async def capture_once(self) -> CaptureRecord | None:
        """Take one capture. Failures are logged, never raised."""
        try:
            return await asyncio.to_thread(self._store.capture)
        except CaptureError as exc:
            logger.warning("Scheduled capture failed: %s", exc)
            return None

    async def sweep_once(self) -> int:
        """Evict captures older than the configured max age."""
        try:
            return await asyncio.to_thread(self._store.evict_older_than, self._max_age)
        except OSError:
            logger.warning("Capture sweep could not scan %s", self._store.root, exc_info=True)
            return 0
