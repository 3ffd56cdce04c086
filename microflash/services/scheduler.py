"""
Reminder Scheduler

Runs the reminder orchestrator on a fixed interval using APScheduler.

Execution Context:
    The scheduler runs IN-PROCESS with FastAPI, sharing its event loop.
    It is started/stopped via FastAPI's lifespan context manager in
    microflash/main.py.

    Flow:
        uvicorn starts FastAPI -> lifespan() calls reminder_scheduler.start()
        -> APScheduler fires tick() every NOTIFICATION_TICK_MINUTES

Single-flight:
    A tick never starts while the previous one is still running, whether
    it was fired by APScheduler or by run_once(). stop() waits for the
    in-flight tick so notification marking is never left half done.

Limitations:
    - Single instance only: each replica runs its own scheduler. There is
      no cross-instance coordination.

Usage:
    scheduler = ReminderScheduler(NotificationOrchestrator(transport))
    scheduler.start()
    ...
    await scheduler.stop()
"""

import asyncio
import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from microflash.config import settings
from microflash.models.notifications import TickResult
from microflash.services.notifications.orchestrator import NotificationOrchestrator

logger = logging.getLogger(__name__)

JOB_ID = "reminder_tick"


class ReminderScheduler:
    """
    Owns one AsyncIOScheduler and the single-flight guard for its ticks.

    Each instance is independent, so tests can run several side by side.
    """

    def __init__(
        self,
        orchestrator: NotificationOrchestrator,
        interval_minutes: int = settings.NOTIFICATION_TICK_MINUTES,
    ):
        self.orchestrator = orchestrator
        self.interval_minutes = interval_minutes
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._lock = asyncio.Lock()
        self._current: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def start(self) -> None:
        """Start the interval job. Must be called from a running event loop."""
        if self.running:
            logger.warning("Reminder scheduler already running")
            return

        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self.tick,
            IntervalTrigger(minutes=self.interval_minutes),
            id=JOB_ID,
            name="Reminder tick",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=60,
        )
        self._scheduler.start()
        logger.info(f"Reminder scheduler started: every {self.interval_minutes} minutes")

    async def stop(self) -> None:
        """Stop firing new ticks and wait for the in-flight one to finish."""
        if self._scheduler is not None:
            if self._scheduler.running:
                self._scheduler.shutdown(wait=False)
            self._scheduler = None

        current = self._current
        if current is not None and not current.done():
            logger.info("Waiting for in-flight reminder tick to finish")
            await asyncio.wait([current])
        logger.info("Reminder scheduler stopped")

    async def tick(self) -> Optional[TickResult]:
        """
        Run one orchestrator tick unless one is already running.

        Errors are logged and swallowed so the interval job keeps firing;
        the next tick retries whatever this one could not send.

        Returns:
            TickResult (skipped_busy=True when a tick is already running),
            or None when the tick failed
        """
        if self._lock.locked():
            logger.info("Reminder tick skipped: previous tick still running")
            return TickResult(started_at=self.orchestrator.clock(), skipped_busy=True)

        async with self._lock:
            self._current = asyncio.current_task()
            try:
                return await self.orchestrator.run_tick()
            except Exception as e:
                logger.error(f"Reminder tick failed: {type(e).__name__}: {e}", exc_info=True)
                return None
            finally:
                self._current = None

    async def run_once(self) -> Optional[TickResult]:
        """Run a tick now (manual trigger), respecting the single-flight guard."""
        return await self.tick()
