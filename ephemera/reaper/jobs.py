"""BackgroundJobs — APScheduler lifecycle for the reaper and presence sweeps."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ephemera.config import settings

if TYPE_CHECKING:
    from ephemera.presence.tracker import PresenceTracker
    from ephemera.reaper.reaper import ExpiryReaper

logger = logging.getLogger(__name__)

REAPER_JOB_ID = "expiry-reaper"
PRESENCE_JOB_ID = "presence-expiry"


class BackgroundJobs:
    """Runs the periodic expiry sweep and stale-presence sweep.

    Args:
        reaper: ExpiryReaper to run every ``reaper_interval_seconds``.
        tracker: PresenceTracker to expire every ``presence_sweep_seconds``.
    """

    def __init__(
        self,
        reaper: ExpiryReaper,
        tracker: PresenceTracker,
        *,
        reaper_interval_seconds: int | None = None,
        presence_sweep_seconds: int | None = None,
    ) -> None:
        self._reaper = reaper
        self._tracker = tracker
        self._reaper_interval = reaper_interval_seconds or settings.reaper_interval_seconds
        self._presence_interval = presence_sweep_seconds or settings.presence_sweep_seconds
        self._scheduler = AsyncIOScheduler(timezone="UTC")
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    # -- Lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        """Register the interval jobs and start the scheduler."""
        self._scheduler.add_job(
            self._reaper.run_scheduled,
            trigger=IntervalTrigger(seconds=self._reaper_interval),
            id=REAPER_JOB_ID,
            name="Expiry reaper",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self._scheduler.add_job(
            self._expire_presence,
            trigger=IntervalTrigger(seconds=self._presence_interval),
            id=PRESENCE_JOB_ID,
            name="Presence expiry",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self._scheduler.start()
        self._running = True
        logger.info(
            "Background jobs started (reaper every %ds, presence every %ds)",
            self._reaper_interval,
            self._presence_interval,
        )

    async def stop(self) -> None:
        """Shut down the scheduler."""
        if self._running:
            self._scheduler.shutdown(wait=False)
            self._running = False
            logger.info("Background jobs stopped")

    # -- Internal --------------------------------------------------------------

    async def _expire_presence(self) -> None:
        try:
            left = self._tracker.expire()
        except Exception:
            logger.exception("Presence expiry failed")
            return
        if left:
            logger.info("Presence expired for %d participant(s)", len(left))
