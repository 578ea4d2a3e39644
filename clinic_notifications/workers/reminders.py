"""Reminder poll loop on APScheduler.

One interval job does two things per tick:

1. claims and fires due ReminderJobs (``ReminderScheduler.process_due``)
2. sends DeliveryAttempts whose backoff or deferred start has passed
   (``DeliveryDispatcher.process_due_retries``)

Claims live in the database, so any number of processes may run this loop
against the same tables.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from clinic_notifications.infra.logging import get_lazy_logger

if TYPE_CHECKING:
    from datetime import datetime

    from clinic_notifications.core.settings import NotificationSettings
    from clinic_notifications.features.notifications.channels import DeliveryDispatcher
    from clinic_notifications.features.notifications.scheduler import ReminderScheduler

logger = logging.getLogger(__name__)
_lazy = get_lazy_logger(__name__)

POLL_JOB_ID = "notifications_poll"


class ReminderWorker:
    """Owns the AsyncIOScheduler that drives the poll loop."""

    def __init__(
        self,
        scheduler: ReminderScheduler,
        dispatcher: DeliveryDispatcher,
        settings: NotificationSettings,
    ) -> None:
        self._reminders = scheduler
        self._dispatcher = dispatcher
        self._settings = settings
        self._scheduler = AsyncIOScheduler(
            timezone="UTC",
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": int(settings.poll_interval_seconds),
            },
        )

    @property
    def running(self) -> bool:
        return self._scheduler.running

    async def run_once(self, now: datetime | None = None) -> dict[str, int]:
        """One poll tick. Errors in one half do not stop the other."""
        fired = retried = 0
        try:
            fired = await self._reminders.process_due(now)
        except Exception:
            logger.exception("Reminder poll failed", extra={"operation": "worker.process_due"})
        try:
            retried = await self._dispatcher.process_due_retries(now)
        except Exception:
            logger.exception("Retry poll failed", extra={"operation": "worker.process_due_retries"})

        _lazy.debug(lambda: f"worker.run_once: fired={fired} retried={retried}")
        return {"reminders_fired": fired, "attempts_processed": retried}

    async def _tick(self) -> None:
        await self.run_once()

    async def start(self) -> None:
        """Register the interval job and start the scheduler. Must run inside the event loop."""
        if self._scheduler.running:
            logger.warning("Reminder worker already running", extra={"operation": "worker.start"})
            return

        self._scheduler.add_job(
            func=self._tick,
            trigger=IntervalTrigger(seconds=self._settings.poll_interval_seconds),
            id=POLL_JOB_ID,
            name="Fire due reminders and delivery retries",
            replace_existing=True,
        )
        self._scheduler.start()
        logger.info(
            "Reminder worker started",
            extra={
                "operation": "worker.start",
                "interval_seconds": self._settings.poll_interval_seconds,
                "owner": self._dispatcher.owner,
            },
        )

    async def stop(self) -> None:
        if not self._scheduler.running:
            return
        self._scheduler.shutdown(wait=False)
        logger.info("Reminder worker stopped", extra={"operation": "worker.stop"})
