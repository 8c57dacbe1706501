"""Telegram job-queue adapter — implements ReminderSchedulerPort.

Each reminder is a ``run_daily`` job whose name is the reminder id, bound
to one chat. Delivery goes through the NotificationPort.
"""

from __future__ import annotations

import logging
from datetime import time as dt_time
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

from src.config import settings
from src.ports.reminder_scheduler_port import ReminderPayload, SchedulerError

if TYPE_CHECKING:
    from telegram.ext import ContextTypes, JobQueue

    from src.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)


class TelegramReminderScheduler:
    """Job-queue implementation of ReminderSchedulerPort for a single chat."""

    def __init__(
        self,
        job_queue: JobQueue,
        notifier: NotificationPort,
        chat_id: int,
        tz_name: str | None = None,
    ) -> None:
        self._job_queue = job_queue
        self._notifier = notifier
        self._chat_id = chat_id
        self._tz = ZoneInfo(tz_name or settings.TIMEZONE)

    async def schedule(
        self, reminder_id: str, hour: int, minute: int, payload: ReminderPayload,
    ) -> None:
        notifier = self._notifier

        async def _reminder_job_callback(context: ContextTypes.DEFAULT_TYPE) -> None:
            job = context.job
            await notifier.send_reminder(job.chat_id, job.data)

        try:
            self._job_queue.run_daily(
                _reminder_job_callback,
                time=dt_time(hour=hour, minute=minute, tzinfo=self._tz),
                name=reminder_id,
                chat_id=self._chat_id,
                data=payload,
            )
        except Exception as exc:
            raise SchedulerError(f"Failed to schedule {reminder_id}: {exc}") from exc
        logger.info(
            "Scheduled daily reminder %s at %02d:%02d %s",
            reminder_id, hour, minute, self._tz.key,
        )

    async def cancel(self, reminder_id: str) -> None:
        jobs = self._job_queue.get_jobs_by_name(reminder_id)
        for job in jobs:
            job.schedule_removal()
        if jobs:
            logger.info("Cancelled reminder %s (%d job(s))", reminder_id, len(jobs))

    async def list_pending(self) -> set[str]:
        return {
            job.name
            for job in self._job_queue.jobs()
            if job.chat_id == self._chat_id and not job.removed and job.name
        }
