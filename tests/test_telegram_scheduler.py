"""Tests for the Telegram job-queue reminder scheduler and notifier.

The JobQueue and Bot are mocked.
"""

import pytest
from datetime import time
from unittest.mock import AsyncMock, MagicMock

from src.adapters.telegram_notifier import TelegramNotifier
from src.adapters.telegram_scheduler import TelegramReminderScheduler
from src.ports.reminder_scheduler_port import ReminderPayload, SchedulerError


_PAYLOAD = ReminderPayload(
    room_id="R1",
    category_key="Medicine",
    title="Noa: Dose reminder for Medicine",
    body="Have you logged all items in Medicine for Noa?",
)


def _job(name, chat_id=12345, removed=False):
    job = MagicMock()
    job.name = name
    job.chat_id = chat_id
    job.removed = removed
    return job


@pytest.fixture
def job_queue():
    return MagicMock()


@pytest.fixture
def notifier():
    mock = MagicMock()
    mock.send_reminder = AsyncMock()
    return mock


@pytest.fixture
def scheduler(job_queue, notifier):
    return TelegramReminderScheduler(job_queue, notifier, chat_id=12345, tz_name="Asia/Jerusalem")


class TestSchedule:
    @pytest.mark.asyncio
    async def test_registers_daily_job(self, scheduler, job_queue):
        await scheduler.schedule("reminder_U1_Medicine_R1", 8, 30, _PAYLOAD)

        kwargs = job_queue.run_daily.call_args.kwargs
        assert kwargs["name"] == "reminder_U1_Medicine_R1"
        assert kwargs["chat_id"] == 12345
        assert kwargs["data"] is _PAYLOAD
        assert kwargs["time"].replace(tzinfo=None) == time(8, 30)
        assert kwargs["time"].tzinfo.key == "Asia/Jerusalem"

    @pytest.mark.asyncio
    async def test_callback_sends_reminder(self, scheduler, job_queue, notifier):
        await scheduler.schedule("reminder_U1_Medicine_R1", 8, 30, _PAYLOAD)
        callback = job_queue.run_daily.call_args.args[0]

        context = MagicMock()
        context.job.chat_id = 12345
        context.job.data = _PAYLOAD
        await callback(context)

        notifier.send_reminder.assert_awaited_once_with(12345, _PAYLOAD)

    @pytest.mark.asyncio
    async def test_job_queue_failure_raises_scheduler_error(self, scheduler, job_queue):
        job_queue.run_daily.side_effect = RuntimeError("no job queue")
        with pytest.raises(SchedulerError):
            await scheduler.schedule("reminder_U1_Medicine_R1", 8, 30, _PAYLOAD)


class TestCancelAndList:
    @pytest.mark.asyncio
    async def test_cancel_removes_matching_jobs(self, scheduler, job_queue):
        job = _job("reminder_U1_Medicine_R1")
        job_queue.get_jobs_by_name.return_value = (job,)

        await scheduler.cancel("reminder_U1_Medicine_R1")

        job_queue.get_jobs_by_name.assert_called_once_with("reminder_U1_Medicine_R1")
        job.schedule_removal.assert_called_once()

    @pytest.mark.asyncio
    async def test_cancel_unknown_is_noop(self, scheduler, job_queue):
        job_queue.get_jobs_by_name.return_value = ()
        await scheduler.cancel("reminder_U1_Medicine_R1")

    @pytest.mark.asyncio
    async def test_list_pending_only_this_chat(self, scheduler, job_queue):
        job_queue.jobs.return_value = (
            _job("reminder_U1_Medicine_R1"),
            _job("reminder_U1_Treatment_R1", removed=True),
            _job("reminder_U2_Medicine_R1", chat_id=999),
        )
        assert await scheduler.list_pending() == {"reminder_U1_Medicine_R1"}


class TestTelegramNotifier:
    @pytest.mark.asyncio
    async def test_send_reminder_formats_title_and_body(self):
        bot = MagicMock()
        bot.send_message = AsyncMock()

        await TelegramNotifier(bot).send_reminder(12345, _PAYLOAD)

        kwargs = bot.send_message.call_args.kwargs
        assert kwargs["chat_id"] == 12345
        assert kwargs["parse_mode"] == "Markdown"
        assert kwargs["text"].startswith("*Noa: Dose reminder for Medicine*\n")
        assert kwargs["text"].endswith("for Noa?")

    @pytest.mark.asyncio
    async def test_send_message(self):
        bot = MagicMock()
        bot.send_message = AsyncMock()

        await TelegramNotifier(bot).send_message(12345, "hello")

        bot.send_message.assert_awaited_once_with(chat_id=12345, text="hello")
