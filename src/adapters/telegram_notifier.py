"""Telegram notification adapter — implements NotificationPort.

Wraps a telegram.Bot instance to satisfy the NotificationPort protocol.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from telegram import Bot
from telegram.helpers import escape_markdown

if TYPE_CHECKING:
    from src.ports.reminder_scheduler_port import ReminderPayload

logger = logging.getLogger(__name__)


class TelegramNotifier:
    """Telegram implementation of NotificationPort."""

    def __init__(self, bot: Bot) -> None:
        self._bot = bot

    async def send_message(self, chat_id: int, text: str) -> None:
        await self._bot.send_message(chat_id=chat_id, text=text)

    async def send_reminder(self, chat_id: int, payload: ReminderPayload) -> None:
        """Send a dose reminder: bold title line, then the body."""
        text = f"*{escape_markdown(payload.title)}*\n{escape_markdown(payload.body)}"
        await self._bot.send_message(chat_id=chat_id, text=text, parse_mode="Markdown")
        logger.info(
            "Reminder delivered to chat %d (room %s, %s)",
            chat_id, payload.room_id, payload.category_key,
        )
