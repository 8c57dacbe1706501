"""Notification port — abstract interface for delivering reminders to a chat.

Core modules depend on this protocol, never on a specific messaging provider.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from src.ports.reminder_scheduler_port import ReminderPayload


class NotificationPort(Protocol):
    """Abstract notification interface used by core modules."""

    async def send_message(self, chat_id: int, text: str) -> None: ...

    async def send_reminder(self, chat_id: int, payload: ReminderPayload) -> None: ...
