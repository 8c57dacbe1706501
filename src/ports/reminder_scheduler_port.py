"""Reminder scheduler port — local, OS-level recurring notifications.

Registrations are keyed by an opaque identifier string and fire every day
at hour:minute local time until cancelled. Implementations are not
assumed to be idempotent on ``schedule``: callers cancel first.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


class SchedulerError(Exception):
    """Raised when a local schedule/cancel request fails."""


@dataclass(frozen=True)
class ReminderPayload:
    """Notification content. ``room_id`` + ``category_key`` resolve the tap."""

    room_id: str
    category_key: str
    title: str
    body: str


class ReminderSchedulerPort(Protocol):
    """Abstract local notification scheduler used by core modules."""

    async def schedule(
        self, reminder_id: str, hour: int, minute: int, payload: ReminderPayload,
    ) -> None: ...

    async def cancel(self, reminder_id: str) -> None: ...

    async def list_pending(self) -> set[str]: ...
