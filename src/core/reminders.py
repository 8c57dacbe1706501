"""
Tolerance Tracker — Reminder Reconciler.

Keeps the local daily dose reminders in line with the per-room reminder
configuration stored remotely under
``users/{userId}/roomSettings/{roomId}/reminders/{category}``.

Scheduling is idempotent by construction: every schedule cancels the
reminder's identifier before registering it again, so at most one pending
reminder exists per (user, category, room).

Times are written as ISO-8601 UTC timestamps, the format shared with the
other clients; both that and a bare "HH:MM" are accepted on read.

Remote writes from ``set_enabled`` / ``set_time`` are last-writer-wins and
are NOT rolled back locally on failure: the in-memory view may diverge from
the remote one until the next successful write or the next
``load_room_settings``.
"""

from __future__ import annotations

import logging
from datetime import time as dt_time
from typing import TYPE_CHECKING

from src.core.remote_call import call_remote
from src.data.models import (
    Category,
    ReminderSetting,
    format_reminder_time,
    parse_reminder_time,
    participant_name,
    serialize_reminder_time,
)
from src.ports.reminder_scheduler_port import ReminderPayload
from src.ports.remote_store_port import RemoteStoreError

if TYPE_CHECKING:
    from src.core.session import SessionContext
    from src.ports.reminder_scheduler_port import ReminderSchedulerPort
    from src.ports.remote_store_port import RemoteStorePort

logger = logging.getLogger(__name__)

REMINDER_ID_PREFIX = "reminder"


class SettingsWriteError(Exception):
    """A reminder setting could not be persisted remotely."""

    def __init__(self, category: Category, field_name: str, message: str) -> None:
        super().__init__(message)
        self.category = category
        self.field_name = field_name


def reminder_identifier(user_id: str, category: Category, room_id: str) -> str:
    """Deterministic local notification id for (user, category, room)."""
    return f"{REMINDER_ID_PREFIX}_{user_id}_{category.key}_{room_id}"


def reminders_path(user_id: str, room_id: str) -> str:
    return f"users/{user_id}/roomSettings/{room_id}/reminders"


class ReminderReconciler:
    """Drives a ReminderSchedulerPort from the session user's reminder settings."""

    def __init__(
        self,
        remote: RemoteStorePort,
        scheduler: ReminderSchedulerPort,
        session: SessionContext,
        tz_name: str | None = None,
        default_time: str | None = None,
        fallback_name: str | None = None,
        timeout: float | None = None,
    ) -> None:
        from src.config import settings

        self._remote = remote
        self._scheduler = scheduler
        self._session = session
        self._tz_name = tz_name or settings.TIMEZONE
        self._default_time = parse_reminder_time(default_time or settings.DEFAULT_REMINDER_TIME)
        self._fallback_name = fallback_name or settings.APP_DISPLAY_NAME
        self._timeout = timeout
        self._participants: dict[str, str] = {}

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def current_settings(self) -> dict[Category, ReminderSetting]:
        """Desired state for every category, from the session user."""
        user = self._session.current_user
        if user is None:
            return {c: ReminderSetting() for c in Category}
        return {
            c: ReminderSetting(
                enabled=user.reminders_enabled.get(c, False),
                time=user.reminder_times.get(c),
            )
            for c in Category
        }

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def load_room_settings(
        self, user_id: str, room_id: str,
    ) -> dict[Category, ReminderSetting]:
        """Merge the room's remote reminder settings into the user, then reconcile.

        Categories (and fields) missing from the remote payload keep their
        in-memory values. If the session moved to another user or room
        while the read was in flight, the result is dropped.
        """
        raw = await call_remote(
            self._remote.read(reminders_path(user_id, room_id)), self._timeout,
        )
        await self._load_participant(room_id)

        user = self._session.current_user
        if user is None or user.id != user_id or self._session.current_room_id != room_id:
            logger.info(
                "Dropping reminder settings for %s/%s: session has moved on",
                user_id, room_id,
            )
            return self.current_settings()

        if isinstance(raw, dict):
            for key, entry in raw.items():
                category = Category.from_key(key)
                if category is None:
                    logger.warning("Ignoring reminder settings for unknown category %r", key)
                    continue
                if not isinstance(entry, dict):
                    continue
                enabled = entry.get("enabled")
                if isinstance(enabled, bool):
                    user.reminders_enabled[category] = enabled
                time_raw = entry.get("time")
                if isinstance(time_raw, str):
                    try:
                        user.reminder_times[category] = parse_reminder_time(
                            time_raw, self._tz_name,
                        )
                    except ValueError:
                        logger.warning(
                            "Ignoring malformed reminder time %r for %s", time_raw, key,
                        )

        logger.info("Loaded reminder settings for room %s", room_id)
        await self.reconcile_all()
        return self.current_settings()

    async def set_enabled(self, category: Category, enabled: bool) -> None:
        """Turn a category's daily reminder on or off.

        Raises SettingsWriteError if the remote write fails; the in-memory
        change is kept and nothing is scheduled or cancelled in that case.
        """
        user, room_id = self._session.require_active()
        user.reminders_enabled[category] = enabled
        if enabled and category not in user.reminder_times:
            user.reminder_times[category] = self._default_time

        await self._persist(user.id, room_id, category, "enabled", enabled)

        if enabled:
            await self._schedule(category)
        else:
            await self._cancel(category)

    async def set_time(self, category: Category, value: dt_time) -> None:
        """Change a category's reminder time; reschedules if it is enabled."""
        user, room_id = self._session.require_active()
        value = dt_time(hour=value.hour, minute=value.minute)
        user.reminder_times[category] = value

        await self._persist(
            user.id, room_id, category, "time",
            serialize_reminder_time(value, self._tz_name),
        )

        if user.reminders_enabled.get(category, False):
            await self._schedule(category)

    async def reconcile_all(self) -> None:
        """Schedule every enabled category and cancel every other one."""
        if not self._session.is_active:
            logger.info("No active session, skipping reminder reconcile")
            return
        for category in Category:
            if self._session.current_user.reminders_enabled.get(category, False):
                await self._schedule(category)
            else:
                await self._cancel(category)
        pending = await self._scheduler.list_pending()
        logger.debug("Pending reminders after reconcile: %s", sorted(pending))

    async def cancel_room(self, user_id: str, room_id: str) -> None:
        """Cancel every category's reminder for one room."""
        for category in Category:
            await self._scheduler.cancel(reminder_identifier(user_id, category, room_id))
        logger.info("Cancelled all reminders for room %s", room_id)

    async def cancel_user(self, user_id: str) -> None:
        """Cancel every pending reminder belonging to a user, in any room."""
        prefix = f"{REMINDER_ID_PREFIX}_{user_id}_"
        pending = await self._scheduler.list_pending()
        for reminder_id in sorted(pending):
            if reminder_id.startswith(prefix):
                await self._scheduler.cancel(reminder_id)
        logger.info("Cancelled all reminders for user %s", user_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _persist(
        self, user_id: str, room_id: str, category: Category, field_name: str, value,
    ) -> None:
        path = f"{reminders_path(user_id, room_id)}/{category.key}/{field_name}"
        try:
            await call_remote(self._remote.write(path, value), self._timeout)
        except RemoteStoreError as exc:
            logger.error("Failed to save reminder %s for %s: %s", field_name, category.key, exc)
            raise SettingsWriteError(
                category, field_name, f"Could not save {category.label} reminder: {exc}",
            ) from exc

    async def _schedule(self, category: Category) -> None:
        user, room_id = self._session.require_active()
        when = user.reminder_times.get(category)
        if when is None:
            when = self._default_time
            user.reminder_times[category] = when

        reminder_id = reminder_identifier(user.id, category, room_id)
        payload = self._build_payload(category, room_id)

        await self._scheduler.cancel(reminder_id)
        await self._scheduler.schedule(reminder_id, when.hour, when.minute, payload)
        logger.info(
            "Reminder for %s in room %s set at %s", category.key, room_id,
            format_reminder_time(when),
        )

    async def _cancel(self, category: Category) -> None:
        user, room_id = self._session.require_active()
        await self._scheduler.cancel(reminder_identifier(user.id, category, room_id))

    def _build_payload(self, category: Category, room_id: str) -> ReminderPayload:
        name = self._participants.get(room_id, self._fallback_name)
        return ReminderPayload(
            room_id=room_id,
            category_key=category.key,
            title=f"{name}: Dose reminder for {category.label}",
            body=f"Have you logged all items in {category.label} for {name}?",
        )

    async def _load_participant(self, room_id: str) -> None:
        """Cache the room's display name. Failures fall back to the app name."""
        try:
            room = await call_remote(self._remote.read(f"rooms/{room_id}"), self._timeout)
        except RemoteStoreError as exc:
            logger.warning("Could not load display name for room %s: %s", room_id, exc)
            return
        self._participants[room_id] = participant_name(room, self._fallback_name)
