"""
Tolerance Tracker — Data Models.

Records shared through the remote store (invitations, users and their
per-room reminder settings) plus the closed set of medication categories.
Remote dictionaries use the camelCase field names every client writes.
Reminder times are stored as ISO-8601 UTC timestamps (see
``serialize_reminder_time``); only the time-of-day part is meaningful.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from datetime import time as dt_time
from enum import Enum
from zoneinfo import ZoneInfo


class Category(Enum):
    """Medication categories.

    The enum value is the stable key used in remote paths and reminder
    identifiers; ``label`` is display text only.
    """

    MEDICINE = "Medicine"
    MAINTENANCE = "Maintenance"
    TREATMENT = "Treatment"
    RECOMMENDED = "Recommended"

    @property
    def key(self) -> str:
        return self.value

    @property
    def label(self) -> str:
        return _CATEGORY_LABELS[self]

    @classmethod
    def from_key(cls, key: str) -> Category | None:
        """Exact lookup by stable key. Unknown keys return None."""
        for category in cls:
            if category.value == key:
                return category
        return None

    @classmethod
    def from_user_text(cls, text: str) -> Category | None:
        """Case-insensitive lookup by key or label, for typed commands."""
        wanted = text.strip().lower()
        for category in cls:
            if wanted in (category.value.lower(), category.label.lower()):
                return category
        return None


_CATEGORY_LABELS = {
    Category.MEDICINE: "Medicine",
    Category.MAINTENANCE: "Maintenance",
    Category.TREATMENT: "Treatment",
    Category.RECOMMENDED: "Recommended",
}


class InvitationStatus(Enum):
    INVITED = "invited"
    SENT = "sent"
    ACCEPTED = "accepted"


_JOINABLE_STATUSES = {InvitationStatus.INVITED.value, InvitationStatus.SENT.value}


@dataclass
class Invitation:
    """An invitation record read from ``invitations/{code}``.

    ``status`` stays a raw string so unknown values written by other
    clients survive parsing and are simply not joinable.
    """

    code: str
    status: str
    room_id: str | None = None
    is_admin: bool = False
    accepted_by: str | None = None

    @classmethod
    def from_dict(cls, code: str, raw: object) -> Invitation | None:
        """Parse a remote value. Returns None for anything that isn't a record."""
        if not isinstance(raw, dict):
            return None
        status = raw.get("status")
        room_id = raw.get("roomId")
        accepted_by = raw.get("acceptedBy")
        return cls(
            code=code,
            status=status if isinstance(status, str) else "",
            room_id=room_id if isinstance(room_id, str) and room_id else None,
            is_admin=raw.get("isAdmin") is True,
            accepted_by=accepted_by if isinstance(accepted_by, str) else None,
        )

    @property
    def is_joinable(self) -> bool:
        return self.status in _JOINABLE_STATUSES and self.room_id is not None


@dataclass
class ReminderSetting:
    """Desired reminder state for one category in one room."""

    enabled: bool = False
    time: dt_time | None = None


@dataclass
class User:
    """A caregiver participating in one or more rooms."""

    id: str
    name: str
    is_admin: bool = False
    reminders_enabled: dict[Category, bool] = field(default_factory=dict)
    reminder_times: dict[Category, dt_time] = field(default_factory=dict)

    @classmethod
    def create(cls, name: str, is_admin: bool = False) -> User:
        """Build a brand-new user with a freshly generated id."""
        return cls(id=str(uuid.uuid4()).upper(), name=name, is_admin=is_admin)

    def to_dict(self, tz_name: str = "UTC") -> dict:
        data: dict = {
            "id": self.id,
            "name": self.name,
            "isAdmin": self.is_admin,
        }
        if self.reminders_enabled:
            data["remindersEnabled"] = {
                c.key: enabled for c, enabled in self.reminders_enabled.items()
            }
        if self.reminder_times:
            data["reminderTimes"] = {
                c.key: serialize_reminder_time(t, tz_name)
                for c, t in self.reminder_times.items()
            }
        return data

    @classmethod
    def from_dict(cls, raw: object, tz_name: str = "UTC") -> User | None:
        """Parse a ``users/{id}`` record. Requires id, name and isAdmin."""
        if not isinstance(raw, dict):
            return None
        user_id, name, is_admin = raw.get("id"), raw.get("name"), raw.get("isAdmin")
        if not isinstance(user_id, str) or not isinstance(name, str):
            return None
        if not isinstance(is_admin, bool):
            return None

        enabled: dict[Category, bool] = {}
        for key, value in (raw.get("remindersEnabled") or {}).items():
            category = Category.from_key(key)
            if category is not None and isinstance(value, bool):
                enabled[category] = value

        times: dict[Category, dt_time] = {}
        for key, value in (raw.get("reminderTimes") or {}).items():
            category = Category.from_key(key)
            if category is None or not isinstance(value, str):
                continue
            try:
                times[category] = parse_reminder_time(value, tz_name)
            except ValueError:
                continue

        return cls(
            id=user_id,
            name=name,
            is_admin=is_admin,
            reminders_enabled=enabled,
            reminder_times=times,
        )


def participant_name(room: object, fallback: str) -> str:
    """Resolve the display identity of a room for reminder text.

    Prefers the patient name of the cycle with the latest ``startDate``,
    then any named cycle, then the room's own ``name``. Returns ``fallback``
    when the room carries none of these.
    """
    if not isinstance(room, dict):
        return fallback

    cycles = room.get("cycles")
    if isinstance(cycles, dict):
        named = [
            c for c in cycles.values()
            if isinstance(c, dict)
            and isinstance(c.get("patientName"), str)
            and c["patientName"] not in ("", "Unnamed")
        ]
        dated = [c for c in named if isinstance(c.get("startDate"), str)]
        if dated:
            latest = max(dated, key=lambda c: _start_sort_key(c["startDate"]))
            return latest["patientName"]
        if named:
            return named[0]["patientName"]

    name = room.get("name")
    if isinstance(name, str) and name:
        return name
    return fallback


def _start_sort_key(raw: str) -> datetime:
    try:
        moment = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return datetime.min.replace(tzinfo=ZoneInfo("UTC"))
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=ZoneInfo("UTC"))
    return moment


# ---------------------------------------------------------------------------
# Time-of-day helpers
# ---------------------------------------------------------------------------


def parse_reminder_time(raw: str, tz_name: str = "UTC") -> dt_time:
    """Parse a stored reminder time into a naive local time-of-day.

    Accepts a full ISO-8601 timestamp, the format every client writes, or a
    bare "HH:MM". Timestamps carrying an offset are converted to
    ``tz_name`` first. Raises ValueError on malformed input.
    """
    text = raw.strip()
    if "T" in text:
        moment = datetime.fromisoformat(text.replace("Z", "+00:00"))
        if moment.tzinfo is not None:
            moment = moment.astimezone(ZoneInfo(tz_name))
        return dt_time(hour=moment.hour, minute=moment.minute)

    hour_text, sep, minute_text = text.partition(":")
    if not sep:
        raise ValueError(f"No colon in time: {raw!r}")
    hour, minute = int(hour_text), int(minute_text[:2])
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"Hour/minute out of range: {hour}:{minute}")
    return dt_time(hour=hour, minute=minute)


def format_reminder_time(value: dt_time) -> str:
    return f"{value.hour:02d}:{value.minute:02d}"


def serialize_reminder_time(
    value: dt_time, tz_name: str = "UTC", on: date | None = None,
) -> str:
    """Encode a local time-of-day for the remote store.

    The shared format is an ISO-8601 timestamp: ``on`` (default today in
    ``tz_name``) at hour:minute local time, expressed in UTC with a ``Z``.
    """
    zone = ZoneInfo(tz_name)
    day = on or datetime.now(zone).date()
    local = datetime.combine(day, dt_time(hour=value.hour, minute=value.minute), tzinfo=zone)
    return local.astimezone(ZoneInfo("UTC")).strftime("%Y-%m-%dT%H:%M:%SZ")
