"""Shared test fixtures and configuration.

Sets up fake environment variables so src.config doesn't sys.exit(),
and provides common fixtures: a temp settings DB, an in-memory remote
store seeded with a room and its invitations, and a recording scheduler.
"""

import os

# Patch env vars BEFORE any src imports
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "fake-token-for-tests")
os.environ.setdefault("ALLOWED_USER_IDS", "12345")
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("REMOTE_STORE_PROVIDER", "memory")
os.environ.setdefault("TIMEZONE", "UTC")
os.environ.setdefault("DEFAULT_REMINDER_TIME", "09:00")

import pytest


class FakeScheduler:
    """ReminderSchedulerPort double that records every call in order."""

    def __init__(self):
        self.pending = {}
        self.calls = []

    async def schedule(self, reminder_id, hour, minute, payload):
        self.calls.append(("schedule", reminder_id))
        self.pending[reminder_id] = (hour, minute, payload)

    async def cancel(self, reminder_id):
        self.calls.append(("cancel", reminder_id))
        self.pending.pop(reminder_id, None)

    async def list_pending(self):
        return set(self.pending)


def seed_tree():
    """Remote tree with one room and a handful of invitations."""
    return {
        "rooms": {
            "R1": {
                "name": "Room One",
                "cycles": {
                    "c1": {"patientName": "Maya", "startDate": "2024-01-01T00:00:00Z"},
                    "c2": {"patientName": "Noa", "startDate": "2024-06-01T00:00:00Z"},
                },
            },
            "R2": {"name": "Room Two"},
        },
        "invitations": {
            "ABC123": {"status": "invited", "roomId": "R1", "isAdmin": False},
            "SENT01": {"status": "sent", "roomId": "R1", "isAdmin": True},
            "XYZ": {"status": "accepted", "roomId": "R1", "acceptedBy": "U-OLD"},
            "GHOST1": {"status": "invited", "roomId": "R-gone"},
        },
    }


@pytest.fixture
def settings_db(tmp_path):
    """Return a SettingsDB instance backed by a temp file."""
    from src.data.db import SettingsDB
    return SettingsDB(db_path=str(tmp_path / "test_settings.db"))


@pytest.fixture
def tree():
    return seed_tree()


@pytest.fixture
def remote(tree):
    from src.adapters.memory_store import InMemoryRemoteStore
    return InMemoryRemoteStore(tree)


@pytest.fixture
def session(settings_db):
    from src.core.session import SessionContext
    return SessionContext(settings_db, scope="12345")


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def reconciler(remote, scheduler, session):
    from src.core.reminders import ReminderReconciler
    return ReminderReconciler(
        remote, scheduler, session,
        tz_name="UTC", default_time="09:00", fallback_name="TIPs Program",
    )


@pytest.fixture
def saga(remote, session):
    from src.core.join_saga import JoinSaga
    return JoinSaga(remote, session, timeout=1.0)
