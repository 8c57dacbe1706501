"""Tests for src.core.session — SessionContext and restore_session."""

from unittest.mock import patch

import pytest

from src.core.session import NoActiveSession, SessionContext, restore_session
from src.data.db import SettingsKey
from src.data.models import Category, User


def _user(uid="U1"):
    return User(id=uid, name="Dana")


class TestSessionContext:
    def test_starts_inactive(self, session):
        assert not session.is_active
        with pytest.raises(NoActiveSession):
            session.require_active()

    def test_commit_join_sets_both(self, session, settings_db):
        session.set_draft_room_code("ABC123")
        session.commit_join(_user(), "R1")

        user, room_id = session.require_active()
        assert user.id == "U1"
        assert room_id == "R1"
        assert session.draft_room_code is None
        assert session.stored_identifiers() == ("U1", "R1")
        assert settings_db.get("12345", SettingsKey.DRAFT_ROOM_CODE) is None

    def test_failed_persist_leaves_session_untouched(self, session, settings_db):
        with patch.object(settings_db, "update", side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                session.commit_join(_user(), "R1")
        assert session.current_user is None
        assert session.current_room_id is None

    def test_switch_room(self, session):
        session.commit_join(_user(), "R1")
        session.switch_room("R2")
        assert session.current_room_id == "R2"
        assert session.stored_identifiers() == ("U1", "R2")

    def test_switch_room_needs_user(self, session):
        with pytest.raises(NoActiveSession):
            session.switch_room("R2")

    def test_clear_unsets_both(self, session):
        session.commit_join(_user(), "R1")
        session.clear()
        assert session.current_user is None
        assert session.current_room_id is None
        assert session.stored_identifiers() == (None, None)

    def test_scopes_do_not_share_state(self, session, settings_db):
        session.commit_join(_user(), "R1")
        other = SessionContext(settings_db, scope="999")
        assert other.stored_identifiers() == (None, None)


class TestRestoreSession:
    @pytest.mark.asyncio
    async def test_restores_user_from_remote(self, session, settings_db, remote):
        await remote.write("users/U1", {
            "id": "U1", "name": "Dana", "isAdmin": False,
            "remindersEnabled": {"Medicine": True},
        })
        settings_db.update("12345", {
            SettingsKey.CURRENT_USER_ID: "U1",
            SettingsKey.CURRENT_ROOM_ID: "R1",
        })

        assert await restore_session(session, remote) is True
        assert session.current_user.name == "Dana"
        assert session.current_user.reminders_enabled == {Category.MEDICINE: True}
        assert session.current_room_id == "R1"

    @pytest.mark.asyncio
    async def test_partial_identifiers_not_restored(self, session, settings_db, remote):
        settings_db.set("12345", SettingsKey.CURRENT_USER_ID, "U1")
        assert await restore_session(session, remote) is False
        assert not session.is_active

    @pytest.mark.asyncio
    async def test_missing_remote_user(self, session, settings_db, remote):
        settings_db.update("12345", {
            SettingsKey.CURRENT_USER_ID: "U-missing",
            SettingsKey.CURRENT_ROOM_ID: "R1",
        })
        assert await restore_session(session, remote) is False
        assert session.current_user is None
