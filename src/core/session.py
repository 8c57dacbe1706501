"""
Tolerance Tracker — Session Context.

The active user and room for one device (one chat). Current user and
current room are either both set or both unset; every change goes through
one of the explicit session-change methods below, each of which persists to
the local settings store before touching memory so a failed write leaves
the session exactly as it was.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from src.core.remote_call import call_remote
from src.data.db import SettingsKey
from src.data.models import User

if TYPE_CHECKING:
    from src.data.db import SettingsDB
    from src.ports.remote_store_port import RemoteStorePort

logger = logging.getLogger(__name__)


class NoActiveSession(Exception):
    """Raised when an operation needs a current user and room but there is none."""


class SessionContext:
    """Owned session state for one device, mirrored into SettingsDB."""

    def __init__(self, settings_db: SettingsDB, scope: str) -> None:
        self._db = settings_db
        self._scope = scope
        self._user: User | None = None
        self._room_id: str | None = None
        self._draft_room_code: str | None = None

    @property
    def scope(self) -> str:
        return self._scope

    @property
    def current_user(self) -> User | None:
        return self._user

    @property
    def current_room_id(self) -> str | None:
        return self._room_id

    @property
    def draft_room_code(self) -> str | None:
        return self._draft_room_code

    @property
    def is_active(self) -> bool:
        return self._user is not None and self._room_id is not None

    def require_active(self) -> tuple[User, str]:
        """Return (user, room_id) or raise NoActiveSession."""
        if self._user is None or self._room_id is None:
            raise NoActiveSession("No active user and room for this session.")
        return self._user, self._room_id

    def stored_identifiers(self) -> tuple[str | None, str | None]:
        """Return the (user_id, room_id) persisted for this scope."""
        return (
            self._db.get(self._scope, SettingsKey.CURRENT_USER_ID),
            self._db.get(self._scope, SettingsKey.CURRENT_ROOM_ID),
        )

    # ------------------------------------------------------------------
    # Session-change actions
    # ------------------------------------------------------------------

    def set_draft_room_code(self, code: str | None) -> None:
        """Remember (or forget) a code typed into the join form."""
        self._db.update(self._scope, {SettingsKey.DRAFT_ROOM_CODE: code})
        self._draft_room_code = code

    def commit_join(self, user: User, room_id: str) -> None:
        """Install a freshly provisioned user and room as the active session."""
        self._db.update(self._scope, {
            SettingsKey.CURRENT_USER_ID: user.id,
            SettingsKey.DRAFT_ROOM_CODE: None,
            SettingsKey.CURRENT_ROOM_ID: room_id,
        })
        self._user = user
        self._draft_room_code = None
        self._room_id = room_id
        logger.info(
            "Session %s committed: user=%s room=%s", self._scope, user.id, room_id,
        )

    def restore(self, user: User, room_id: str) -> None:
        """Re-install a session that was persisted by an earlier run."""
        self._db.update(self._scope, {SettingsKey.DRAFT_ROOM_CODE: None})
        self._user = user
        self._draft_room_code = None
        self._room_id = room_id
        logger.info("Session %s restored: user=%s room=%s", self._scope, user.id, room_id)

    def switch_room(self, room_id: str) -> None:
        """Make another room active for the current user."""
        if self._user is None:
            raise NoActiveSession("Cannot switch rooms without a current user.")
        self._db.update(self._scope, {SettingsKey.CURRENT_ROOM_ID: room_id})
        self._room_id = room_id
        logger.info("Session %s switched to room %s", self._scope, room_id)

    def clear(self) -> None:
        """Forget the user and the room together."""
        self._db.update(self._scope, {
            SettingsKey.CURRENT_USER_ID: None,
            SettingsKey.CURRENT_ROOM_ID: None,
            SettingsKey.DRAFT_ROOM_CODE: None,
        })
        self._user = None
        self._room_id = None
        self._draft_room_code = None
        logger.info("Session %s cleared", self._scope)


async def restore_session(
    session: SessionContext,
    remote: RemoteStorePort,
    tz_name: str = "UTC",
) -> bool:
    """Reload a persisted session from the settings store and the remote user.

    Returns True when both identifiers were found and the user record
    parsed. A user id without a room id (or the reverse) is left unset.
    Remote errors propagate.
    """
    scope = session.scope
    user_id, room_id = session.stored_identifiers()

    if not user_id or not room_id:
        if user_id or room_id:
            logger.info("Session %s is incomplete, needs setup", scope)
        return False

    raw = await call_remote(remote.read(f"users/{user_id}"))
    user = User.from_dict(raw, tz_name)
    if user is None:
        logger.warning("Session %s: user %s missing or malformed remotely", scope, user_id)
        return False

    session.restore(user, room_id)
    return True
