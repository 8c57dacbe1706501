"""
Tolerance Tracker — Room session actions.

Switching between joined rooms, leaving a room, and signing out. These are
the explicit session-change actions besides the join saga's commit.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from src.core.remote_call import call_remote

if TYPE_CHECKING:
    from src.core.reminders import ReminderReconciler
    from src.core.session import SessionContext
    from src.ports.remote_store_port import RemoteStorePort

logger = logging.getLogger(__name__)


class RoomAccessDenied(Exception):
    """The current user has no access entry for the requested room."""


def _has_access(entry: object) -> bool:
    # Older clients store True, newer ones {"isActive": ..., "joinedAt": ...}
    return entry is True or isinstance(entry, dict)


async def switch_room(
    session: SessionContext,
    remote: RemoteStorePort,
    reconciler: ReminderReconciler,
    room_id: str,
) -> None:
    """Make ``room_id`` the active room after checking the user may access it.

    Reminders scheduled for the previous room stay in place.
    """
    user, current = session.require_active()
    if room_id == current:
        return

    entry = await call_remote(remote.read(f"users/{user.id}/roomAccess/{room_id}"))
    if not _has_access(entry):
        logger.warning("User %s has no access to room %s", user.id, room_id)
        raise RoomAccessDenied(f"You don't have access to room {room_id}.")

    session.switch_room(room_id)
    await reconciler.load_room_settings(user.id, room_id)


async def leave_room(
    session: SessionContext,
    remote: RemoteStorePort,
    reconciler: ReminderReconciler,
    room_id: str,
) -> str | None:
    """Leave a room and drop its reminders.

    When the active room is left, the session moves to another accessible
    room or, if none is left, is cleared entirely. Returns the room that is
    active afterwards.
    """
    user, current = session.require_active()

    access = await call_remote(remote.read(f"users/{user.id}/roomAccess"))
    await call_remote(remote.delete(f"users/{user.id}/roomAccess/{room_id}"))
    await call_remote(remote.delete(f"rooms/{room_id}/users/{user.id}"))
    await reconciler.cancel_room(user.id, room_id)
    logger.info("User %s left room %s", user.id, room_id)

    if room_id != current:
        return current

    remaining = [
        rid for rid, entry in sorted((access or {}).items())
        if rid != room_id and _has_access(entry)
    ]
    if not remaining:
        session.clear()
        return None

    next_room = remaining[0]
    session.switch_room(next_room)
    await reconciler.load_room_settings(user.id, next_room)
    return next_room


async def sign_out(session: SessionContext, reconciler: ReminderReconciler) -> None:
    """Cancel the user's reminders in every room and forget the session."""
    user = session.current_user
    if user is not None:
        await reconciler.cancel_user(user.id)
    session.clear()
