"""
Tolerance Tracker — Invitation Join Saga.

Admits a new caregiver into a room from an invitation code. The remote
store has no transactions, so the join is a forward-only sequence of
individually committed steps:

    VALIDATING_INVITATION -> VERIFYING_ROOM -> WRITING_USER
    -> GRANTING_ACCESS -> MARKING_INVITATION -> COMMITTING -> DONE

Each step runs only after the previous one succeeded. Nothing is rolled
back: a failure while granting access leaves an orphaned user record.
Marking the invitation accepted is the one non-fatal step: the user is
already fully provisioned, so its failure is logged and the join still
commits. The local session is touched only in COMMITTING, after every
remote write succeeded; if saving it fails the remote user stays
provisioned and the join reports SESSION_SAVE_FAILED.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from src.core.remote_call import call_remote
from src.data.models import Invitation, InvitationStatus, User
from src.ports.remote_store_port import RemoteConnectionError, RemoteStoreError

if TYPE_CHECKING:
    from typing import Awaitable

    from src.core.session import SessionContext
    from src.ports.remote_store_port import RemoteStorePort

logger = logging.getLogger(__name__)

# Characters the remote store does not allow inside a path segment
_FORBIDDEN_KEY_CHARS = set(".#$[]/")


class JoinStage(Enum):
    VALIDATING_INVITATION = "validating_invitation"
    VERIFYING_ROOM = "verifying_room"
    WRITING_USER = "writing_user"
    GRANTING_ACCESS = "granting_access"
    MARKING_INVITATION = "marking_invitation"
    COMMITTING = "committing"
    DONE = "done"


class JoinErrorKind(Enum):
    INVALID_INVITATION = "invalid_invitation"
    ROOM_GONE = "room_gone"
    USER_WRITE_FAILED = "user_write_failed"
    ACCESS_GRANT_FAILED = "access_grant_failed"
    CONNECTION_ERROR = "connection_error"
    SESSION_SAVE_FAILED = "session_save_failed"
    ALREADY_IN_PROGRESS = "already_in_progress"


class JoinError(Exception):
    """A join that halted. ``stage`` is where it stopped."""

    def __init__(self, kind: JoinErrorKind, stage: JoinStage, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.stage = stage


@dataclass
class JoinResult:
    user: User
    room_id: str
    invitation_marked: bool = True

    @property
    def user_id(self) -> str:
        return self.user.id


class JoinSaga:
    """Runs invitation joins for one device.

    Holds an in-flight set so the same code can't be joined twice
    concurrently from this device.
    """

    def __init__(
        self,
        remote: RemoteStorePort,
        session: SessionContext,
        timeout: float | None = None,
    ) -> None:
        self._remote = remote
        self._session = session
        self._timeout = timeout
        self._in_flight: set[str] = set()

    async def join(self, code: str, display_name: str) -> JoinResult:
        """Join the room behind ``code`` as a new user named ``display_name``.

        Raises JoinError on any fatal step.
        """
        if code in self._in_flight:
            raise JoinError(
                JoinErrorKind.ALREADY_IN_PROGRESS,
                JoinStage.VALIDATING_INVITATION,
                f"A join with code {code!r} is already in progress.",
            )
        self._in_flight.add(code)
        try:
            return await self._run(code, display_name)
        finally:
            self._in_flight.discard(code)

    async def _run(self, code: str, display_name: str) -> JoinResult:
        # 1. Invitation
        stage = self._enter(JoinStage.VALIDATING_INVITATION, code)
        invitation = await self._read_invitation(code, stage)
        room_id = invitation.room_id

        # 2. Room
        stage = self._enter(JoinStage.VERIFYING_ROOM, code)
        room = await self._guarded(
            self._remote.read(f"rooms/{room_id}"), JoinErrorKind.CONNECTION_ERROR, stage,
        )
        if room is None:
            raise JoinError(
                JoinErrorKind.ROOM_GONE,
                stage,
                f"Room {room_id} referenced by invitation {code!r} no longer exists.",
            )

        # 3. Synthesize the user (local only)
        user = User.create(display_name, is_admin=invitation.is_admin)
        logger.info("Join %s: new user %s (admin=%s)", code, user.id, user.is_admin)

        # 4. User record
        stage = self._enter(JoinStage.WRITING_USER, code)
        await self._guarded(
            self._remote.write(f"users/{user.id}", user.to_dict()),
            JoinErrorKind.USER_WRITE_FAILED,
            stage,
        )

        # 5. Room access
        stage = self._enter(JoinStage.GRANTING_ACCESS, code)
        await self._guarded(
            self._remote.write(f"users/{user.id}/roomAccess/{room_id}", True),
            JoinErrorKind.ACCESS_GRANT_FAILED,
            stage,
        )

        # 6. Consume the invitation (non-fatal)
        self._enter(JoinStage.MARKING_INVITATION, code)
        marked = True
        try:
            await call_remote(
                self._remote.merge(f"invitations/{code}", {
                    "status": InvitationStatus.ACCEPTED.value,
                    "acceptedBy": user.id,
                }),
                self._timeout,
            )
        except RemoteStoreError as exc:
            marked = False
            logger.warning(
                "Join %s: failed to mark invitation accepted, continuing: %s", code, exc,
            )

        # 7. Local session
        stage = self._enter(JoinStage.COMMITTING, code)
        try:
            self._session.commit_join(user, room_id)
        except (sqlite3.Error, OSError) as exc:
            logger.error("Join %s: user %s provisioned but session not saved: %s",
                         code, user.id, exc)
            raise JoinError(
                JoinErrorKind.SESSION_SAVE_FAILED, stage,
                f"Joined room {room_id} but could not save the session: {exc}",
            ) from exc

        self._enter(JoinStage.DONE, code)
        return JoinResult(user=user, room_id=room_id, invitation_marked=marked)

    async def _read_invitation(self, code: str, stage: JoinStage) -> Invitation:
        if not code or _FORBIDDEN_KEY_CHARS & set(code):
            raise JoinError(
                JoinErrorKind.INVALID_INVITATION, stage,
                f"Invitation code {code!r} is malformed.",
            )

        raw = await self._guarded(
            self._remote.read(f"invitations/{code}"), JoinErrorKind.CONNECTION_ERROR, stage,
        )
        invitation = Invitation.from_dict(code, raw)
        if invitation is None or not invitation.is_joinable:
            status = invitation.status if invitation else "missing"
            logger.info("Join %s: invitation not joinable (status=%s)", code, status)
            raise JoinError(
                JoinErrorKind.INVALID_INVITATION, stage,
                f"Invitation {code!r} is invalid or expired.",
            )
        return invitation

    async def _guarded(self, awaitable: Awaitable, failure: JoinErrorKind, stage: JoinStage):
        """Await a remote step, mapping store errors onto JoinError."""
        try:
            return await call_remote(awaitable, self._timeout)
        except RemoteConnectionError as exc:
            logger.error("Join halted at %s: connection failure: %s", stage.value, exc)
            raise JoinError(JoinErrorKind.CONNECTION_ERROR, stage, str(exc)) from exc
        except RemoteStoreError as exc:
            logger.error("Join halted at %s: %s", stage.value, exc)
            raise JoinError(failure, stage, str(exc)) from exc

    @staticmethod
    def _enter(stage: JoinStage, code: str) -> JoinStage:
        logger.info("Join %s: %s", code, stage.value)
        return stage
