"""Firebase Realtime Database adapter — implements RemoteStorePort.

Uses the firebase-admin SDK (sync) wrapped with asyncio.to_thread for async
compatibility. The app is initialized lazily under its own name so it never
collides with a default app created elsewhere in the process.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

import firebase_admin
from firebase_admin import credentials, db
from firebase_admin import exceptions as firebase_exceptions

from src.config import settings
from src.ports.remote_store_port import RemoteConnectionError, RemoteStoreError

logger = logging.getLogger(__name__)

_APP_NAME = "tolerance-tracker"

_TRANSPORT_ERRORS = (
    firebase_exceptions.UnavailableError,
    firebase_exceptions.DeadlineExceededError,
    firebase_exceptions.CancelledError,
)


def _get_app() -> firebase_admin.App:
    """Return the named Firebase app, initializing it on first use."""
    try:
        return firebase_admin.get_app(_APP_NAME)
    except ValueError:
        pass

    if not settings.FIREBASE_DATABASE_URL:
        raise RemoteStoreError("FIREBASE_DATABASE_URL is not set.")

    if settings.FIREBASE_CREDENTIALS_PATH:
        cred = credentials.Certificate(settings.FIREBASE_CREDENTIALS_PATH)
        logger.info("Using Firebase credentials file %s", settings.FIREBASE_CREDENTIALS_PATH)
    else:
        cred = credentials.ApplicationDefault()
        logger.info("Using Firebase application default credentials")

    app = firebase_admin.initialize_app(
        cred, {"databaseURL": settings.FIREBASE_DATABASE_URL}, name=_APP_NAME,
    )
    logger.info("Firebase app initialized for %s", settings.FIREBASE_DATABASE_URL)
    return app


class FirebaseRemoteStore:
    """Firebase Realtime Database implementation of RemoteStorePort."""

    async def read(self, path: str) -> Any | None:
        return await self._run("read", path, lambda ref: ref.get())

    async def write(self, path: str, value: Any) -> None:
        await self._run("write", path, lambda ref: ref.set(value))

    async def merge(self, path: str, fields: dict[str, Any]) -> None:
        await self._run("merge", path, lambda ref: ref.update(fields))

    async def delete(self, path: str) -> None:
        await self._run("delete", path, lambda ref: ref.delete())

    async def _run(self, op: str, path: str, fn: Callable[[db.Reference], Any]) -> Any:
        def _call() -> Any:
            ref = db.reference(path, app=_get_app())
            return fn(ref)

        try:
            return await asyncio.to_thread(_call)
        except RemoteStoreError:
            raise
        except _TRANSPORT_ERRORS as exc:
            logger.error("Firebase %s %s: transport failure: %s", op, path, exc)
            raise RemoteConnectionError(f"Failed to {op} {path}: {exc}") from exc
        except firebase_exceptions.FirebaseError as exc:
            logger.error("Firebase %s %s rejected: %s", op, path, exc)
            raise RemoteStoreError(f"Failed to {op} {path}: {exc}") from exc
        except (ValueError, TypeError) as exc:
            raise RemoteStoreError(f"Invalid {op} on {path}: {exc}") from exc
