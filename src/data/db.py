"""
Tolerance Tracker — Local Settings Database.

On-device persistence for session identifiers (current user, current room,
draft room code). Every value is scoped to one chat, which plays the role
of a device: two chats never see each other's session.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from enum import Enum
from pathlib import Path

logger = logging.getLogger(__name__)


class SettingsKey(str, Enum):
    CURRENT_USER_ID = "currentUserId"
    CURRENT_ROOM_ID = "currentRoomId"
    DRAFT_ROOM_CODE = "roomCode"


class SettingsDB:
    """SQLite-backed key-value store for local session settings."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from src.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS settings (
                    scope       TEXT NOT NULL,
                    key         TEXT NOT NULL,
                    value       TEXT NOT NULL,
                    updated_at  TEXT NOT NULL,
                    PRIMARY KEY (scope, key)
                )
            """)
        logger.debug("Settings table initialized at %s", self._db_path)

    def get(self, scope: str, key: SettingsKey) -> str | None:
        """Return the stored value, or None if the key is unset."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT value FROM settings WHERE scope = ? AND key = ?",
                (scope, key.value),
            ).fetchone()
        if row is None:
            return None
        return row["value"]

    def set(self, scope: str, key: SettingsKey, value: str) -> None:
        self.update(scope, {key: value})

    def remove(self, scope: str, key: SettingsKey) -> None:
        self.update(scope, {key: None})

    def update(self, scope: str, values: dict[SettingsKey, str | None]) -> None:
        """Apply several sets/removes in one transaction. None removes a key."""
        now = datetime.now().isoformat()
        with self._connect() as conn:
            for key, value in values.items():
                if value is None:
                    conn.execute(
                        "DELETE FROM settings WHERE scope = ? AND key = ?",
                        (scope, key.value),
                    )
                else:
                    conn.execute(
                        """
                        INSERT INTO settings (scope, key, value, updated_at)
                        VALUES (?, ?, ?, ?)
                        ON CONFLICT (scope, key)
                        DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                        """,
                        (scope, key.value, value, now),
                    )
        logger.debug(
            "Settings updated for scope %s: %s",
            scope, ", ".join(k.value for k in values),
        )

    def list_scopes(self) -> list[str]:
        """Return every scope that has at least one stored setting."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT DISTINCT scope FROM settings ORDER BY scope"
            ).fetchall()
        return [r["scope"] for r in rows]
