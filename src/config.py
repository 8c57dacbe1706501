"""
Tolerance Tracker — Centralized configuration.

Loads all settings from .env and validates required keys.
This module is the foundation for every other module in the project.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (two levels up from src/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Telegram
    TELEGRAM_BOT_TOKEN: str

    # Remote store provider: "firebase" | "memory"
    REMOTE_STORE_PROVIDER: str = "firebase"

    # Firebase Realtime Database (only needed when REMOTE_STORE_PROVIDER=firebase)
    FIREBASE_DATABASE_URL: str = ""
    FIREBASE_CREDENTIALS_PATH: str = ""

    # Per-step timeout for every remote call, in seconds
    REMOTE_TIMEOUT_SECONDS: float = 10.0

    # SQLite: local session settings (current user / room per chat)
    DATABASE_PATH: str = "data/settings.db"

    # Security
    ALLOWED_USER_IDS: list[int] = []

    # Reminders
    TIMEZONE: str = "UTC"
    DEFAULT_REMINDER_TIME: str = "09:00"
    APP_DISPLAY_NAME: str = "TIPs Program"

    @field_validator("ALLOWED_USER_IDS", mode="before")
    @classmethod
    def parse_user_ids(cls, v: str | list[int]) -> list[int]:
        if isinstance(v, list):
            return v
        if isinstance(v, str) and v.strip():
            return [int(uid.strip()) for uid in v.split(",") if uid.strip()]
        return []

    @field_validator("REMOTE_TIMEOUT_SECONDS", mode="before")
    @classmethod
    def parse_timeout(cls, v: str | float) -> float:
        return float(v)

    @field_validator("TIMEZONE")
    @classmethod
    def check_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"TIMEZONE must be an IANA time zone, got {v!r}") from exc
        return v

    @field_validator("DEFAULT_REMINDER_TIME")
    @classmethod
    def check_reminder_time(cls, v: str) -> str:
        hour, _, minute = v.strip().partition(":")
        if not (hour.isdigit() and minute.isdigit()):
            raise ValueError(f"DEFAULT_REMINDER_TIME must be HH:MM, got {v!r}")
        if not (0 <= int(hour) <= 23 and 0 <= int(minute) <= 59):
            raise ValueError(f"DEFAULT_REMINDER_TIME out of range: {v!r}")
        return f"{int(hour):02d}:{int(minute):02d}"


def _load_settings() -> Settings:
    """Load settings from environment, validating required keys."""
    token = os.getenv("TELEGRAM_BOT_TOKEN", "")

    if not token or token.startswith("your-"):
        print("ERROR: TELEGRAM_BOT_TOKEN is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    return Settings(
        TELEGRAM_BOT_TOKEN=token,
        REMOTE_STORE_PROVIDER=os.getenv("REMOTE_STORE_PROVIDER", "firebase"),
        FIREBASE_DATABASE_URL=os.getenv("FIREBASE_DATABASE_URL", ""),
        FIREBASE_CREDENTIALS_PATH=os.getenv("FIREBASE_CREDENTIALS_PATH", ""),
        REMOTE_TIMEOUT_SECONDS=os.getenv("REMOTE_TIMEOUT_SECONDS", "10"),
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/settings.db"),
        ALLOWED_USER_IDS=os.getenv("ALLOWED_USER_IDS", ""),
        TIMEZONE=os.getenv("TIMEZONE", "UTC"),
        DEFAULT_REMINDER_TIME=os.getenv("DEFAULT_REMINDER_TIME", "09:00"),
        APP_DISPLAY_NAME=os.getenv("APP_DISPLAY_NAME", "TIPs Program"),
    )


# Singleton — imported by all other modules as:
#   from src.config import settings
settings = _load_settings()
