"""Configuration helpers for Slack Attendance."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .clock import is_valid_hhmm

DEFAULT_REMINDER_TIME = "09:10"


@dataclass(slots=True, frozen=True)
class Settings:
    """Runtime configuration values loaded from environment variables."""

    slack_bot_token: str
    attendance_channel_id: str
    attendance_signing_secret: str
    app_base_url: str
    cron_secret: str
    admin_key: str
    database_path: Path
    office_ip_allowlist: tuple[str, ...] = ()
    slack_signing_secret: Optional[str] = None
    default_reminder_time: str = DEFAULT_REMINDER_TIME
    reminder_delay_seconds: float = 0.2


def parse_allowlist(raw: str | None) -> tuple[str, ...]:
    """Split a comma separated address list, dropping blank entries."""

    if not raw:
        return ()
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def _require(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise RuntimeError(f"{name} must be configured")
    return value


def load_settings(env_file: str | None = None) -> Settings:
    """Load settings from the environment, optionally from a specific file."""

    if env_file:
        load_dotenv(env_file)
    else:
        load_dotenv()

    slack_token = _require("SLACK_BOT_TOKEN")
    channel_id = _require("SLACK_ATTENDANCE_CHANNEL_ID")
    signing_secret = _require("ATTENDANCE_SIGNING_SECRET")
    base_url = _require("APP_BASE_URL")
    cron_secret = _require("CRON_SECRET")
    admin_key = _require("ADMIN_KEY")

    reminder_time = os.getenv("DEFAULT_REMINDER_TIME", DEFAULT_REMINDER_TIME)
    if not is_valid_hhmm(reminder_time):
        raise RuntimeError("DEFAULT_REMINDER_TIME must use HH:mm (24-hour)")

    db_path = Path(os.getenv("DATABASE_PATH", "slack_attendance.db")).expanduser()

    return Settings(
        slack_bot_token=slack_token,
        attendance_channel_id=channel_id,
        attendance_signing_secret=signing_secret,
        app_base_url=base_url.rstrip("/"),
        cron_secret=cron_secret,
        admin_key=admin_key,
        database_path=db_path,
        office_ip_allowlist=parse_allowlist(os.getenv("OFFICE_IP_ALLOWLIST")),
        slack_signing_secret=os.getenv("SLACK_SIGNING_SECRET") or None,
        default_reminder_time=reminder_time,
        reminder_delay_seconds=float(os.getenv("REMINDER_DELAY_SECONDS", "0.2")),
    )


__all__ = ["DEFAULT_REMINDER_TIME", "Settings", "load_settings", "parse_allowlist"]
