from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlparse

import pytest

from slack_attendance.config import Settings
from slack_attendance.db import Database
from slack_attendance.security import NetworkGate, SignedLinkService
from slack_attendance.service import AttendanceService
from slack_attendance.slack_client import SlackApiError

OFFICE_IP = "203.0.113.7"
# 2025-01-15 09:05 PKT
MORNING = datetime(2025, 1, 15, 4, 5, tzinfo=timezone.utc)


class MutableClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now = self.now + timedelta(**delta)


class FakeSlackClient:
    """In-memory stand-in for the Slack Web API wrapper."""

    def __init__(self, members: Optional[List[str]] = None, names: Optional[Dict[str, str]] = None) -> None:
        self.members = list(members or [])
        self.names = names or {}
        self.opened: List[str] = []
        self.scheduled: List[Dict[str, Any]] = []
        self.cancelled: List[tuple[str, str]] = []
        self.posted: List[Dict[str, Any]] = []
        self.fail_open: set[str] = set()
        self.bots: set[str] = set()
        self.deleted: set[str] = set()
        self.fail_lookup: set[str] = set()
        self.cancel_error: Optional[Exception] = None
        self.post_error: Optional[Exception] = None
        self._counter = 0

    async def open_direct_channel(self, user_id: str) -> str:
        if user_id in self.fail_open:
            raise SlackApiError("conversations.open", "user_not_found")
        self.opened.append(user_id)
        return f"D{user_id}"

    async def schedule_message(self, channel_id, text, post_at, blocks=None) -> str:
        self._counter += 1
        message_id = f"Q{self._counter:04d}"
        self.scheduled.append(
            {"channel": channel_id, "text": text, "post_at": post_at, "blocks": blocks, "id": message_id}
        )
        return message_id

    async def cancel_scheduled_message(self, channel_id: str, message_id: str) -> None:
        self.cancelled.append((channel_id, message_id))
        if self.cancel_error is not None:
            raise self.cancel_error

    async def post_message(self, channel_id, text, blocks=None) -> None:
        if self.post_error is not None:
            raise self.post_error
        self.posted.append({"channel": channel_id, "text": text, "blocks": blocks})

    async def lookup_user(self, user_id: str) -> Dict[str, Any]:
        if user_id in self.fail_lookup:
            raise SlackApiError("users.info", "user_not_found")
        return {
            "id": user_id,
            "is_bot": user_id in self.bots,
            "deleted": user_id in self.deleted,
            "profile": {"real_name": self.names.get(user_id, "")},
        }

    async def lookup_user_display_name(self, user_id: str) -> str:
        return self.names.get(user_id, user_id)

    async def fetch_channel_members(self, channel_id: str, *, limit: int = 200):
        for member in self.members:
            yield member

    async def close(self) -> None:
        return None


def link_params(url: str) -> Dict[str, str]:
    return {key: values[0] for key, values in parse_qs(urlparse(url).query).items()}


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock(MORNING)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        slack_bot_token="xoxb-test",
        attendance_channel_id="CATT",
        attendance_signing_secret="link-secret",
        app_base_url="https://office.example.com",
        cron_secret="cron-secret",
        admin_key="admin-key",
        database_path=tmp_path / "attendance.db",
        office_ip_allowlist=(OFFICE_IP, "198.51.100.20"),
        slack_signing_secret="slack-secret",
        reminder_delay_seconds=0,
    )


@pytest.fixture
def database(settings: Settings) -> Database:
    return Database(settings.database_path)


@pytest.fixture
def slack() -> FakeSlackClient:
    return FakeSlackClient(members=["U1", "U2"], names={"U1": "Ayesha Khan", "U2": "Bilal Ahmed"})


@pytest.fixture
def links(settings: Settings, clock: MutableClock) -> SignedLinkService:
    return SignedLinkService(settings.attendance_signing_secret, settings.app_base_url, clock=clock)


@pytest.fixture
def service(settings, database, slack, links, clock) -> AttendanceService:
    return AttendanceService(
        settings,
        database,
        slack,
        links,
        NetworkGate(settings.office_ip_allowlist),
        clock=clock,
    )
