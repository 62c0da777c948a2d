"""Local-time helpers for the office calendar (UTC+05:00, no DST)."""

from __future__ import annotations

import re
from datetime import date, datetime, timedelta, timezone
from typing import Callable

LOCAL_TZ = timezone(timedelta(hours=5), "PKT")
HHMM_RE = re.compile(r"^([0-1][0-9]|2[0-3]):[0-5][0-9]$")

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def local_now(now: datetime | None = None) -> datetime:
    return (now or utc_now()).astimezone(LOCAL_TZ)


def date_key(now: datetime | None = None) -> str:
    """Return the ``YYYY-MM-DD`` partition key for ``now`` in local time."""

    return local_now(now).date().isoformat()


def parse_date_key(value: str) -> date:
    return datetime.strptime(value, "%Y-%m-%d").date()


def is_valid_hhmm(value: str | None) -> bool:
    return bool(value) and HHMM_RE.fullmatch(value) is not None


def local_time_to_epoch(day_key: str, hhmm: str) -> int:
    """Convert a local date and ``HH:mm`` wall time into UTC epoch seconds."""

    if not is_valid_hhmm(hhmm):
        raise ValueError(f"invalid time of day: {hhmm!r}")
    hour, minute = (int(part) for part in hhmm.split(":"))
    local = datetime.combine(parse_date_key(day_key), datetime.min.time(), tzinfo=LOCAL_TZ)
    return int((local + timedelta(hours=hour, minutes=minute)).timestamp())


def format_clock(moment: datetime) -> str:
    return local_now(moment).strftime("%H:%M:%S")


def format_hhmm(moment: datetime) -> str:
    return local_now(moment).strftime("%H:%M")


def format_duration(seconds: float) -> str:
    """Render a duration as ``"5h 19m"``, or ``"5h"`` on a whole hour."""

    total_minutes = round(max(seconds, 0) / 60)
    hours, minutes = divmod(total_minutes, 60)
    if minutes == 0:
        return f"{hours}h"
    return f"{hours}h {minutes}m"


__all__ = [
    "Clock",
    "HHMM_RE",
    "LOCAL_TZ",
    "date_key",
    "format_clock",
    "format_duration",
    "format_hhmm",
    "is_valid_hhmm",
    "local_now",
    "local_time_to_epoch",
    "parse_date_key",
    "utc_now",
]
