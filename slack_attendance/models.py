"""Dataclasses representing Slack Attendance domain models."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Literal, Optional

Action = Literal["checkin", "checkout"]
ReminderStatus = Literal["scheduled", "cancelled", "sent"]

CHECKIN: Action = "checkin"
CHECKOUT: Action = "checkout"

SCHEDULED: ReminderStatus = "scheduled"
CANCELLED: ReminderStatus = "cancelled"
SENT: ReminderStatus = "sent"
REMINDER_STATUSES = frozenset({SCHEDULED, CANCELLED, SENT})


@dataclass(slots=True)
class ReminderEntry:
    date: str
    user_id: str
    channel_id: str
    message_id: str
    post_at: int
    status: ReminderStatus = SCHEDULED


@dataclass(slots=True)
class AttendanceRecord:
    date: str
    user_id: str
    employee_name: str
    check_in_time: str
    first_check_in_at: datetime
    check_out_time: Optional[str] = None
    last_check_out_at: Optional[datetime] = None
    total_duration_seconds: Optional[int] = None

    @property
    def checked_out(self) -> bool:
        return self.check_out_time is not None


@dataclass(slots=True)
class CheckInClaim:
    created: bool
    record: AttendanceRecord


@dataclass(slots=True)
class CheckOutClaim:
    eligible: bool
    already_done: bool = False
    record: Optional[AttendanceRecord] = None


@dataclass(slots=True)
class ScheduleReport:
    date: str
    reminder_time: str
    post_at: int
    total_members: int = 0
    scheduled: int = 0
    skipped: int = 0
    errors: int = 0


@dataclass(slots=True)
class DueReminderReport:
    date: str
    checked_in: int = 0
    total_members: int = 0
    reminders_sent: int = 0
    errors: int = 0


__all__ = [
    "Action",
    "AttendanceRecord",
    "CANCELLED",
    "CHECKIN",
    "CHECKOUT",
    "CheckInClaim",
    "CheckOutClaim",
    "DueReminderReport",
    "REMINDER_STATUSES",
    "ReminderEntry",
    "ReminderStatus",
    "SCHEDULED",
    "SENT",
    "ScheduleReport",
]
