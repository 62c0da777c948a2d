"""SQLite persistence layer for Slack Attendance."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, List, Optional

from .clock import format_clock, utc_now
from .models import (
    REMINDER_STATUSES,
    SCHEDULED,
    AttendanceRecord,
    CheckInClaim,
    CheckOutClaim,
    ReminderEntry,
    ReminderStatus,
)

Connection = sqlite3.Connection
Row = sqlite3.Row


class ReminderNotFound(LookupError):
    """Raised when a reminder status update targets a missing queue entry."""

    def __init__(self, day: str, user_id: str) -> None:
        super().__init__(f"no reminder queued for {user_id} on {day}")
        self.date = day
        self.user_id = user_id


class ReminderTransitionError(ValueError):
    """Raised when a decided reminder would change status again."""


class Database:
    """Lightweight wrapper around SQLite operations.

    Every write that must be idempotent under concurrent duplicate requests
    runs inside a single ``BEGIN IMMEDIATE`` transaction, so the read and the
    conditional write hold the database write lock together.
    """

    def __init__(self, path: Path, *, timeout: float = 10.0) -> None:
        self._path = path
        self._timeout = timeout
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize()

    @contextmanager
    def connect(self) -> Iterator[Connection]:
        conn = sqlite3.connect(self._path, timeout=self._timeout, isolation_level=None)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[Connection]:
        with self.connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    def _initialize(self) -> None:
        with self.connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS reminder_queue (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    date TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    channel_id TEXT NOT NULL,
                    message_id TEXT NOT NULL,
                    post_at INTEGER NOT NULL,
                    status TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    UNIQUE(date, user_id)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS attendance (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    date TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    employee_name TEXT NOT NULL,
                    check_in_time TEXT NOT NULL,
                    check_out_time TEXT,
                    total_duration_seconds INTEGER,
                    first_check_in_at TEXT NOT NULL,
                    last_check_out_at TEXT,
                    UNIQUE(date, user_id)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS settings (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
                """
            )

    # region Reminder queue
    def find_reminder(self, day: str, user_id: str) -> Optional[ReminderEntry]:
        with self.connect() as conn:
            row = conn.execute(
                "SELECT * FROM reminder_queue WHERE date = ? AND user_id = ?",
                (day, user_id),
            ).fetchone()
            return _reminder_from_row(row) if row else None

    def upsert_reminder(self, entry: ReminderEntry) -> bool:
        """Insert or refresh a queue entry; returns False if it was already decided."""

        stamp = utc_now().isoformat()
        with self.connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO reminder_queue
                    (date, user_id, channel_id, message_id, post_at, status, created_at, updated_at)
                VALUES (:date, :user_id, :channel_id, :message_id, :post_at, :status, :stamp, :stamp)
                ON CONFLICT(date, user_id) DO UPDATE SET
                    channel_id=excluded.channel_id,
                    message_id=excluded.message_id,
                    post_at=excluded.post_at,
                    status=excluded.status,
                    updated_at=excluded.updated_at
                WHERE reminder_queue.status = 'scheduled'
                """,
                {
                    "date": entry.date,
                    "user_id": entry.user_id,
                    "channel_id": entry.channel_id,
                    "message_id": entry.message_id,
                    "post_at": entry.post_at,
                    "status": entry.status,
                    "stamp": stamp,
                },
            )
            return cursor.rowcount > 0

    def set_reminder_status(self, day: str, user_id: str, status: ReminderStatus) -> None:
        if status not in REMINDER_STATUSES:
            raise ValueError(f"unknown reminder status: {status!r}")
        with self.transaction() as conn:
            row = conn.execute(
                "SELECT status FROM reminder_queue WHERE date = ? AND user_id = ?",
                (day, user_id),
            ).fetchone()
            if row is None:
                raise ReminderNotFound(day, user_id)
            current = row["status"]
            if current == status:
                return
            if current != SCHEDULED:
                raise ReminderTransitionError(
                    f"reminder for {user_id} on {day} is already {current}"
                )
            conn.execute(
                """
                UPDATE reminder_queue SET status = ?, updated_at = ?
                WHERE date = ? AND user_id = ?
                """,
                (status, utc_now().isoformat(), day, user_id),
            )

    def get_reminders_by_date(self, day: str) -> List[ReminderEntry]:
        with self.connect() as conn:
            cursor = conn.execute(
                "SELECT * FROM reminder_queue WHERE date = ? ORDER BY user_id",
                (day,),
            )
            return [_reminder_from_row(row) for row in cursor.fetchall()]

    # endregion

    # region Attendance
    def claim_check_in(
        self, day: str, user_id: str, employee_name: str, now: datetime
    ) -> CheckInClaim:
        with self.transaction() as conn:
            row = conn.execute(
                "SELECT * FROM attendance WHERE date = ? AND user_id = ?",
                (day, user_id),
            ).fetchone()
            if row is not None:
                return CheckInClaim(created=False, record=_attendance_from_row(row))

            record = AttendanceRecord(
                date=day,
                user_id=user_id,
                employee_name=employee_name,
                check_in_time=format_clock(now),
                first_check_in_at=now,
            )
            conn.execute(
                """
                INSERT INTO attendance
                    (date, user_id, employee_name, check_in_time, first_check_in_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (day, user_id, employee_name, record.check_in_time, now.isoformat()),
            )
            return CheckInClaim(created=True, record=record)

    def claim_check_out(
        self, day: str, user_id: str, employee_name: str, now: datetime
    ) -> CheckOutClaim:
        with self.transaction() as conn:
            row = conn.execute(
                "SELECT * FROM attendance WHERE date = ? AND user_id = ?",
                (day, user_id),
            ).fetchone()
            if row is None:
                return CheckOutClaim(eligible=False)

            record = _attendance_from_row(row)
            if record.checked_out:
                return CheckOutClaim(eligible=True, already_done=True, record=record)

            duration = int((now - record.first_check_in_at).total_seconds())
            record.check_out_time = format_clock(now)
            record.last_check_out_at = now
            record.total_duration_seconds = max(duration, 0)
            if not record.employee_name:
                record.employee_name = employee_name
            conn.execute(
                """
                UPDATE attendance SET
                    employee_name = ?,
                    check_out_time = ?,
                    total_duration_seconds = ?,
                    last_check_out_at = ?
                WHERE date = ? AND user_id = ?
                """,
                (
                    record.employee_name,
                    record.check_out_time,
                    record.total_duration_seconds,
                    now.isoformat(),
                    day,
                    user_id,
                ),
            )
            return CheckOutClaim(eligible=True, already_done=False, record=record)

    def get_attendance(self, day: str, user_id: str) -> Optional[AttendanceRecord]:
        with self.connect() as conn:
            row = conn.execute(
                "SELECT * FROM attendance WHERE date = ? AND user_id = ?",
                (day, user_id),
            ).fetchone()
            return _attendance_from_row(row) if row else None

    def get_attendance_by_date(self, day: str) -> List[AttendanceRecord]:
        with self.connect() as conn:
            cursor = conn.execute(
                "SELECT * FROM attendance WHERE date = ? ORDER BY first_check_in_at",
                (day,),
            )
            return [_attendance_from_row(row) for row in cursor.fetchall()]

    # endregion

    # region Settings
    def get_setting(self, key: str) -> Optional[str]:
        with self.connect() as conn:
            row = conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
            return row["value"] if row and row["value"] else None

    def set_setting(self, key: str, value: str) -> None:
        with self.connect() as conn:
            conn.execute(
                """
                INSERT INTO settings (key, value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value
                """,
                (key, value),
            )

    # endregion


def _reminder_from_row(row: Row) -> ReminderEntry:
    return ReminderEntry(
        date=row["date"],
        user_id=row["user_id"],
        channel_id=row["channel_id"],
        message_id=row["message_id"],
        post_at=int(row["post_at"]),
        status=row["status"],
    )


def _parse_instant(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _attendance_from_row(row: Row) -> AttendanceRecord:
    return AttendanceRecord(
        date=row["date"],
        user_id=row["user_id"],
        employee_name=row["employee_name"],
        check_in_time=row["check_in_time"],
        first_check_in_at=datetime.fromisoformat(row["first_check_in_at"]),
        check_out_time=row["check_out_time"],
        last_check_out_at=_parse_instant(row["last_check_out_at"]),
        total_duration_seconds=row["total_duration_seconds"],
    )


__all__ = ["Database", "ReminderNotFound", "ReminderTransitionError"]
