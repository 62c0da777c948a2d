from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest

from conftest import MORNING
from slack_attendance.db import ReminderNotFound, ReminderTransitionError
from slack_attendance.models import CANCELLED, SCHEDULED, SENT, ReminderEntry

DAY = "2025-01-15"


def _entry(user="U1", message="Q1", status=SCHEDULED):
    return ReminderEntry(
        date=DAY, user_id=user, channel_id=f"D{user}", message_id=message, post_at=1736914200, status=status
    )


def test_check_in_claim_is_idempotent(database):
    first = database.claim_check_in(DAY, "U1", "Ayesha Khan", MORNING)
    second = database.claim_check_in(DAY, "U1", "Ayesha Khan", MORNING + timedelta(minutes=2))

    assert first.created is True
    assert first.record.check_in_time == "09:05:00"
    assert second.created is False
    assert second.record.check_in_time == "09:05:00"
    assert second.record.first_check_in_at == MORNING
    assert len(database.get_attendance_by_date(DAY)) == 1


def test_check_in_is_partitioned_by_day(database):
    database.claim_check_in(DAY, "U1", "Ayesha Khan", MORNING)
    next_day = database.claim_check_in("2025-01-16", "U1", "Ayesha Khan", MORNING + timedelta(days=1))
    assert next_day.created is True


def test_concurrent_check_in_creates_one_row(database):
    def claim(offset):
        return database.claim_check_in(DAY, "U1", "Ayesha Khan", MORNING + timedelta(seconds=offset))

    with ThreadPoolExecutor(max_workers=8) as pool:
        claims = list(pool.map(claim, range(8)))

    assert sum(1 for c in claims if c.created) == 1
    times = {c.record.check_in_time for c in claims}
    assert len(times) == 1


def test_check_out_without_check_in_is_not_eligible(database):
    claim = database.claim_check_out(DAY, "U3", "Chen Wei", MORNING)
    assert claim.eligible is False
    assert claim.record is None
    assert database.get_attendance(DAY, "U3") is None


def test_check_out_fills_duration_once(database):
    database.claim_check_in(DAY, "U1", "Ayesha Khan", MORNING)
    leave = MORNING + timedelta(hours=8, minutes=19)
    claim = database.claim_check_out(DAY, "U1", "Ayesha Khan", leave)

    assert claim.eligible and not claim.already_done
    assert claim.record.check_out_time == "17:24:00"
    assert claim.record.total_duration_seconds == (8 * 60 + 19) * 60

    again = database.claim_check_out(DAY, "U1", "Ayesha Khan", leave + timedelta(hours=1))
    assert again.already_done is True
    assert again.record.check_out_time == "17:24:00"
    assert again.record.total_duration_seconds == (8 * 60 + 19) * 60

    stored = database.get_attendance(DAY, "U1")
    assert stored.last_check_out_at == leave


def test_duration_never_negative(database):
    database.claim_check_in(DAY, "U1", "Ayesha Khan", MORNING)
    claim = database.claim_check_out(DAY, "U1", "Ayesha Khan", MORNING - timedelta(seconds=5))
    assert claim.record.total_duration_seconds == 0


def test_upsert_reminder_inserts_and_refreshes_scheduled(database):
    assert database.upsert_reminder(_entry(message="Q1"))
    assert database.upsert_reminder(_entry(message="Q2"))
    assert database.find_reminder(DAY, "U1").message_id == "Q2"
    assert database.find_reminder(DAY, "U2") is None


@pytest.mark.parametrize("terminal", [CANCELLED, SENT])
def test_upsert_never_reverts_decided_reminder(database, terminal):
    database.upsert_reminder(_entry())
    database.set_reminder_status(DAY, "U1", terminal)

    assert database.upsert_reminder(_entry(message="Q9")) is False
    stored = database.find_reminder(DAY, "U1")
    assert stored.status == terminal
    assert stored.message_id == "Q1"


def test_set_status_missing_entry_raises(database):
    with pytest.raises(ReminderNotFound):
        database.set_reminder_status(DAY, "U1", CANCELLED)


def test_set_status_is_monotonic(database):
    database.upsert_reminder(_entry())
    database.set_reminder_status(DAY, "U1", CANCELLED)
    database.set_reminder_status(DAY, "U1", CANCELLED)
    with pytest.raises(ReminderTransitionError):
        database.set_reminder_status(DAY, "U1", SENT)
    with pytest.raises(ReminderTransitionError):
        database.set_reminder_status(DAY, "U1", SCHEDULED)


def test_reminders_listed_by_day(database):
    database.upsert_reminder(_entry("U2"))
    database.upsert_reminder(_entry("U1"))
    assert [e.user_id for e in database.get_reminders_by_date(DAY)] == ["U1", "U2"]
    assert database.get_reminders_by_date("2025-01-16") == []


def test_settings_round_trip(database):
    assert database.get_setting("attendanceReminderTime") is None
    database.set_setting("attendanceReminderTime", "09:30")
    database.set_setting("attendanceReminderTime", "10:00")
    assert database.get_setting("attendanceReminderTime") == "10:00"
