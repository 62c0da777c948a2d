import asyncio
from datetime import datetime, timezone

import pytest

from conftest import MORNING, FakeSlackClient, link_params
from slack_attendance.models import CANCELLED, SCHEDULED, ReminderEntry
from slack_attendance.scheduler import REMINDER_TIME_KEY, ReminderScheduler

# 2025-01-15 06:00 PKT, before the default 09:10 reminder
EARLY = datetime(2025, 1, 15, 1, 0, tzinfo=timezone.utc)
DAY = "2025-01-15"


class RecordingSleep:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


@pytest.fixture
def sleeper():
    return RecordingSleep()


@pytest.fixture
def scheduler(settings, database, slack, sleeper):
    return ReminderScheduler(settings, database, slack, clock=lambda: EARLY, sleep=sleeper)


def _existing(user, status=SCHEDULED):
    return ReminderEntry(
        date=DAY, user_id=user, channel_id=f"D{user}", message_id="Q-old", post_at=1736914200, status=status
    )


def test_schedules_every_member(scheduler, database, slack):
    report = asyncio.run(scheduler.run())

    assert (report.total_members, report.scheduled, report.skipped, report.errors) == (2, 2, 0, 0)
    assert report.date == DAY
    assert report.reminder_time == "09:10"
    assert report.post_at == int(datetime(2025, 1, 15, 4, 10, tzinfo=timezone.utc).timestamp())
    assert all(item["post_at"] == report.post_at for item in slack.scheduled)

    entry = database.find_reminder(DAY, "U2")
    assert entry.status == SCHEDULED
    assert entry.channel_id == "DU2"
    assert entry.message_id == slack.scheduled[1]["id"]


def test_member_with_scheduled_reminder_is_skipped(scheduler, database, slack):
    database.upsert_reminder(_existing("U1"))

    report = asyncio.run(scheduler.run())

    assert (report.scheduled, report.skipped, report.errors) == (1, 1, 0)
    assert slack.opened == ["U2"]
    assert database.find_reminder(DAY, "U1").message_id == "Q-old"


def test_cancelled_reminder_is_not_rescheduled(scheduler, database, slack):
    database.upsert_reminder(_existing("U1"))
    database.set_reminder_status(DAY, "U1", CANCELLED)

    report = asyncio.run(scheduler.run())

    assert report.skipped == 1
    assert database.find_reminder(DAY, "U1").status == CANCELLED


def test_one_member_failure_does_not_abort_run(settings, database, sleeper):
    slack = FakeSlackClient(members=["U1", "U2", "U3"])
    slack.fail_open.add("U2")
    scheduler = ReminderScheduler(settings, database, slack, clock=lambda: EARLY, sleep=sleeper)

    report = asyncio.run(scheduler.run())

    assert (report.scheduled, report.skipped, report.errors) == (2, 0, 1)
    assert database.find_reminder(DAY, "U2") is None
    assert database.find_reminder(DAY, "U3").status == SCHEDULED


def test_configured_reminder_time_is_used(scheduler, database, slack):
    database.set_setting(REMINDER_TIME_KEY, "10:30")

    report = asyncio.run(scheduler.run())

    assert report.reminder_time == "10:30"
    assert report.post_at == int(datetime(2025, 1, 15, 5, 30, tzinfo=timezone.utc).timestamp())


def test_pauses_between_members(scheduler, sleeper):
    asyncio.run(scheduler.run())
    assert sleeper.calls == [0]


def test_reminder_payload_has_no_expiring_link(scheduler, slack):
    asyncio.run(scheduler.run())
    blocks = slack.scheduled[0]["blocks"]
    assert not any(block["type"] == "actions" for block in blocks)
    assert "/check-in" in blocks[0]["text"]["text"]


@pytest.fixture
def due_scheduler(settings, database, links, clock, sleeper):
    slack = FakeSlackClient(members=["U1", "U2", "U3", "B1", "U4"], names={"U2": "Bilal Ahmed"})
    slack.bots.add("B1")
    slack.deleted.add("U4")
    return ReminderScheduler(settings, database, slack, clock=clock, sleep=sleeper, links=links)


def test_due_reminders_skip_checked_in_bots_and_deleted(due_scheduler, database, links):
    database.claim_check_in(DAY, "U1", "Ayesha Khan", MORNING)

    report = asyncio.run(due_scheduler.send_due_reminders())

    assert report.date == DAY
    assert (report.checked_in, report.total_members, report.reminders_sent, report.errors) == (1, 5, 2, 0)
    slack = due_scheduler.client
    assert [item["channel"] for item in slack.posted] == ["DU2", "DU3"]

    button = next(block for block in slack.posted[0]["blocks"] if block["type"] == "actions")
    params = link_params(button["elements"][0]["url"])
    assert params["subject"] == "U2"
    assert links.verify("checkin", "U2", int(params["issuedAt"]), params["signature"])


def test_due_reminders_leave_out_unreadable_profiles(due_scheduler):
    due_scheduler.client.fail_lookup.add("U2")

    report = asyncio.run(due_scheduler.send_due_reminders())

    assert report.reminders_sent == 1
    assert [item["channel"] for item in due_scheduler.client.posted] == ["DU3"]


def test_due_reminder_failure_is_counted(due_scheduler, sleeper):
    due_scheduler.client.fail_open.add("U2")

    report = asyncio.run(due_scheduler.send_due_reminders())

    assert (report.reminders_sent, report.errors) == (1, 1)
    assert sleeper.calls == [0]


def test_due_reminders_do_not_touch_the_queue(due_scheduler, database):
    asyncio.run(due_scheduler.send_due_reminders())
    assert database.get_reminders_by_date(DAY) == []
    assert due_scheduler.client.scheduled == []


def test_due_reminders_need_link_signer(settings, database, slack):
    scheduler = ReminderScheduler(settings, database, slack)
    with pytest.raises(RuntimeError):
        asyncio.run(scheduler.send_due_reminders())
