"""Daily job that schedules check-in reminder DMs for the attendance roster."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

from .clock import Clock, date_key, local_time_to_epoch, utc_now
from .config import Settings
from .db import Database
from .messages import REMINDER_TEXT, reminder_blocks
from .models import CHECKIN, SCHEDULED, DueReminderReport, ReminderEntry, ScheduleReport
from .security import SignedLinkService
from .slack_client import SlackClient

logger = logging.getLogger(__name__)

REMINDER_TIME_KEY = "attendanceReminderTime"

Sleep = Callable[[float], Awaitable[None]]


def current_reminder_time(database: Database, settings: Settings) -> str:
    return database.get_setting(REMINDER_TIME_KEY) or settings.default_reminder_time


class ReminderScheduler:
    """Schedule one reminder per roster member per local day.

    Slack owns delivery timing: each reminder is handed to
    ``chat.scheduleMessage`` and only its handle is kept in the queue so a
    later check-in can cancel it.
    """

    def __init__(
        self,
        settings: Settings,
        database: Database,
        client: SlackClient,
        *,
        clock: Clock = utc_now,
        sleep: Sleep = asyncio.sleep,
        links: Optional[SignedLinkService] = None,
    ) -> None:
        self.settings = settings
        self.database = database
        self.client = client
        self.links = links
        self._clock = clock
        self._sleep = sleep

    async def fetch_roster(self) -> List[str]:
        return [
            member
            async for member in self.client.fetch_channel_members(
                self.settings.attendance_channel_id
            )
        ]

    async def run(self) -> ScheduleReport:
        now = self._clock()
        day = date_key(now)
        reminder_time = current_reminder_time(self.database, self.settings)
        post_at = local_time_to_epoch(day, reminder_time)
        report = ScheduleReport(date=day, reminder_time=reminder_time, post_at=post_at)
        logger.info("Scheduling reminders for %s at %s PKT (epoch %s)", day, reminder_time, post_at)
        if post_at <= now.timestamp():
            logger.warning("Reminder time %s has already passed for %s", reminder_time, day)

        members = await self.fetch_roster()
        report.total_members = len(members)
        logger.info("Found %s members in attendance channel", len(members))

        for index, member in enumerate(members):
            contacted_slack = False
            try:
                existing = self.database.find_reminder(day, member)
                if existing is not None:
                    logger.debug("Reminder for %s already %s", member, existing.status)
                    report.skipped += 1
                    continue

                contacted_slack = True
                channel_id = await self.client.open_direct_channel(member)
                message_id = await self.client.schedule_message(
                    channel_id,
                    REMINDER_TEXT,
                    post_at,
                    blocks=reminder_blocks(reminder_time),
                )
                self.database.upsert_reminder(
                    ReminderEntry(
                        date=day,
                        user_id=member,
                        channel_id=channel_id,
                        message_id=message_id,
                        post_at=post_at,
                        status=SCHEDULED,
                    )
                )
                report.scheduled += 1
            except Exception:  # noqa: BLE001
                logger.exception("Error scheduling reminder for user %s", member)
                report.errors += 1
            finally:
                if contacted_slack and index < len(members) - 1:
                    await self._sleep(self.settings.reminder_delay_seconds)

        logger.info(
            "Reminder run complete for %s: scheduled=%s skipped=%s errors=%s",
            day,
            report.scheduled,
            report.skipped,
            report.errors,
        )
        return report

    async def _needs_reminder(self, member: str) -> bool:
        try:
            user = await self.client.lookup_user(member)
        except Exception:  # noqa: BLE001
            logger.warning("Could not fetch info for user %s", member, exc_info=True)
            return False
        return not (user.get("is_bot") or user.get("deleted"))

    async def send_due_reminders(self) -> DueReminderReport:
        """DM every roster member who has not checked in yet, right away.

        Unlike ``run`` the message is posted immediately, so it carries a live
        signed check-in link. Bots, deactivated accounts and members whose
        profile cannot be read are left out.
        """

        if self.links is None:
            raise RuntimeError("Signed links are required to send due reminders")

        day = date_key(self._clock())
        checked_in = {record.user_id for record in self.database.get_attendance_by_date(day)}
        members = await self.fetch_roster()
        report = DueReminderReport(
            date=day, checked_in=len(checked_in), total_members=len(members)
        )
        logger.info("Found %s users who checked in today (%s)", len(checked_in), day)

        recipients = [
            member
            for member in members
            if member not in checked_in and await self._needs_reminder(member)
        ]
        logger.info("Sending reminders to %s users", len(recipients))
        reminder_time = current_reminder_time(self.database, self.settings)

        for index, member in enumerate(recipients):
            try:
                channel_id = await self.client.open_direct_channel(member)
                await self.client.post_message(
                    channel_id,
                    REMINDER_TEXT,
                    reminder_blocks(reminder_time, self.links.issue(CHECKIN, member)),
                )
                report.reminders_sent += 1
            except Exception:  # noqa: BLE001
                logger.exception("Error sending reminder DM to user %s", member)
                report.errors += 1
            finally:
                if index < len(recipients) - 1:
                    await self._sleep(self.settings.reminder_delay_seconds)

        return report


__all__ = ["REMINDER_TIME_KEY", "ReminderScheduler", "current_reminder_time"]
