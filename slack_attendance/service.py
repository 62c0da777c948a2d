"""Check-in and checkout gates plus attendance query helpers."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Union

from .clock import Clock, date_key, format_duration, format_hhmm, utc_now
from .config import Settings
from .db import Database
from .messages import REMINDER_TEXT, checkin_announcement, checkout_announcement, reminder_blocks
from .models import (
    CANCELLED,
    CHECKIN,
    CHECKOUT,
    SCHEDULED,
    SENT,
    Action,
    AttendanceRecord,
)
from .scheduler import current_reminder_time
from .security import NetworkGate, SignedLinkService
from .slack_client import SlackApiError, SlackClient

logger = logging.getLogger(__name__)

RECORDED = "recorded"
ALREADY_DONE = "already_done"
NOT_ELIGIBLE = "not_eligible"
AUTH_FAILED = "auth_failed"
NETWORK_DENIED = "network_denied"
ERROR = "error"

# Slack answers this once a scheduled message has been delivered or deleted.
GONE_SCHEDULED_MESSAGE = "invalid_scheduled_message_id"


@dataclass(slots=True)
class GateResult:
    outcome: str
    lines: tuple[str, ...]
    record: Optional[AttendanceRecord] = None

    @property
    def ok(self) -> bool:
        return self.outcome in (RECORDED, ALREADY_DONE)


class AttendanceService:
    """Verify attendance links and record check-ins and checkouts."""

    def __init__(
        self,
        settings: Settings,
        database: Database,
        client: SlackClient,
        links: SignedLinkService,
        network: NetworkGate,
        *,
        clock: Clock = utc_now,
    ) -> None:
        self.settings = settings
        self.database = database
        self.client = client
        self.links = links
        self.network = network
        self._clock = clock

    # region Gates
    def _authorize(
        self,
        action: Action,
        user_id: Optional[str],
        issued_at: Optional[str],
        signature: Optional[str],
        caller_address: Optional[str],
    ) -> Union[GateResult, str]:
        """Return the verified subject, or the result that rejects the request."""

        label = "check-in" if action == CHECKIN else "checkout"
        if not user_id or not issued_at or not signature:
            logger.warning("Rejected %s link with missing parameters", label)
            return GateResult(AUTH_FAILED, (f"Invalid or expired {label} link.",))
        try:
            issued_at_ms = int(issued_at)
        except ValueError:
            issued_at_ms = None
        if issued_at_ms is None or not self.links.verify(action, user_id, issued_at_ms, signature):
            logger.warning("Rejected %s link for user %s", label, user_id)
            return GateResult(AUTH_FAILED, (f"Invalid or expired {label} link.",))

        if not self.network.is_allowed(caller_address):
            logger.warning("Rejected %s for user %s from %s", label, user_id, caller_address)
            return GateResult(
                NETWORK_DENIED,
                (f"You are not on the office network. Your IP: {caller_address or 'unknown'}",),
            )
        return user_id

    async def _display_name(self, user_id: str) -> str:
        try:
            return await self.client.lookup_user_display_name(user_id)
        except Exception:  # noqa: BLE001
            logger.warning("Could not resolve display name for %s", user_id, exc_info=True)
            return user_id

    async def _announce(self, text: str, blocks: List[Dict[str, Any]]) -> None:
        try:
            await self.client.post_message(self.settings.attendance_channel_id, text, blocks)
        except Exception:  # noqa: BLE001
            logger.warning("Failed to post attendance announcement", exc_info=True)

    async def cancel_pending_reminder(self, day: str, user_id: str) -> None:
        """Best-effort cancellation of today's scheduled reminder; never raises.

        The reminder can still fire between the check-in claim and this call;
        that window is accepted.
        """

        try:
            reminder = self.database.find_reminder(day, user_id)
            if reminder is None or reminder.status != SCHEDULED:
                return
            try:
                await self.client.cancel_scheduled_message(reminder.channel_id, reminder.message_id)
            except SlackApiError as exc:
                if exc.error == GONE_SCHEDULED_MESSAGE and reminder.post_at <= self._clock().timestamp():
                    self.database.set_reminder_status(day, user_id, SENT)
                    logger.info("Reminder for user %s was already delivered", user_id)
                    return
                raise
            self.database.set_reminder_status(day, user_id, CANCELLED)
            logger.info("Cancelled scheduled reminder for user %s", user_id)
        except Exception:  # noqa: BLE001
            logger.warning("Failed to cancel reminder for user %s", user_id, exc_info=True)

    async def check_in(
        self,
        user_id: Optional[str],
        issued_at: Optional[str],
        signature: Optional[str],
        caller_address: Optional[str],
    ) -> GateResult:
        admitted = self._authorize(CHECKIN, user_id, issued_at, signature, caller_address)
        if isinstance(admitted, GateResult):
            return admitted
        user_id = admitted

        employee_name = await self._display_name(user_id)
        now = self._clock()
        day = date_key(now)
        try:
            claim = self.database.claim_check_in(day, user_id, employee_name, now)
        except Exception:  # noqa: BLE001
            logger.exception("Error recording check-in for user %s", user_id)
            return GateResult(
                ERROR, ("An error occurred while recording check-in. Please try again.",)
            )

        if not claim.created:
            return GateResult(
                ALREADY_DONE,
                (f"You already checked in today at {claim.record.check_in_time}.",),
                claim.record,
            )

        await self.cancel_pending_reminder(day, user_id)
        await self._announce(*checkin_announcement(user_id, claim.record))
        return GateResult(
            RECORDED,
            (f"Check-in recorded for {employee_name} at {format_hhmm(now)}.",),
            claim.record,
        )

    async def check_out(
        self,
        user_id: Optional[str],
        issued_at: Optional[str],
        signature: Optional[str],
        caller_address: Optional[str],
    ) -> GateResult:
        admitted = self._authorize(CHECKOUT, user_id, issued_at, signature, caller_address)
        if isinstance(admitted, GateResult):
            return admitted
        user_id = admitted

        employee_name = await self._display_name(user_id)
        now = self._clock()
        day = date_key(now)
        try:
            claim = self.database.claim_check_out(day, user_id, employee_name, now)
        except Exception:  # noqa: BLE001
            logger.exception("Error recording checkout for user %s", user_id)
            return GateResult(
                ERROR, ("An error occurred while recording checkout. Please try again.",)
            )

        if not claim.eligible or claim.record is None:
            return GateResult(NOT_ELIGIBLE, ("No check-in found for today. Please check in first.",))

        record = claim.record
        duration = format_duration(record.total_duration_seconds or 0)
        if claim.already_done:
            return GateResult(
                ALREADY_DONE,
                (
                    f"You already checked out today at {record.check_out_time}. "
                    f"Check-in was at {record.check_in_time}.",
                ),
                record,
            )

        await self._announce(*checkout_announcement(user_id, record, duration))
        return GateResult(
            RECORDED,
            (
                f"Check-out recorded for {employee_name} at {format_hhmm(now)}.",
                "",
                "Summary:",
                f"Date: {record.date}",
                f"Check-in: {record.check_in_time}",
                f"Check-out: {record.check_out_time}",
                f"Total Hours: {duration}",
            ),
            record,
        )

    # endregion

    # region Slack helpers
    def issue_link(self, action: Action, user_id: str) -> str:
        return self.links.issue(action, user_id)

    async def send_test_reminder(self, user_id: str) -> str:
        """Deliver a reminder DM right away, with a live check-in link."""

        channel_id = await self.client.open_direct_channel(user_id)
        reminder_time = current_reminder_time(self.database, self.settings)
        await self.client.post_message(
            channel_id,
            REMINDER_TEXT,
            reminder_blocks(
                reminder_time,
                self.links.issue(CHECKIN, user_id),
                heading="Test reminder: please check in",
            ),
        )
        return channel_id

    # endregion

    # region Query helpers
    def get_daily_attendance(self, day: str) -> List[Dict[str, Any]]:
        return [record_to_dict(record) for record in self.database.get_attendance_by_date(day)]

    def get_reminder_queue(self, day: str) -> List[Dict[str, Any]]:
        return [asdict(entry) for entry in self.database.get_reminders_by_date(day)]

    # endregion


def record_to_dict(record: AttendanceRecord) -> Dict[str, Any]:
    data = asdict(record)
    data["first_check_in_at"] = record.first_check_in_at.isoformat()
    data["last_check_out_at"] = (
        record.last_check_out_at.isoformat() if record.last_check_out_at else None
    )
    data["total_duration"] = (
        format_duration(record.total_duration_seconds)
        if record.total_duration_seconds is not None
        else None
    )
    return data


__all__ = [
    "ALREADY_DONE",
    "AUTH_FAILED",
    "AttendanceService",
    "ERROR",
    "GateResult",
    "NETWORK_DENIED",
    "NOT_ELIGIBLE",
    "RECORDED",
    "record_to_dict",
]
