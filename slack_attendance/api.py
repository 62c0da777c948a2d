"""FastAPI application exposing the Slack Attendance endpoints."""

from __future__ import annotations

import hmac
import logging
from typing import Any, Dict, Optional
from urllib.parse import parse_qs

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.responses import HTMLResponse, JSONResponse

from .clock import Clock, date_key, is_valid_hhmm, parse_date_key, utc_now
from .config import Settings, load_settings
from .db import Database
from .messages import ephemeral, html_page, link_prompt
from .models import CHECKIN, CHECKOUT
from .scheduler import REMINDER_TIME_KEY, ReminderScheduler, current_reminder_time
from .security import NetworkGate, SignedLinkService, verify_slack_signature
from .service import AttendanceService, GateResult
from .slack_client import SlackClient

logger = logging.getLogger(__name__)

SLASH_COMMANDS = {"/check-in": (CHECKIN, "check-in"), "/checkout": (CHECKOUT, "checkout")}


def _key_matches(expected: str, provided: Optional[str]) -> bool:
    if not expected or not provided:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), provided.encode("utf-8"))


def create_app(
    settings: Optional[Settings] = None,
    *,
    database: Optional[Database] = None,
    slack_client: Optional[SlackClient] = None,
    clock: Clock = utc_now,
) -> FastAPI:
    settings = settings or load_settings()
    database = database or Database(settings.database_path)
    owns_client = slack_client is None
    client = slack_client or SlackClient(settings.slack_bot_token)
    links = SignedLinkService(
        settings.attendance_signing_secret, settings.app_base_url, clock=clock
    )
    network = NetworkGate(settings.office_ip_allowlist)
    service = AttendanceService(settings, database, client, links, network, clock=clock)
    scheduler = ReminderScheduler(settings, database, client, clock=clock, links=links)

    def verify_cron_key(key: Optional[str] = None) -> None:
        if not _key_matches(settings.cron_secret, key):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    def verify_admin_key(key: Optional[str] = None) -> None:
        if not _key_matches(settings.admin_key, key):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    def get_service() -> AttendanceService:
        return service

    app = FastAPI(title="Slack Attendance API", version="1.0.0")

    @app.exception_handler(HTTPException)
    async def http_error(_: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    @app.on_event("shutdown")
    async def shutdown_event() -> None:  # pragma: no cover - io bound
        if owns_client:
            await client.close()

    def page(title: str, result: GateResult) -> HTMLResponse:
        return HTMLResponse(html_page(title, *result.lines), status_code=200)

    @app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/checkin", response_class=HTMLResponse)
    async def checkin(
        request: Request,
        subject: Optional[str] = None,
        issued_at: Optional[str] = Query(None, alias="issuedAt"),
        signature: Optional[str] = None,
        svc: AttendanceService = Depends(get_service),
    ) -> HTMLResponse:
        try:
            caller = NetworkGate.extract_caller_address(request.headers)
            result = await svc.check_in(subject, issued_at, signature, caller)
        except Exception:  # noqa: BLE001
            logger.exception("Error in check-in endpoint")
            return HTMLResponse(
                html_page("Check-in", "An error occurred while recording check-in. Please try again.")
            )
        return page("Check-in", result)

    @app.get("/checkout", response_class=HTMLResponse)
    async def checkout(
        request: Request,
        subject: Optional[str] = None,
        issued_at: Optional[str] = Query(None, alias="issuedAt"),
        signature: Optional[str] = None,
        svc: AttendanceService = Depends(get_service),
    ) -> HTMLResponse:
        try:
            caller = NetworkGate.extract_caller_address(request.headers)
            result = await svc.check_out(subject, issued_at, signature, caller)
        except Exception:  # noqa: BLE001
            logger.exception("Error in checkout endpoint")
            return HTMLResponse(
                html_page("Check-out", "An error occurred while recording checkout. Please try again.")
            )
        return page("Check-out", result)

    @app.api_route(
        "/cron/schedule-reminders",
        methods=["GET", "POST"],
        dependencies=[Depends(verify_cron_key)],
    )
    async def schedule_reminders() -> JSONResponse:
        try:
            report = await scheduler.run()
        except Exception:  # noqa: BLE001
            logger.exception("Error in schedule-reminders cron")
            return JSONResponse(status_code=500, content={"error": "Internal server error"})
        return JSONResponse(
            {
                "success": True,
                "date": report.date,
                "reminderTime": report.reminder_time,
                "postAt": report.post_at,
                "totalMembers": report.total_members,
                "scheduled": report.scheduled,
                "skipped": report.skipped,
                "errors": report.errors,
            }
        )

    @app.get("/cron/attendance-reminder/{secret}")
    async def attendance_reminder(secret: str) -> JSONResponse:
        if not _key_matches(settings.cron_secret, secret):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
        try:
            report = await scheduler.send_due_reminders()
        except Exception:  # noqa: BLE001
            logger.exception("Error in attendance reminder cron")
            return JSONResponse(status_code=500, content={"error": "Internal server error"})
        return JSONResponse(
            {
                "success": True,
                "date": report.date,
                "checkedInCount": report.checked_in,
                "channelMembersCount": report.total_members,
                "remindersSent": report.reminders_sent,
                "errors": report.errors,
            }
        )

    @app.get("/admin/reminder-settings", dependencies=[Depends(verify_admin_key)])
    async def get_reminder_settings() -> Dict[str, Any]:
        return {"success": True, "reminderTime": current_reminder_time(database, settings)}

    @app.post("/admin/reminder-settings", dependencies=[Depends(verify_admin_key)])
    async def update_reminder_settings(request: Request) -> Dict[str, Any]:
        try:
            payload = await request.json()
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="Body must be JSON") from exc
        reminder_time = payload.get("reminderTime") if isinstance(payload, dict) else None
        if not reminder_time or not isinstance(reminder_time, str):
            raise HTTPException(status_code=400, detail="reminderTime is required (format: HH:mm)")
        if not is_valid_hhmm(reminder_time):
            raise HTTPException(
                status_code=400, detail="Invalid time format. Use HH:mm (24-hour format)"
            )
        database.set_setting(REMINDER_TIME_KEY, reminder_time)
        logger.info("Reminder time updated to %s", reminder_time)
        return {"success": True, "reminderTime": reminder_time}

    @app.get("/admin/reminder-test", dependencies=[Depends(verify_admin_key)])
    async def reminder_test(
        user: Optional[str] = None,
        svc: AttendanceService = Depends(get_service),
    ) -> JSONResponse:
        if not user:
            raise HTTPException(status_code=400, detail="user parameter is required")
        try:
            channel_id = await svc.send_test_reminder(user)
        except Exception:  # noqa: BLE001
            logger.exception("Error sending test reminder to %s", user)
            return JSONResponse(status_code=500, content={"error": "Could not send test reminder"})
        return JSONResponse(
            {"success": True, "user": user, "channel": channel_id, "date": date_key(clock())}
        )

    @app.get("/api/attendance", dependencies=[Depends(verify_admin_key)])
    async def daily_attendance(
        date_param: Optional[str] = Query(None, alias="date"),
        svc: AttendanceService = Depends(get_service),
    ) -> Dict[str, Any]:
        day = date_param or date_key(clock())
        try:
            parse_date_key(day)
        except ValueError as exc:
            raise HTTPException(
                status_code=400, detail="Invalid date format. Use YYYY-MM-DD"
            ) from exc
        return {
            "date": day,
            "attendance": svc.get_daily_attendance(day),
            "reminders": svc.get_reminder_queue(day),
        }

    @app.post("/slack/commands")
    async def slash_commands(
        request: Request,
        svc: AttendanceService = Depends(get_service),
    ) -> Dict[str, Any]:
        body = await request.body()
        if not verify_slack_signature(
            settings.slack_signing_secret,
            body,
            request.headers.get("x-slack-request-timestamp"),
            request.headers.get("x-slack-signature"),
            now=clock().timestamp(),
        ):
            raise HTTPException(status_code=401, detail="Invalid Slack signature")

        form = parse_qs(body.decode("utf-8", errors="replace"))
        params = {key: values[0] for key, values in form.items()}
        command = params.get("command")
        user_id = params.get("user_id")
        logger.info("Slash command received: %s from %s", command, user_id)

        if command not in SLASH_COMMANDS:
            return ephemeral(
                f"Unknown command: {command}. Available commands: "
                + ", ".join(SLASH_COMMANDS)
            )
        if not user_id:
            raise HTTPException(status_code=400, detail="Missing user_id")
        if params.get("channel_id") != settings.attendance_channel_id:
            return ephemeral(f"Please use `{command}` in the designated attendance channel.")

        action, label = SLASH_COMMANDS[command]
        return link_prompt(label, svc.issue_link(action, user_id))

    return app


__all__ = ["create_app"]
