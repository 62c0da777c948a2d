"""MCP server exposing read-only attendance and reminder queue tools."""

from __future__ import annotations

from typing import Optional

from mcp.server.fastmcp import FastMCP

from .clock import date_key, parse_date_key
from .config import Settings, load_settings
from .db import Database
from .scheduler import current_reminder_time
from .service import record_to_dict


def _ensure_day(day_str: Optional[str] = None) -> str:
    if not day_str:
        return date_key()
    return parse_date_key(day_str).isoformat()


def create_mcp(
    settings: Optional[Settings] = None, database: Optional[Database] = None
) -> FastMCP:
    settings = settings or load_settings()
    database = database or Database(settings.database_path)
    mcp = FastMCP("slack-attendance")

    @mcp.tool()
    async def get_daily_attendance(date: Optional[str] = None) -> dict:
        """Return the check-in and checkout rows recorded for a day (default today, PKT)."""

        day = _ensure_day(date)
        rows = [record_to_dict(record) for record in database.get_attendance_by_date(day)]
        return {"date": day, "attendance": rows}

    @mcp.tool()
    async def get_reminder_queue(date: Optional[str] = None) -> dict:
        """Return the reminder queue entries for a day with their lifecycle status."""

        day = _ensure_day(date)
        entries = database.get_reminders_by_date(day)
        return {
            "date": day,
            "reminders": [
                {
                    "user_id": entry.user_id,
                    "channel_id": entry.channel_id,
                    "message_id": entry.message_id,
                    "post_at": entry.post_at,
                    "status": entry.status,
                }
                for entry in entries
            ],
        }

    @mcp.tool()
    async def get_reminder_time() -> dict:
        """Return the configured daily reminder time (HH:mm, PKT)."""

        return {"reminderTime": current_reminder_time(database, settings)}

    return mcp


def run() -> None:  # pragma: no cover - io bound
    create_mcp().run()


if __name__ == "__main__":  # pragma: no cover
    run()


__all__ = ["create_mcp", "run"]
