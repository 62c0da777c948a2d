"""Slack payloads and HTML pages shown to employees."""

from __future__ import annotations

from html import escape
from typing import Any, Dict, List, Optional

from .models import AttendanceRecord

Blocks = List[Dict[str, Any]]

REMINDER_TEXT = "Please check in (office network required)"


def _button(label: str, url: str) -> Dict[str, Any]:
    return {
        "type": "actions",
        "elements": [
            {"type": "button", "text": {"type": "plain_text", "text": label}, "url": url}
        ],
    }


def reminder_blocks(
    reminder_time: str,
    checkin_url: Optional[str] = None,
    *,
    heading: str = "Reminder: please check in",
) -> Blocks:
    """Reminder DM body.

    Scheduled reminders are delivered long after they are built, past the
    lifetime of a signed link, so they point at ``/check-in`` instead. Only an
    immediately delivered reminder carries a link.
    """

    if checkin_url:
        hint = "Open the link below from the office network."
    else:
        hint = "Use `/check-in` in the attendance channel from the office network."
    blocks: Blocks = [
        {
            "type": "section",
            "text": {
                "type": "mrkdwn",
                "text": f"*{heading}*\nYou have not checked in yet today. {hint}",
            },
        }
    ]
    if checkin_url:
        blocks.append(_button("Open check-in page", checkin_url))
    blocks.append(
        {
            "type": "context",
            "elements": [{"type": "mrkdwn", "text": f"Time: {reminder_time} (PKT)"}],
        }
    )
    return blocks


def link_prompt(action_label: str, url: str) -> Dict[str, Any]:
    """Ephemeral slash command answer carrying a signed attendance link."""

    text = f"Click the button below to complete your {action_label} (office network only)."
    return {
        "response_type": "ephemeral",
        "text": text,
        "blocks": [
            {"type": "section", "text": {"type": "mrkdwn", "text": text}},
            _button(f"Open {action_label} page", url),
        ],
    }


def ephemeral(text: str) -> Dict[str, Any]:
    return {"response_type": "ephemeral", "text": text}


def checkin_announcement(user_id: str, record: AttendanceRecord) -> tuple[str, Blocks]:
    text = f"Check-in: <@{user_id}> at {record.check_in_time[:5]}"
    blocks: Blocks = [
        {"type": "header", "text": {"type": "plain_text", "text": "Check-in Recorded"}},
        {
            "type": "section",
            "fields": [
                {"type": "mrkdwn", "text": f"*Employee:*\n<@{user_id}>"},
                {"type": "mrkdwn", "text": f"*Date:*\n{record.date}"},
                {"type": "mrkdwn", "text": f"*Time:*\n{record.check_in_time}"},
                {"type": "mrkdwn", "text": "*Network:*\nOffice"},
            ],
        },
    ]
    return text, blocks


def checkout_announcement(
    user_id: str, record: AttendanceRecord, duration: str
) -> tuple[str, Blocks]:
    text = f"Check-out: <@{user_id}> at {(record.check_out_time or '')[:5]}"
    blocks: Blocks = [
        {"type": "header", "text": {"type": "plain_text", "text": "Check-out Recorded"}},
        {
            "type": "section",
            "fields": [
                {"type": "mrkdwn", "text": f"*Employee:*\n<@{user_id}>"},
                {"type": "mrkdwn", "text": f"*Date:*\n{record.date}"},
                {"type": "mrkdwn", "text": f"*Check-in:*\n{record.check_in_time}"},
                {"type": "mrkdwn", "text": f"*Check-out:*\n{record.check_out_time}"},
            ],
        },
        {"type": "section", "text": {"type": "mrkdwn", "text": f"*Total:* {duration}"}},
    ]
    return text, blocks


def html_page(title: str, *lines: str) -> str:
    body = "<br>".join(escape(line) for line in lines)
    return (
        '<!doctype html><html><head><meta charset="utf-8">'
        f"<title>{escape(title)}</title></head>"
        '<body style="font-family:sans-serif;padding:20px;max-width:600px;margin:0 auto;">'
        f"{body}</body></html>"
    )


__all__ = [
    "REMINDER_TEXT",
    "checkin_announcement",
    "checkout_announcement",
    "ephemeral",
    "html_page",
    "link_prompt",
    "reminder_blocks",
]
