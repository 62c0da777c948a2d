"""HTTP client for interacting with Slack Web API."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Any, Dict, List, Optional

import httpx

SLACK_API_BASE = "https://slack.com/api"


class SlackApiError(RuntimeError):
    """Raised when Slack returns an error response."""

    def __init__(self, method: str, error: str) -> None:
        super().__init__(f"Slack API error for {method}: {error}")
        self.method = method
        self.error = error


class SlackClient:
    """Simple async wrapper around the Slack Web API endpoints used for attendance."""

    def __init__(self, token: str, timeout: float = 10.0) -> None:
        self._client = httpx.AsyncClient(
            base_url=SLACK_API_BASE,
            headers={"Authorization": f"Bearer {token}"},
            timeout=timeout,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _get(self, method: str, params: Dict[str, Any]) -> Dict[str, Any]:
        response = await self._client.get(method, params=params)
        return self._check(method, response)

    async def _post(self, method: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        response = await self._client.post(method, json=payload)
        return self._check(method, response)

    @staticmethod
    def _check(method: str, response: httpx.Response) -> Dict[str, Any]:
        response.raise_for_status()
        data = response.json()
        if not data.get("ok"):
            raise SlackApiError(method, data.get("error", "unknown_error"))
        return data

    async def open_direct_channel(self, user_id: str) -> str:
        data = await self._post("conversations.open", {"users": user_id})
        channel_id = data.get("channel", {}).get("id")
        if not channel_id:
            raise SlackApiError("conversations.open", "missing_channel_id")
        return channel_id

    async def schedule_message(
        self,
        channel_id: str,
        text: str,
        post_at: int,
        blocks: Optional[List[Dict[str, Any]]] = None,
    ) -> str:
        payload: Dict[str, Any] = {"channel": channel_id, "text": text, "post_at": post_at}
        if blocks:
            payload["blocks"] = blocks
        data = await self._post("chat.scheduleMessage", payload)
        message_id = data.get("scheduled_message_id")
        if not message_id:
            raise SlackApiError("chat.scheduleMessage", "missing_scheduled_message_id")
        return message_id

    async def cancel_scheduled_message(self, channel_id: str, message_id: str) -> None:
        await self._post(
            "chat.deleteScheduledMessage",
            {"channel": channel_id, "scheduled_message_id": message_id},
        )

    async def post_message(
        self,
        channel_id: str,
        text: str,
        blocks: Optional[List[Dict[str, Any]]] = None,
    ) -> None:
        payload: Dict[str, Any] = {"channel": channel_id, "text": text}
        if blocks:
            payload["blocks"] = blocks
        await self._post("chat.postMessage", payload)

    async def lookup_user(self, user_id: str) -> Dict[str, Any]:
        data = await self._get("users.info", {"user": user_id})
        return data.get("user", {})

    async def lookup_user_display_name(self, user_id: str) -> str:
        user = await self.lookup_user(user_id)
        profile = user.get("profile", {})
        return (
            profile.get("real_name")
            or profile.get("display_name")
            or user.get("real_name")
            or user_id
        )

    async def fetch_channel_members(
        self, channel_id: str, *, limit: int = 200
    ) -> AsyncIterator[str]:
        """Yield member ids from `conversations.members` with pagination."""

        cursor: Optional[str] = None
        while True:
            params: Dict[str, Any] = {"channel": channel_id, "limit": limit}
            if cursor:
                params["cursor"] = cursor
            data = await self._get("conversations.members", params)
            for member in data.get("members", []):
                yield member

            cursor = data.get("response_metadata", {}).get("next_cursor")
            if not cursor:
                break
            await asyncio.sleep(0.2)


__all__ = ["SlackClient", "SlackApiError"]
