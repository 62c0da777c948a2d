"""Signed attendance links, office network checks and Slack request signatures.

Check-in and checkout happen in the browser rather than inside Slack: a slash
command only exposes Slack's own egress address, while a browser request
carries the employee's address in ``X-Forwarded-For``. The link itself is a
short-lived capability signed with ``ATTENDANCE_SIGNING_SECRET``.
"""

from __future__ import annotations

import hashlib
import hmac
from collections.abc import Iterable, Mapping
from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import urlencode

from .clock import Clock, utc_now
from .models import Action

SIGNED_LINK_MAX_AGE_MS = 10 * 60 * 1000
SLACK_REQUEST_MAX_AGE_SECONDS = 5 * 60
FORWARDED_FOR_HEADER = "x-forwarded-for"
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _hmac_hex(secret: str, payload: str) -> str:
    return hmac.new(secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).hexdigest()


def _constant_time_equal(expected: str, candidate: str) -> bool:
    return hmac.compare_digest(expected.encode("utf-8"), candidate.encode("utf-8"))


class SignedLinkService:
    """Issue and verify time-boxed HMAC links for attendance actions."""

    def __init__(
        self,
        secret: Optional[str],
        base_url: str,
        *,
        clock: Clock = utc_now,
        max_age_ms: int = SIGNED_LINK_MAX_AGE_MS,
    ) -> None:
        self._secret = secret
        self._base_url = base_url.rstrip("/")
        self._clock = clock
        self.max_age_ms = max_age_ms

    def _now_ms(self) -> int:
        return (self._clock() - EPOCH) // timedelta(milliseconds=1)

    def sign(self, action: Action, user_id: str, issued_at_ms: int) -> str:
        if not self._secret:
            raise RuntimeError("ATTENDANCE_SIGNING_SECRET must be configured")
        return _hmac_hex(self._secret, f"{action}:{user_id}:{issued_at_ms}")

    def issue(self, action: Action, user_id: str) -> str:
        """Return a link to ``/<action>`` carrying the user, issue time and signature."""

        issued_at = self._now_ms()
        query = urlencode(
            {
                "subject": user_id,
                "issuedAt": issued_at,
                "signature": self.sign(action, user_id, issued_at),
            }
        )
        return f"{self._base_url}/{action}?{query}"

    def verify(self, action: Action, user_id: str, issued_at_ms: int, signature: str) -> bool:
        if not self._secret:
            return False
        age = self._now_ms() - issued_at_ms
        # negative age means a forged future timestamp or clock skew
        if age < 0 or age > self.max_age_ms:
            return False
        expected = self.sign(action, user_id, issued_at_ms)
        return _constant_time_equal(expected, signature)


class NetworkGate:
    """Exact-match allowlist of office egress addresses."""

    def __init__(self, allowlist: Iterable[str]) -> None:
        self._allowed = frozenset(address for address in allowlist if address)

    @staticmethod
    def extract_caller_address(headers: Mapping[str, str]) -> Optional[str]:
        """Return the original client from a ``client, proxy1, proxy2`` chain."""

        forwarded = headers.get(FORWARDED_FOR_HEADER)
        if not forwarded:
            return None
        first = forwarded.split(",")[0].strip()
        return first or None

    def is_allowed(self, address: Optional[str]) -> bool:
        if not address or not self._allowed:
            return False
        return address in self._allowed


def verify_slack_signature(
    signing_secret: Optional[str],
    body: bytes,
    timestamp: Optional[str],
    signature: Optional[str],
    *,
    now: Optional[float] = None,
) -> bool:
    """Validate ``X-Slack-Signature`` for a slash command or interaction payload."""

    if not signing_secret or not timestamp or not signature:
        return False
    try:
        sent_at = int(timestamp)
    except ValueError:
        return False
    current = now if now is not None else utc_now().timestamp()
    if abs(current - sent_at) > SLACK_REQUEST_MAX_AGE_SECONDS:
        return False
    base = b"v0:" + timestamp.encode("utf-8") + b":" + body
    expected = "v0=" + hmac.new(signing_secret.encode("utf-8"), base, hashlib.sha256).hexdigest()
    return _constant_time_equal(expected, signature)


__all__ = [
    "FORWARDED_FOR_HEADER",
    "NetworkGate",
    "SIGNED_LINK_MAX_AGE_MS",
    "SignedLinkService",
    "verify_slack_signature",
]
