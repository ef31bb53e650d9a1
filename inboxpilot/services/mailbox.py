"""
Mailbox capability over the Gmail REST API (users.messages list/get/send).

Uses the owner's stored Google access token as-is; token refresh is handled elsewhere.
"""

import base64
import logging
from datetime import datetime, timedelta, timezone
from email.message import EmailMessage
from email.utils import formataddr, parseaddr
from typing import Any

import httpx

from inboxpilot.core.config import GMAIL_API_BASE, MAILBOX_API_TIMEOUT, SYNC_GMAIL_DAYS_BACK, SYNC_GMAIL_MAX_RESULTS
from inboxpilot.core.errors import ServiceUnavailableError
from inboxpilot.core.models import InboundEvent, Owner

logger = logging.getLogger(__name__)


def _header(headers: list[dict[str, str]], name: str) -> str:
    for h in headers:
        if (h.get("name") or "").lower() == name.lower():
            return h.get("value") or ""
    return ""


def _decode_b64url(data: str) -> str:
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded.encode()).decode("utf-8", errors="replace")


def _plain_text_body(payload: dict[str, Any]) -> str:
    """Depth-first search for the first text/plain part; falls back to the top-level body."""
    mime = payload.get("mimeType") or ""
    data = (payload.get("body") or {}).get("data")
    if mime == "text/plain" and data:
        return _decode_b64url(data)
    for part in payload.get("parts") or []:
        text = _plain_text_body(part)
        if text:
            return text
    if data and not payload.get("parts"):
        return _decode_b64url(data)
    return ""


def parse_gmail_message(message: dict[str, Any]) -> InboundEvent:
    """Turn a users.messages.get (format=full) payload into an InboundEvent."""
    payload = message.get("payload") or {}
    headers = payload.get("headers") or []
    sender_name, sender = parseaddr(_header(headers, "From"))
    internal_ms = int(message.get("internalDate") or 0)
    return InboundEvent(
        sender=sender.lower(),
        sender_name=sender_name,
        subject=_header(headers, "Subject"),
        body=_plain_text_body(payload) or message.get("snippet") or "",
        timestamp=datetime.fromtimestamp(internal_ms / 1000, tz=timezone.utc),
        external_id=message.get("id") or "",
    )


class GmailMailbox:
    def __init__(
        self,
        base_url: str = GMAIL_API_BASE,
        timeout: float = MAILBOX_API_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def _client(self, owner: Owner) -> httpx.Client:
        if not owner.google_access_token:
            raise ServiceUnavailableError("No Gmail access token available")
        return httpx.Client(
            base_url=self._base_url,
            timeout=self._timeout,
            transport=self._transport,
            headers={"Authorization": f"Bearer {owner.google_access_token}"},
        )

    def fetch_events_since(self, owner: Owner, since: datetime, max_results: int = 50) -> list[InboundEvent]:
        """Messages received after `since`, oldest first."""
        query = f"after:{int(since.timestamp())}"
        logger.info("[mailbox:fetch_events_since] IN  owner=%s q=%s", owner.id, query)
        with self._client(owner) as client:
            listing = client.get("/messages", params={"q": query, "maxResults": max_results})
            if listing.status_code != 200:
                raise ServiceUnavailableError(f"Gmail list error {listing.status_code}: {listing.text[:200]}")
            refs = listing.json().get("messages") or []
            events = []
            for ref in refs:
                resp = client.get(f"/messages/{ref['id']}", params={"format": "full"})
                if resp.status_code != 200:
                    logger.warning("[mailbox] skip message id=%s status=%s", ref.get("id"), resp.status_code)
                    continue
                events.append(parse_gmail_message(resp.json()))
        events.sort(key=lambda e: e.timestamp)
        logger.info("[mailbox:fetch_events_since] OUT owner=%s events=%d", owner.id, len(events))
        return events

    def fetch_recent(
        self, owner: Owner, days_back: int = SYNC_GMAIL_DAYS_BACK, max_results: int = SYNC_GMAIL_MAX_RESULTS
    ) -> list[InboundEvent]:
        """Messages from the last `days_back` days; used by the full data sync."""
        since = datetime.now(timezone.utc) - timedelta(days=days_back)
        return self.fetch_events_since(owner, since, max_results=max_results)

    def send(self, owner: Owner, to: str, subject: str, body: str, to_name: str | None = None) -> dict[str, Any]:
        """Send one message. Single attempt; no retry on failure."""
        msg = EmailMessage()
        msg["To"] = formataddr((to_name, to)) if to_name else to
        msg["Subject"] = subject
        if owner.email:
            msg["From"] = owner.email
        msg.set_content(body)
        raw = base64.urlsafe_b64encode(msg.as_bytes()).decode().rstrip("=")

        with self._client(owner) as client:
            resp = client.post("/messages/send", json={"raw": raw})
        if resp.status_code not in (200, 201):
            raise ServiceUnavailableError(f"Gmail send error {resp.status_code}: {resp.text[:200]}")
        external_id = resp.json().get("id", "")
        logger.info("[mailbox:send] owner=%s to=%s external_id=%s", owner.id, to, external_id)
        return {"external_id": external_id}
