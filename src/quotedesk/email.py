"""Summary: Mailbox interfaces and implementations.

Importance: Encapsulates reading, labelling, and replying to emails.
Alternatives: Depend on the Google API client for Gmail access.
"""

from __future__ import annotations

import base64
import json
import logging
import re
import urllib.error
import urllib.parse
import urllib.request
from abc import ABC, abstractmethod
from email.message import EmailMessage as MimeMessage
from email.utils import parseaddr
from pathlib import Path
from typing import Any

from quotedesk.models import EmailMessage

logger = logging.getLogger(__name__)

UNREAD_QUERY = "is:unread in:inbox -category:promotions -category:social -category:updates -category:spam"
HTML_TAG_PATTERN = re.compile(r"<[^>]+>")


class Mailbox(ABC):
    """Summary: Abstract interface for the mailbox collaborator.

    Importance: Lets the pipeline run against Gmail or an in-memory fixture.
    Alternatives: Use provider-specific classes directly in the pipeline.
    """

    @abstractmethod
    def list_unread(self, max_results: int) -> list[EmailMessage]:
        """Summary: Fetch unread inbox messages.

        Importance: Source of every batch run; failures propagate to the caller.
        Alternatives: Fetch messages by cursor or history id.
        """

    @abstractmethod
    def mark_read(self, message_id: str) -> bool:
        """Mark a message as read, returning False on failure."""

    @abstractmethod
    def apply_label(self, message_id: str, label: str) -> bool:
        """Apply a label such as QUOTE, NOT_QUOTE, or PROCESSED."""

    @abstractmethod
    def send_reply(self, original: EmailMessage, body: str, is_html: bool = False) -> bool:
        """Summary: Reply in the thread of the original message.

        Importance: Keeps the client conversation threaded via In-Reply-To and References.
        Alternatives: Send unthreaded messages.
        """

    @abstractmethod
    def send_message(self, to: str, subject: str, body: str, is_html: bool = False) -> bool:
        """Send a new message outside any thread."""


class MockMailbox(Mailbox):
    """Summary: In-memory mailbox for tests and offline demos.

    Importance: Records every read mark, label, and sent message for assertions.
    Alternatives: Use a local IMAP server in tests.
    """

    def __init__(self, messages: list[EmailMessage] | None = None) -> None:
        self.messages = list(messages or [])
        self.read_ids: set[str] = set()
        self.labels: dict[str, list[str]] = {}
        self.replies: list[tuple[str, str]] = []
        self.sent: list[tuple[str, str, str]] = []

    @staticmethod
    def from_file(fixture_path: Path) -> "MockMailbox":
        """Summary: Load messages from a JSON fixture.

        Importance: Provides predictable data for demos.
        Alternatives: Build fixtures inline in each test.
        """

        data = json.loads(fixture_path.read_text(encoding="utf-8"))
        messages = [
            EmailMessage(
                id=item["id"],
                sender=item["from"],
                sender_email=item.get("fromEmail") or parseaddr(item["from"])[1],
                subject=item.get("subject", ""),
                body=item.get("body", ""),
                date=item.get("date", ""),
                thread_id=item.get("threadId"),
                message_id=item.get("messageId"),
            )
            for item in data
        ]
        return MockMailbox(messages)

    def list_unread(self, max_results: int) -> list[EmailMessage]:
        unread = [message for message in self.messages if message.id not in self.read_ids]
        return unread[:max_results]

    def mark_read(self, message_id: str) -> bool:
        self.read_ids.add(message_id)
        return True

    def apply_label(self, message_id: str, label: str) -> bool:
        self.labels.setdefault(message_id, []).append(label)
        return True

    def send_reply(self, original: EmailMessage, body: str, is_html: bool = False) -> bool:
        self.replies.append((original.id, body))
        return True

    def send_message(self, to: str, subject: str, body: str, is_html: bool = False) -> bool:
        self.sent.append((to, subject, body))
        return True


class GmailMailbox(Mailbox):
    """Summary: Mailbox backed by the Gmail REST API using an OAuth access token.

    Importance: Production mailbox for reading, labelling, and replying.
    Alternatives: Use IMAP/SMTP or the Google client library.
    """

    def __init__(self, access_token: str, base_url: str) -> None:
        """Summary: Initialize the Gmail mailbox.

        Importance: One mailbox instance serves a whole batch run.
        Alternatives: Refresh the OAuth token before every call.
        """

        self._access_token = access_token
        self._base_url = base_url.rstrip("/")
        self._label_ids: dict[str, str] = {}

    def list_unread(self, max_results: int) -> list[EmailMessage]:
        """Summary: Fetch unread inbox messages, skipping promotional categories.

        Importance: Feeds the batch orchestrator.
        Alternatives: Use push notifications instead of polling.
        """

        query = urllib.parse.urlencode({"q": UNREAD_QUERY, "maxResults": max_results})
        payload = _gmail_api_get(f"{self._base_url}/users/me/messages?{query}", self._access_token)
        messages: list[EmailMessage] = []
        for item in payload.get("messages", []):
            message_id = item.get("id")
            if not message_id:
                continue
            detail_url = f"{self._base_url}/users/me/messages/{message_id}?format=full"
            parsed = _parse_gmail_message(_gmail_api_get(detail_url, self._access_token))
            if parsed:
                messages.append(parsed)
        return messages

    def mark_read(self, message_id: str) -> bool:
        return self._modify(message_id, {"removeLabelIds": ["UNREAD"]})

    def apply_label(self, message_id: str, label: str) -> bool:
        try:
            label_id = self._label_id(label)
        except RuntimeError as exc:
            logger.warning("Could not resolve label %s: %s", label, exc)
            return False
        return self._modify(message_id, {"addLabelIds": [label_id]})

    def send_reply(self, original: EmailMessage, body: str, is_html: bool = False) -> bool:
        mime = build_reply(original, body, is_html)
        payload: dict[str, Any] = {"raw": encode_raw(mime)}
        if original.thread_id:
            payload["threadId"] = original.thread_id
        return self._send(payload)

    def send_message(self, to: str, subject: str, body: str, is_html: bool = False) -> bool:
        mime = MimeMessage()
        mime["To"] = to
        mime["Subject"] = subject
        mime.set_content(body, subtype="html" if is_html else "plain")
        return self._send({"raw": encode_raw(mime)})

    def _send(self, payload: dict[str, Any]) -> bool:
        try:
            _gmail_api_post(f"{self._base_url}/users/me/messages/send", self._access_token, payload)
        except RuntimeError as exc:
            logger.warning("Gmail send failed: %s", exc)
            return False
        return True

    def _modify(self, message_id: str, payload: dict[str, Any]) -> bool:
        url = f"{self._base_url}/users/me/messages/{message_id}/modify"
        try:
            _gmail_api_post(url, self._access_token, payload)
        except RuntimeError as exc:
            logger.warning("Gmail modify failed for %s: %s", message_id, exc)
            return False
        return True

    def _label_id(self, name: str) -> str:
        """Summary: Resolve a label name to its id, creating the label when missing.

        Importance: Labels are created lazily on first use.
        Alternatives: Require labels to be created manually.
        """

        if name in self._label_ids:
            return self._label_ids[name]
        payload = _gmail_api_get(f"{self._base_url}/users/me/labels", self._access_token)
        for label in payload.get("labels", []):
            if label.get("name") and label.get("id"):
                self._label_ids[label["name"]] = label["id"]
        if name not in self._label_ids:
            created = _gmail_api_post(
                f"{self._base_url}/users/me/labels",
                self._access_token,
                {"name": name, "labelListVisibility": "labelShow", "messageListVisibility": "show"},
            )
            self._label_ids[name] = created["id"]
        return self._label_ids[name]


def build_reply(original: EmailMessage, body: str, is_html: bool = False) -> MimeMessage:
    """Summary: Build a threaded reply to the original message.

    Importance: In-Reply-To and References keep the reply in the client's thread.
    Alternatives: Let the provider thread by subject only.
    """

    mime = MimeMessage()
    mime["To"] = original.reply_address
    subject = original.subject or ""
    mime["Subject"] = subject if subject.lower().startswith("re:") else f"Re: {subject}"
    if original.message_id:
        mime["In-Reply-To"] = original.message_id
        references = f"{original.references or ''} {original.message_id}".strip()
        mime["References"] = references
    mime.set_content(body, subtype="html" if is_html else "plain")
    return mime


def encode_raw(mime: MimeMessage) -> str:
    """Encode a MIME message as base64url for the Gmail send endpoint."""

    return base64.urlsafe_b64encode(mime.as_bytes()).decode("ascii")


def _gmail_api_get(url: str, access_token: str) -> dict[str, Any]:
    """Summary: GET a Gmail endpoint and decode its JSON body.

    Importance: Single seam for Gmail reads, patched out in tests.
    Alternatives: Share an httpx client across calls.
    """

    request = urllib.request.Request(
        url,
        headers={"Authorization": f"Bearer {access_token}"},
        method="GET",
    )
    return _gmail_api_call(request)


def _gmail_api_post(url: str, access_token: str, payload: dict[str, Any]) -> dict[str, Any]:
    request = urllib.request.Request(
        url,
        data=json.dumps(payload).encode("utf-8"),
        headers={
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
        },
        method="POST",
    )
    return _gmail_api_call(request)


def _gmail_api_call(request: urllib.request.Request) -> dict[str, Any]:
    try:
        with urllib.request.urlopen(request, timeout=10) as response:
            raw = response.read().decode("utf-8")
    except urllib.error.HTTPError as exc:
        error_body = exc.read().decode("utf-8")
        raise RuntimeError(f"Gmail API request failed: {error_body or exc.reason}") from exc
    except urllib.error.URLError as exc:
        raise RuntimeError(f"Gmail API unreachable: {exc.reason}") from exc
    return json.loads(raw) if raw else {}


def _parse_gmail_message(message: dict[str, Any]) -> EmailMessage | None:
    """Summary: Parse a Gmail message payload into an EmailMessage.

    Importance: Normalizes Gmail payloads, including threading headers.
    Alternatives: Keep the raw payload on the message model.
    """

    message_id = message.get("id")
    if not message_id:
        return None
    payload = message.get("payload") or {}
    headers = _parse_gmail_headers(payload.get("headers", []))
    sender = headers.get("From", "")
    body, is_html = _extract_gmail_body(payload)
    if not body:
        body = message.get("snippet", "")
    return EmailMessage(
        id=message_id,
        sender=sender,
        sender_email=parseaddr(sender)[1],
        subject=headers.get("Subject", ""),
        body=body,
        date=headers.get("Date", ""),
        thread_id=message.get("threadId"),
        message_id=headers.get("Message-ID") or headers.get("Message-Id"),
        references=headers.get("References"),
        in_reply_to=headers.get("In-Reply-To"),
        is_html=is_html,
    )


def _parse_gmail_headers(headers: list[dict[str, Any]]) -> dict[str, str]:
    """Summary: Turn the Gmail header list into a name lookup.

    Importance: Sender, subject and threading ids are all read from headers.
    Alternatives: Search the list once per header name.
    """

    normalized: dict[str, str] = {}
    for header in headers:
        name = header.get("name")
        value = header.get("value")
        if name and value:
            normalized[name] = value
    return normalized


def _extract_gmail_body(payload: dict[str, Any]) -> tuple[str, bool]:
    """Summary: Extract a plain text body from a Gmail payload.

    Importance: Classification works on text; HTML-only bodies are stripped of tags.
    Alternatives: Classify from the Gmail snippet alone.
    """

    text_parts: list[str] = []
    html_parts: list[str] = []
    for part in _walk_gmail_parts(payload):
        data = (part.get("body") or {}).get("data")
        if not data:
            continue
        decoded = _decode_base64url(data)
        if part.get("mimeType") == "text/plain":
            text_parts.append(decoded)
        elif part.get("mimeType") == "text/html":
            html_parts.append(decoded)
    if text_parts:
        return "\n".join(item.strip() for item in text_parts if item.strip()).strip(), False
    if html_parts:
        stripped = (HTML_TAG_PATTERN.sub(" ", item) for item in html_parts)
        return "\n".join(" ".join(item.split()) for item in stripped if item.strip()).strip(), True
    return "", False


def _walk_gmail_parts(payload: dict[str, Any]) -> list[dict[str, Any]]:
    """Summary: Flatten nested MIME parts of a Gmail payload.

    Importance: Quote requests often arrive as multipart/alternative inside multipart/mixed.
    Alternatives: Read only the first text part.
    """

    parts: list[dict[str, Any]] = [payload]
    for part in payload.get("parts", []) or []:
        parts.extend(_walk_gmail_parts(part))
    return parts


def _decode_base64url(data: str) -> str:
    """Summary: Decode a base64url body part to text.

    Importance: Gmail omits padding, which is restored before decoding.
    Alternatives: Ask Gmail for the raw RFC 822 message instead.
    """

    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded.encode("utf-8")).decode("utf-8", errors="ignore")
