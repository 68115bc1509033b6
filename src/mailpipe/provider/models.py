"""Typed views over Gmail API JSON responses.

The client returns raw dicts for most calls; the change log and message
listing are parsed into these dataclasses because the sync engine walks
them record by record.
"""

import base64
import binascii
from dataclasses import dataclass, field
from email.utils import parseaddr
from typing import Any

# Body text kept for routing decisions
MAX_BODY_CHARS = 4000


@dataclass(frozen=True)
class MessageRef:
    """A message reference as it appears in listings and change records."""

    id: str
    thread_id: str | None = None
    label_ids: tuple[str, ...] = ()

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "MessageRef":
        return cls(
            id=data["id"],
            thread_id=data.get("threadId"),
            label_ids=tuple(data.get("labelIds") or ()),
        )


@dataclass(frozen=True)
class LabelChange:
    """Labels added to one message."""

    message: MessageRef
    label_ids: tuple[str, ...] = ()


@dataclass
class HistoryRecord:
    """One change-log record. A record may carry several kinds of change."""

    id: str | None = None
    messages_added: list[MessageRef] = field(default_factory=list)
    labels_added: list[LabelChange] = field(default_factory=list)
    messages_deleted: list[MessageRef] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "HistoryRecord":
        return cls(
            id=data.get("id"),
            messages_added=[
                MessageRef.from_api(item["message"])
                for item in data.get("messagesAdded") or []
                if item.get("message")
            ],
            labels_added=[
                LabelChange(
                    message=MessageRef.from_api(item["message"]),
                    label_ids=tuple(item.get("labelIds") or ()),
                )
                for item in data.get("labelsAdded") or []
                if item.get("message")
            ],
            messages_deleted=[
                MessageRef.from_api(item["message"])
                for item in data.get("messagesDeleted") or []
                if item.get("message")
            ],
        )


@dataclass
class HistoryPage:
    """One page of the change log.

    Attributes:
        records: Change records in provider order
        next_page_token: Token for the next page, None on the last page
        history_id: The mailbox's current history id, if reported
    """

    records: list[HistoryRecord] = field(default_factory=list)
    next_page_token: str | None = None
    history_id: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "HistoryPage":
        history_id = data.get("historyId")
        return cls(
            records=[HistoryRecord.from_api(item) for item in data.get("history") or []],
            next_page_token=data.get("nextPageToken") or None,
            history_id=str(history_id) if history_id is not None else None,
        )


@dataclass
class MessageSummary:
    """The fields the router matches on."""

    message_id: str
    thread_id: str | None
    sender_email: str
    subject: str
    headers: dict[str, str] = field(default_factory=dict)
    body: str = ""

    @classmethod
    def from_api(cls, message: dict[str, Any]) -> "MessageSummary":
        payload = message.get("payload") or {}
        headers = parse_headers(payload)
        return cls(
            message_id=message.get("id", ""),
            thread_id=message.get("threadId"),
            sender_email=parse_sender(headers.get("From", "")),
            subject=headers.get("Subject", ""),
            headers=headers,
            body=extract_body(payload)[:MAX_BODY_CHARS],
        )


def parse_headers(payload: dict[str, Any]) -> dict[str, str]:
    """Header name -> value. First occurrence of a repeated header wins."""
    headers: dict[str, str] = {}
    for header in payload.get("headers") or []:
        name = header.get("name")
        if name and name not in headers:
            headers[name] = header.get("value", "")
    return headers


def parse_sender(from_header: str) -> str:
    """Lowercased address from a From header ('' if none)."""
    _, address = parseaddr(from_header or "")
    return address.lower()


def _decode_body(data: str) -> str:
    padded = data + "=" * (-len(data) % 4)
    try:
        return base64.urlsafe_b64decode(padded).decode("utf-8", errors="replace")
    except (binascii.Error, ValueError):
        return ""


def _find_part(payload: dict[str, Any], plain_only: bool) -> str:
    mime_type = payload.get("mimeType", "")
    data = (payload.get("body") or {}).get("data")
    parts = payload.get("parts") or []
    if data and not parts and (not plain_only or mime_type.startswith("text/plain")):
        return _decode_body(data)

    for part in parts:
        text = _find_part(part, plain_only)
        if text:
            return text
    return ""


def extract_body(payload: dict[str, Any]) -> str:
    """Body text of a message payload.

    The first text/plain part in a multipart tree wins; otherwise the
    first leaf body of any type.
    """
    return _find_part(payload, plain_only=True) or _find_part(payload, plain_only=False)
