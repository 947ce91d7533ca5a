"""Helpers for parsing Gmail API messages into internal models."""

from __future__ import annotations

import base64
import binascii
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any

from mail_todo_agent.models import MessageHeader, MessagePart, TextPart

METADATA_HEADERS = ["Subject", "From", "Date", "Message-ID"]

# Labels that describe state rather than a location.
_STATE_LABELS = {"UNREAD", "STARRED", "IMPORTANT", "CHAT"}


def _header_map(payload: dict[str, Any]) -> dict[str, str]:
    headers = payload.get("headers") or []
    result: dict[str, str] = {}
    for h in headers:
        name = h.get("name")
        value = h.get("value")
        if isinstance(name, str) and isinstance(value, str):
            # Gmail can include duplicates; keep the first.
            result.setdefault(name.lower(), value)
    return result


def _parse_date(value: str | None, internal_date: Any) -> datetime | None:
    if value:
        try:
            return parsedate_to_datetime(value)
        except (TypeError, ValueError, OverflowError):
            pass
    try:
        return datetime.fromtimestamp(int(internal_date) / 1000, tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


def _folder(label_ids: list[str]) -> str:
    for label in label_ids:
        if label in _STATE_LABELS or label.startswith("CATEGORY_"):
            continue
        return label
    return ""


def message_to_header(message: dict[str, Any]) -> MessageHeader:
    """Convert a Gmail API message (format=metadata or full) to a MessageHeader.

    Args:
        message: Gmail API message dict.

    Returns:
        MessageHeader: Parsed header-only model.
    """

    hm = _header_map(message.get("payload") or {})

    label_ids = message.get("labelIds") or []
    if not isinstance(label_ids, list):
        label_ids = []
    label_ids = [str(x) for x in label_ids if isinstance(x, str)]

    return MessageHeader(
        id=str(message.get("id") or ""),
        header_message_id=(hm.get("message-id") or "").strip(),
        date=_parse_date(hm.get("date"), message.get("internalDate")),
        author=hm.get("from") or "",
        subject=hm.get("subject") or "",
        folder=_folder(label_ids),
        unread="UNREAD" in label_ids,
        flagged="STARRED" in label_ids,
    )


def decode_body_data(data: str | None) -> str | None:
    """Decode a Gmail base64url body, tolerating missing padding."""
    if not data:
        return None
    try:
        raw = base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))
    except (binascii.Error, ValueError):
        return None
    return raw.decode("utf-8", errors="replace")


def payload_to_part(payload: dict[str, Any]) -> MessagePart:
    """Convert a Gmail ``payload`` (format=full) to a decoded MessagePart tree."""
    body = payload.get("body") or {}
    content_type = str(payload.get("mimeType") or "")
    return MessagePart(
        content_type=content_type,
        body=decode_body_data(body.get("data")) if content_type.startswith("text/") else None,
        parts=[payload_to_part(child) for child in payload.get("parts") or [] if isinstance(child, dict)],
    )


def inline_text_parts(payload: dict[str, Any]) -> list[TextPart]:
    """Flatten the inline (non-attachment) text leaves of a Gmail payload."""
    parts: list[TextPart] = []
    stack = [payload]
    while stack:
        node = stack.pop()
        children = node.get("parts") or []
        stack.extend(reversed([c for c in children if isinstance(c, dict)]))

        content_type = str(node.get("mimeType") or "").lower()
        if not content_type.startswith("text/") or node.get("filename"):
            continue
        content = decode_body_data((node.get("body") or {}).get("data"))
        if content:
            parts.append(TextPart(content_type=content_type, content=content))
    return parts
