"""Stable identities for messages and TODO items.

Two keys are derived here:

* the *tracking key* of a message (``h:<header message id>`` or
  ``m:<store id>``), used to remember which messages were already analysed;
* the *merge key* of a TODO item, used to recognise the same task across
  regenerations and to keep archived tasks from resurfacing.
"""

from __future__ import annotations

import re
import secrets
from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any

from mail_todo_agent.models import MessageHeader, MessageSummary, TodoItem
from mail_todo_agent.utils.dates import utc_now

DEFAULT_PROCESSED_KEY_LIMIT = 6000

_WHITESPACE_RE = re.compile(r"\s+")
_SLUG_RE = re.compile(r"[^a-z0-9]+")
_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def normalize_merge_part(value: Any) -> str:
    """Trim, lower-case and collapse internal whitespace."""
    return _WHITESPACE_RE.sub(" ", str(value or "").strip().lower())


def tracking_key(header_message_id: Any, message_id: Any) -> str:
    header_id = str(header_message_id or "").strip().lower()
    if header_id:
        return f"h:{header_id}"
    store_id = str(message_id or "").strip()
    if store_id and store_id != "0":
        return f"m:{store_id}"
    return ""


def _field(obj: Any, attr: str, alias: str) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(alias, obj.get(attr))
    return getattr(obj, attr, None)


def tracking_key_of(obj: Any) -> str:
    """Tracking key of a header, summary, TODO item or camelCase mapping.

    An empty string means the message cannot be deduplicated and must never
    be marked as processed.
    """
    if isinstance(obj, MessageHeader):
        return tracking_key(obj.header_message_id, obj.id)
    if isinstance(obj, MessageSummary):
        return tracking_key(obj.header_message_id, obj.message_id)
    if isinstance(obj, TodoItem):
        return tracking_key(obj.source_header_message_id, obj.source_message_id)
    return tracking_key(
        _field(obj, "source_header_message_id", "sourceHeaderMessageId")
        or _field(obj, "header_message_id", "headerMessageId"),
        _field(obj, "source_message_id", "sourceMessageId") or _field(obj, "message_id", "messageId"),
    )


def merge_key_of(item: TodoItem) -> str:
    header_id = normalize_merge_part(item.source_header_message_id)
    if header_id:
        identity = header_id
    elif item.source_message_id:
        identity = f"mid:{item.source_message_id}"
    else:
        identity = normalize_merge_part(item.source_key)
    return "::".join(
        [identity, normalize_merge_part(item.title), normalize_merge_part(item.description)]
    )


def normalize_processed_keys(keys: Any, limit: int = DEFAULT_PROCESSED_KEY_LIMIT) -> list[str]:
    """Trim, lower-case and dedupe ``keys`` keeping the first ``limit`` entries."""
    if not isinstance(keys, (list, tuple)):
        return []
    result: list[str] = []
    seen: set[str] = set()
    for raw in keys:
        key = str(raw or "").strip().lower()
        if not key or key in seen:
            continue
        seen.add(key)
        result.append(key)
        if len(result) >= limit:
            break
    return result


def merge_processed_keys(
    *key_lists: Iterable[str] | None,
    limit: int = DEFAULT_PROCESSED_KEY_LIMIT,
) -> list[str]:
    """Ordered union of ``key_lists``; the oldest entries are dropped beyond ``limit``."""
    merged: list[str] = []
    seen: set[str] = set()
    for keys in key_lists:
        for raw in keys or ():
            key = str(raw or "").strip().lower()
            if not key or key in seen:
                continue
            seen.add(key)
            merged.append(key)
    if len(merged) > limit:
        merged = merged[len(merged) - limit :]
    return merged


def collect_processed_keys(*item_lists: Iterable[TodoItem]) -> list[str]:
    keys: list[str] = []
    for items in item_lists:
        for item in items:
            key = tracking_key_of(item)
            if key:
                keys.append(key)
    return normalize_processed_keys(keys)


def _base36(number: int) -> str:
    if number <= 0:
        return "0"
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def build_todo_id(source_key: str, title: str, now: datetime | None = None) -> str:
    """Opaque, practically unique id for a freshly generated TODO item."""
    now = now or utc_now()
    slug = _SLUG_RE.sub("-", str(title or "").lower()[:24]).strip("-") or "todo"
    stamp = _base36(int(now.timestamp() * 1000))
    return f"{source_key or 'X'}-{slug}-{stamp}-{secrets.token_hex(3)}"
