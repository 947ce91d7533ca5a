"""Timestamp helpers.

Timestamps are persisted as ISO-8601 UTC strings with millisecond precision
and a trailing ``Z``. Equivalence checks compare these strings, so every
writer formats through :func:`format_iso`.
"""

from __future__ import annotations

from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_datetime(value: Any) -> datetime | None:
    """Leniently parse ISO-8601 strings, RFC 2822 dates, datetimes or epoch milliseconds."""
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, bool):
        return None
    elif isinstance(value, (int, float)):
        try:
            dt = datetime.fromtimestamp(float(value) / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    else:
        raw = str(value).strip()
        if not raw:
            return None
        # ISO-8601 parsing: allow trailing Z.
        iso = raw[:-1] + "+00:00" if raw.endswith("Z") else raw
        try:
            dt = datetime.fromisoformat(iso)
        except ValueError:
            try:
                dt = parsedate_to_datetime(raw)
            except (TypeError, ValueError, IndexError):
                return None
            if dt is None:
                return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def to_iso(value: Any) -> str:
    """Normalize any accepted date representation to the persisted form, or ""."""
    dt = parse_datetime(value)
    return format_iso(dt) if dt else ""


def to_timestamp(value: Any) -> float:
    """Seconds since the epoch, or 0.0 when ``value`` is empty or unparseable."""
    dt = parse_datetime(value)
    return dt.timestamp() if dt else 0.0
