"""Turn untrusted TODO payloads into :class:`TodoItem` lists.

Two sources feed this module: the candidates the LLM backend returns for a
batch of message summaries, and snapshots pulled from the backend mirror.
Neither is trusted; bad entries are dropped, never raised.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from datetime import datetime
from typing import Any

import structlog
from pydantic import ValidationError

from mail_todo_agent.models import MessageSummary, Priority, TodoItem, TodoMeta, TodoState
from mail_todo_agent.todos.identity import build_todo_id, normalize_processed_keys, tracking_key_of
from mail_todo_agent.todos.lifecycle import MAX_ARCHIVED_TODOS, MAX_STORED_TODOS
from mail_todo_agent.utils.dates import to_iso, utc_now
from mail_todo_agent.utils.text import normalize_text, strip_code_fence, strip_markup, truncate_text

logger = structlog.get_logger()

MAX_TODOS = 25
TITLE_LIMIT = 120
DESCRIPTION_LIMIT = 500
SUBJECT_LIMIT = 220
AUTHOR_LIMIT = 180


def _first(raw: Mapping[str, Any], *names: str) -> Any:
    for name in names:
        value = raw.get(name)
        if value:
            return value
    return ""


def parse_todo_response(raw: Any) -> list[Any]:
    """Extract the raw candidate list from a backend response.

    Accepts ``{"todos": [...]}``, a bare list, or JSON text of either (optionally
    inside a code fence). Anything else yields an empty list.
    """
    if isinstance(raw, str):
        text = strip_code_fence(raw)
        if not text:
            return []
        try:
            raw = json.loads(text)
        except json.JSONDecodeError:
            logger.warning("todo_response_unparseable", length=len(text))
            return []

    if isinstance(raw, Mapping):
        raw = raw.get("todos")
    return list(raw) if isinstance(raw, list) else []


def normalize_todos(
    raw_todos: Any,
    source_by_key: Mapping[str, MessageSummary],
    max_items: int = MAX_TODOS,
    now: datetime | None = None,
) -> list[TodoItem]:
    """Validate backend candidates against the summaries offered this cycle."""
    if not isinstance(raw_todos, list):
        return []

    now = now or utc_now()
    seen: set[str] = set()
    normalized: list[TodoItem] = []
    rejected = 0

    for raw in raw_todos:
        if not isinstance(raw, Mapping):
            rejected += 1
            continue

        source_key = normalize_text(_first(raw, "sourceKey", "source_key"))
        source = source_by_key.get(source_key) if source_key else None
        if source is None or not tracking_key_of(source):
            rejected += 1
            continue

        title = truncate_text(strip_markup(_first(raw, "title", "task", "todo")), TITLE_LIMIT)
        if not title:
            rejected += 1
            continue
        description = truncate_text(
            strip_markup(_first(raw, "description", "details")), DESCRIPTION_LIMIT
        )

        dedupe_key = f"{source_key}::{title.lower()}"
        if dedupe_key in seen:
            continue
        seen.add(dedupe_key)

        normalized.append(
            TodoItem(
                id=build_todo_id(source_key, title, now),
                source_key=source_key,
                title=title,
                description=description,
                priority=Priority.coerce(raw.get("priority")),
                source_message_id=source.message_id,
                source_header_message_id=source.header_message_id,
                source_subject=source.subject,
                source_author=source.author,
                source_date=source.date,
            )
        )

    if rejected:
        logger.debug("todo_candidates_rejected", count=rejected)
    return normalized[:max_items]


def normalize_imported_item(raw: Any, index: int, archived: bool = False) -> TodoItem | None:
    """Clean one item of a mirror snapshot; ``None`` when it has no title."""
    if not isinstance(raw, Mapping):
        return None

    source_key = normalize_text(raw.get("sourceKey")) or f"IMPORTED-{index + 1}"
    title = truncate_text(_first(raw, "title", "task", "todo"), TITLE_LIMIT)
    if not title:
        return None

    done = True if archived else bool(raw.get("done"))
    return TodoItem(
        id=normalize_text(raw.get("id")) or build_todo_id(source_key, title),
        source_key=source_key,
        title=title,
        description=truncate_text(_first(raw, "description", "details"), DESCRIPTION_LIMIT),
        priority=Priority.coerce(raw.get("priority")),
        source_message_id=raw.get("sourceMessageId"),
        source_header_message_id=normalize_text(raw.get("sourceHeaderMessageId")),
        source_subject=truncate_text(raw.get("sourceSubject") or "(no subject)", SUBJECT_LIMIT),
        source_author=truncate_text(raw.get("sourceAuthor"), AUTHOR_LIMIT),
        source_date=to_iso(raw.get("sourceDate")),
        done=done,
        done_at=to_iso(raw.get("doneAt")) if done else "",
        archived_at=to_iso(raw.get("archivedAt")) if archived else "",
    )


def _imported_items(raw_items: Any, archived: bool) -> list[TodoItem]:
    items: list[TodoItem] = []
    for index, entry in enumerate(raw_items if isinstance(raw_items, list) else []):
        item = normalize_imported_item(entry, index, archived=archived)
        if item is not None:
            items.append(item)
    return items


def normalize_imported_state(raw: Any) -> TodoState:
    """Clean a whole mirror snapshot (``{items, archiveItems, meta}``)."""
    raw_state = raw if isinstance(raw, Mapping) else {}
    raw_items = raw_state.get("items")
    raw_archive = raw_state.get("archiveItems")

    items = _imported_items(raw_items, archived=False)[:MAX_STORED_TODOS]
    archive_items = _imported_items(raw_archive, archived=True)[:MAX_ARCHIVED_TODOS]

    raw_meta = raw_state.get("meta")
    meta = dict(raw_meta) if isinstance(raw_meta, Mapping) else {}
    meta["processedMessageKeys"] = normalize_processed_keys(meta.get("processedMessageKeys"))

    try:
        parsed_meta = TodoMeta.model_validate(meta)
    except ValidationError as e:
        logger.warning("imported_meta_invalid", error=str(e))
        parsed_meta = TodoMeta(processed_message_keys=meta["processedMessageKeys"])

    return TodoState(items=items, archive_items=archive_items, meta=parsed_meta)
