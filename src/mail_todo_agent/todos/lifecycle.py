"""Merge and lifecycle rules for TODO collections.

Everything here is pure: functions take lists of :class:`TodoItem` and return
new lists, so the same rules apply to freshly generated items, a loaded
snapshot and an imported mirror copy alike.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta

from mail_todo_agent.exceptions import InputRejectedError, TodoNotFoundError
from mail_todo_agent.models import TodoItem
from mail_todo_agent.todos.identity import merge_key_of
from mail_todo_agent.utils.dates import format_iso, to_timestamp, utc_now
from mail_todo_agent.utils.text import normalize_text

MAX_STORED_TODOS = 400
MAX_ARCHIVED_TODOS = 800
DONE_TO_ARCHIVE = timedelta(days=3)


@dataclass(frozen=True)
class MergeResult:
    """Outcome of merging a generation batch into the active list."""

    items: list[TodoItem]
    added_count: int


@dataclass(frozen=True)
class CollectionsResult:
    """Active and archive lists after aging."""

    items: list[TodoItem]
    archive_items: list[TodoItem]
    moved_to_archive_count: int


def merge_todo_items(
    existing: Sequence[TodoItem],
    incoming: Sequence[TodoItem],
    archive: Sequence[TodoItem] = (),
    max_items: int = MAX_STORED_TODOS,
) -> MergeResult:
    """Merge ``incoming`` into ``existing``.

    Incoming items come first, in their order. An incoming item whose merge key
    is archived is dropped. When it matches an existing item, the existing id is
    kept and a completed existing item stays completed. Existing items missing
    from ``incoming`` follow. The result is capped at ``max_items``, evicting
    from the tail.
    """
    archived_keys = {merge_key_of(item) for item in archive}
    existing_by_key: dict[str, TodoItem] = {}
    for item in existing:
        existing_by_key.setdefault(merge_key_of(item), item)

    merged: list[TodoItem] = []
    seen: set[str] = set()
    added = 0

    for item in incoming:
        key = merge_key_of(item)
        if key in seen or key in archived_keys:
            continue
        seen.add(key)

        match = existing_by_key.get(key)
        if match is None:
            added += 1
            merged.append(item)
            continue

        update = {"id": match.id}
        if match.done:
            update.update(done=True, done_at=match.done_at or "")
        merged.append(item.model_copy(update=update))

    for item in existing:
        key = merge_key_of(item)
        if key in seen:
            continue
        seen.add(key)
        merged.append(item)

    return MergeResult(items=merged[:max_items], added_count=added)


def sort_todo_items_by_status(items: Iterable[TodoItem]) -> list[TodoItem]:
    """Pending items in their order, then completed ones, most recently done first."""
    pending: list[TodoItem] = []
    completed: list[TodoItem] = []
    for item in items:
        (completed if item.done else pending).append(item)
    completed.sort(key=lambda item: to_timestamp(item.done_at), reverse=True)
    return pending + completed


def merge_archive_items(
    existing: Iterable[TodoItem],
    incoming: Iterable[TodoItem],
    max_items: int = MAX_ARCHIVED_TODOS,
) -> list[TodoItem]:
    """Prepend ``incoming`` to ``existing``, dedupe by merge key and cap."""
    merged: list[TodoItem] = []
    seen: set[str] = set()
    for item in [*incoming, *existing]:
        key = merge_key_of(item) or normalize_text(item.id)
        if not key or key in seen:
            continue
        seen.add(key)
        merged.append(item)
        if len(merged) >= max_items:
            break
    return merged


def _archived_copy(item: TodoItem, archived_at: str) -> TodoItem:
    return item.model_copy(
        update={
            "done": True,
            "done_at": normalize_text(item.done_at) or archived_at,
            "archived_at": archived_at,
        }
    )


def normalize_todo_collections(
    items: Iterable[TodoItem],
    archive_items: Iterable[TodoItem],
    now: datetime | None = None,
    retention: timedelta = DONE_TO_ARCHIVE,
    max_items: int = MAX_STORED_TODOS,
    max_archive_items: int = MAX_ARCHIVED_TODOS,
) -> CollectionsResult:
    """Order the active list and move long-completed items to the archive.

    A completed item is archived once ``now - done_at >= retention``. Items
    whose ``done_at`` is empty or unparseable stay active. Applying this twice
    with the same ``now`` changes nothing the second time.
    """
    now = now or utc_now()
    now_ts = now.timestamp()
    archived_at = format_iso(now)
    retention_seconds = retention.total_seconds()

    visible: list[TodoItem] = []
    moved: list[TodoItem] = []
    for item in sort_todo_items_by_status(items):
        if not item.done:
            visible.append(item)
            continue
        done_ts = to_timestamp(item.done_at)
        if not done_ts or now_ts - done_ts < retention_seconds:
            visible.append(item)
            continue
        moved.append(_archived_copy(item, archived_at))

    return CollectionsResult(
        items=visible[:max_items],
        archive_items=merge_archive_items(archive_items, moved, max_items=max_archive_items),
        moved_to_archive_count=len(moved),
    )


def are_todo_lists_equivalent(left: Sequence[TodoItem], right: Sequence[TodoItem]) -> bool:
    if len(left) != len(right):
        return False
    return all(
        a.id == b.id and a.done == b.done and normalize_text(a.done_at) == normalize_text(b.done_at)
        for a, b in zip(left, right)
    )


def are_archive_lists_equivalent(left: Sequence[TodoItem], right: Sequence[TodoItem]) -> bool:
    if len(left) != len(right):
        return False
    return all(
        a.id == b.id
        and normalize_text(a.done_at) == normalize_text(b.done_at)
        and normalize_text(a.archived_at) == normalize_text(b.archived_at)
        for a, b in zip(left, right)
    )


def set_item_done(
    items: Sequence[TodoItem],
    todo_id: str,
    done: bool,
    now: datetime | None = None,
) -> list[TodoItem]:
    """Return a copy of ``items`` with one item marked done or pending.

    Raises:
        InputRejectedError: If ``todo_id`` is empty.
        TodoNotFoundError: If no active item has ``todo_id``.
    """
    todo_id = normalize_text(todo_id)
    if not todo_id:
        raise InputRejectedError("Missing TODO id.")

    done_at = format_iso(now or utc_now()) if done else ""
    updated: list[TodoItem] = []
    found = False
    for item in items:
        if item.id == todo_id:
            found = True
            item = item.model_copy(update={"done": done, "done_at": done_at})
        updated.append(item)

    if not found:
        raise TodoNotFoundError("TODO not found.")
    return updated
