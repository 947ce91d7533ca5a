"""TODO state store: local persistence plus the best-effort backend mirror.

The local SQLite copy is authoritative. Every save is pushed to the backend's
``/api/todos/state`` endpoint so the state survives a profile reset; the push
never blocks or fails a local write. When the local state is empty at
startup, the mirror is used to bootstrap it.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

import structlog

from mail_todo_agent.backend import BackendClient
from mail_todo_agent.config import Settings
from mail_todo_agent.exceptions import StateStoreError
from mail_todo_agent.models import TodoState
from mail_todo_agent.store.repository import TodoStateRepository
from mail_todo_agent.todos.identity import collect_processed_keys, merge_processed_keys
from mail_todo_agent.todos.lifecycle import (
    are_archive_lists_equivalent,
    are_todo_lists_equivalent,
    normalize_todo_collections,
)
from mail_todo_agent.todos.normalizer import normalize_imported_state
from mail_todo_agent.utils.dates import format_iso, utc_now

logger = structlog.get_logger()

BACKEND_URL_SETTING = "backend_base_url"


@dataclass(frozen=True)
class NormalizedState:
    """A loaded state after aging, and whether it differs from what is stored."""

    state: TodoState
    changed: bool
    moved_to_archive_count: int


@dataclass(frozen=True)
class ImportResult:
    """Outcome of a mirror bootstrap."""

    imported: bool
    state: TodoState


class TodoStateStore:
    """The single writer of the local and mirrored TODO state."""

    def __init__(
        self,
        repository: TodoStateRepository,
        backend: Optional[BackendClient] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        from mail_todo_agent.config import get_settings

        self.repository = repository
        self.backend = backend
        self.settings = settings or get_settings()

    def load(self) -> TodoState:
        return self.repository.load_state()

    async def save(self, state: TodoState, push: bool = True) -> TodoState:
        """Persist ``state`` locally, then push it to the backend mirror.

        Mirror failures are logged and swallowed.
        """
        saved = self.repository.save_state(state)
        logger.info(
            "todo_state_saved",
            todo_count=len(saved.items),
            archive_count=len(saved.archive_items),
        )
        if push and self.backend is not None:
            await self._push(saved)
        return saved

    async def _push(self, state: TodoState) -> None:
        payload = {
            "items": [item.to_json_dict() for item in state.items],
            "archiveItems": [item.to_json_dict() for item in state.archive_items],
            "meta": state.meta.to_json_dict(),
            "savedAt": format_iso(utc_now()),
        }
        try:
            await self.backend.push_state(payload)
        except Exception as e:
            logger.warning("todo_state_mirror_skipped", error=str(e) or type(e).__name__)

    def normalize(self, state: TodoState, now: Optional[datetime] = None) -> NormalizedState:
        """Age ``state`` and recompute the derived meta fields."""
        now = now or utc_now()
        result = normalize_todo_collections(
            state.items,
            state.archive_items,
            now=now,
            retention=self._retention(),
            max_items=self.settings.max_stored_todos,
            max_archive_items=self.settings.max_archived_todos,
        )
        processed = merge_processed_keys(
            state.meta.processed_message_keys,
            collect_processed_keys(result.items, result.archive_items),
            limit=self.settings.max_processed_message_keys,
        )
        meta = state.meta.model_copy(
            update={
                "processed_message_keys": processed,
                "todo_count": len(result.items),
                "archive_count": len(result.archive_items),
                "last_archived_at": (
                    format_iso(now) if result.moved_to_archive_count else state.meta.last_archived_at
                ),
            }
        )
        changed = (
            not are_todo_lists_equivalent(state.items, result.items)
            or not are_archive_lists_equivalent(state.archive_items, result.archive_items)
            or processed != state.meta.processed_message_keys
            or state.meta.archive_count != len(result.archive_items)
        )
        return NormalizedState(
            state=TodoState(items=result.items, archive_items=result.archive_items, meta=meta),
            changed=changed,
            moved_to_archive_count=result.moved_to_archive_count,
        )

    def normalized(self, now: Optional[datetime] = None) -> NormalizedState:
        """Load the stored state and age it (without persisting)."""
        return self.normalize(self.load(), now)

    async def import_from_mirror_if_empty(self, now: Optional[datetime] = None) -> ImportResult:
        """Bootstrap an empty local state from the backend mirror.

        Raises:
            BackendError: If the mirror cannot be read.
        """
        local = self.load()
        if not local.is_empty or self.backend is None:
            return ImportResult(imported=False, state=local)

        remote = normalize_imported_state(await self.backend.fetch_state())
        if remote.is_empty:
            logger.info("todo_state_import_skipped", reason="mirror_empty")
            return ImportResult(imported=False, state=local)

        now = now or utc_now()
        now_iso = format_iso(now)
        result = normalize_todo_collections(
            remote.items,
            remote.archive_items,
            now=now,
            retention=self._retention(),
            max_items=self.settings.max_stored_todos,
            max_archive_items=self.settings.max_archived_todos,
        )
        meta = remote.meta.model_copy(
            update={
                "last_imported_from_backend_at": now_iso,
                "backend_online": True,
                "backend_status_checked_at": now_iso,
                "processed_message_keys": merge_processed_keys(
                    remote.meta.processed_message_keys,
                    collect_processed_keys(result.items, result.archive_items),
                    limit=self.settings.max_processed_message_keys,
                ),
            }
        )
        state = TodoState(items=result.items, archive_items=result.archive_items, meta=meta)
        # The mirror already holds this state.
        saved = await self.save(state, push=False)
        logger.info(
            "todo_state_imported",
            todo_count=len(saved.items),
            archive_count=len(saved.archive_items),
        )
        return ImportResult(imported=True, state=saved)

    def remembered_backend_url(self) -> Optional[str]:
        return self.repository.get_setting(BACKEND_URL_SETTING)

    def remember_backend_url(self, base_url: str) -> None:
        try:
            self.repository.set_setting(BACKEND_URL_SETTING, base_url)
        except StateStoreError as e:
            logger.warning("backend_url_not_remembered", base_url=base_url, error=str(e))

    def _retention(self) -> timedelta:
        return timedelta(days=self.settings.done_to_archive_days)
