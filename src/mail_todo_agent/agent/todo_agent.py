"""TODO refresh orchestration.

This module provides the agent that turns recent mail into a persisted TODO
list and serves every read and write of that list to UI surfaces.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Optional, Protocol

import structlog
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from mail_todo_agent.backend import BackendClient
from mail_todo_agent.config import Settings
from mail_todo_agent.exceptions import (
    ConfigurationError,
    InputRejectedError,
    MailTodoError,
    NotAuthenticatedError,
    TodoNotFoundError,
)
from mail_todo_agent.models import BackendStatus, TodoState, ViewState
from mail_todo_agent.store import TodoStateStore
from mail_todo_agent.todos.collector import MessageCollector
from mail_todo_agent.todos.identity import merge_processed_keys, tracking_key_of
from mail_todo_agent.todos.lifecycle import merge_todo_items, set_item_done
from mail_todo_agent.todos.normalizer import normalize_todos, parse_todo_response
from mail_todo_agent.utils.dates import format_iso, parse_datetime, utc_now
from mail_todo_agent.utils.text import normalize_text

logger = structlog.get_logger()


class RefreshState(str, Enum):
    """Refresh cycle state enumeration."""

    IDLE = "idle"
    RUNNING = "running"


class IntentKind(str, Enum):
    """Actions a UI surface can request."""

    GET_STATE = "get_state"
    REFRESH = "refresh"
    TOGGLE_DONE = "toggle_done"
    REPLY = "reply"
    OPEN_SOURCE = "open_source"
    REPLY_SENT = "reply_sent"
    COMPOSE_CLOSED = "compose_closed"
    BACKEND_STATUS = "backend_status"


class Intent(BaseModel):
    """A UI request, as sent by panels or popups."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    kind: IntentKind
    todo_id: str = ""
    done: bool = False
    message_id: str = ""
    header_message_id: str = ""
    compose_id: str = ""
    reason: str = "manual"
    force: bool = False


class MailUi(Protocol):
    """Mail client UI operations the agent can trigger."""

    async def begin_reply(self, message_id: str) -> Optional[str]:
        """Open a reply to ``message_id`` and return the compose window id."""
        ...

    async def open_message(self, message_id: str, header_message_id: str) -> None:
        """Show a message, by store id or by header Message-ID."""
        ...


class TodoAgent:
    """Keeps the TODO list in sync with the mailbox.

    All writes (refresh cycles, manual toggles, reply completion, bootstrap
    import) are serialised through one lock. Concurrent ``refresh`` calls share
    a single in-flight cycle.
    """

    def __init__(
        self,
        store: TodoStateStore,
        backend: BackendClient,
        collector: MessageCollector,
        settings: Settings | None = None,
        mail_ui: MailUi | None = None,
    ) -> None:
        """Initialize the TODO agent.

        Args:
            store: State store (local persistence and mirror).
            backend: LLM backend client.
            collector: Candidate message collector.
            settings: Application settings. If None, uses default settings.
            mail_ui: Optional mail client UI used for replies and opening sources.
        """
        from mail_todo_agent.config import get_settings

        self.settings = settings or get_settings()
        self.store = store
        self.backend = backend
        self.collector = collector
        self.mail_ui = mail_ui

        self._write_lock = asyncio.Lock()
        self._refresh_task: asyncio.Task[TodoState] | None = None
        self._reply_todos: dict[str, str] = {}
        self._status: BackendStatus | None = None
        logger.info("todo_agent_initialized")

    @property
    def refresh_state(self) -> RefreshState:
        return RefreshState.RUNNING if self._refresh_task is not None else RefreshState.IDLE

    async def refresh(self, reason: str = "manual", force: bool = False) -> TodoState:
        """Run a refresh cycle, or join the one already in flight."""
        if self._refresh_task is None:
            task = asyncio.create_task(self._run_refresh(reason, force))
            task.add_done_callback(self._refresh_finished)
            self._refresh_task = task
        else:
            logger.debug("todo_refresh_joined", reason=reason)
        return await asyncio.shield(self._refresh_task)

    def _refresh_finished(self, task: asyncio.Task[TodoState]) -> None:
        if self._refresh_task is task:
            self._refresh_task = None
        # Joiners may all have been cancelled; mark the outcome as retrieved.
        if not task.cancelled():
            task.exception()

    async def _run_refresh(self, reason: str, force: bool) -> TodoState:
        async with self._write_lock:
            logger.info("todo_refresh_started", reason=reason, force=force)
            try:
                return await self._refresh_cycle(reason, force)
            except Exception as e:
                await self._record_failure(reason, e)
                raise

    async def _refresh_cycle(self, reason: str, force: bool) -> TodoState:
        now = utc_now()
        normalized = self.store.normalized(now)
        current = normalized.state
        if normalized.changed:
            current = await self.store.save(current)

        last_generated = parse_datetime(current.meta.last_generated_at)
        stale_after = timedelta(minutes=self.settings.stale_after_minutes)
        if not force and reason == "startup" and last_generated and now - last_generated < stale_after:
            logger.info("todo_refresh_skipped", reason=reason, last_generated_at=current.meta.last_generated_at)
            return current

        status = await self.backend_status(force=True)
        collected = await self.collector.collect(
            current.meta.last_generated_at,
            current.meta.processed_message_keys,
            now,
        )
        summaries = collected.summaries

        generated = []
        if summaries:
            response = await self.backend.generate_todos(
                {
                    "model": self.settings.model,
                    "language": self.settings.language,
                    "messages": [summary.to_backend_payload() for summary in summaries],
                }
            )
            generated = normalize_todos(
                parse_todo_response(response),
                {summary.source_key: summary for summary in summaries},
                max_items=self.settings.max_todos,
                now=now,
            )

        merged = merge_todo_items(
            current.items,
            generated,
            current.archive_items,
            max_items=self.settings.max_stored_todos,
        )
        finished = utc_now()
        aged = self.store.normalize(
            TodoState(items=merged.items, archive_items=current.archive_items, meta=current.meta),
            finished,
        )
        finished_iso = format_iso(finished)
        meta = aged.state.meta.model_copy(
            update={
                "last_generated_at": finished_iso,
                "last_attempt_at": finished_iso,
                "last_reason": reason,
                "source_message_count": len(summaries),
                "added_todo_count": merged.added_count,
                "backend_online": status.online,
                "backend_codex_auth": status.codex_auth,
                "backend_status_checked_at": status.checked_at,
                "processed_message_keys": merge_processed_keys(
                    aged.state.meta.processed_message_keys,
                    [tracking_key_of(summary) for summary in summaries],
                    limit=self.settings.max_processed_message_keys,
                ),
                "next_refresh_at": format_iso(
                    finished + timedelta(minutes=self.settings.refresh_interval_minutes)
                ),
                "last_error": "",
            }
        )
        saved = await self.store.save(
            TodoState(items=aged.state.items, archive_items=aged.state.archive_items, meta=meta)
        )
        logger.info(
            "todo_refresh_completed",
            reason=reason,
            source_message_count=len(summaries),
            generated=len(generated),
            added=merged.added_count,
            archived=aged.moved_to_archive_count,
            todo_count=len(saved.items),
        )
        return saved

    async def _record_failure(self, reason: str, error: Exception) -> None:
        logger.error("todo_refresh_failed", reason=reason, error=str(error))
        try:
            current = self.store.load()
        except MailTodoError as e:
            logger.error("todo_refresh_failure_not_recorded", error=str(e))
            return
        status = await self.backend_status(force=True)
        codex_auth = False if isinstance(error, NotAuthenticatedError) else status.codex_auth
        meta = current.meta.model_copy(
            update={
                "last_attempt_at": format_iso(utc_now()),
                "last_reason": reason,
                "backend_online": status.online,
                "backend_codex_auth": codex_auth,
                "backend_status_checked_at": status.checked_at,
                "last_error": str(error) or "TODO refresh failed.",
            }
        )
        try:
            await self.store.save(
                TodoState(items=current.items, archive_items=current.archive_items, meta=meta)
            )
        except MailTodoError as e:
            logger.error("todo_refresh_failure_not_recorded", error=str(e))

    async def backend_status(self, force: bool = False) -> BackendStatus:
        """Backend health, cached for ``backend_status_stale_seconds``."""
        if not force and self._status is not None:
            checked_at = parse_datetime(self._status.checked_at)
            max_age = timedelta(seconds=self.settings.backend_status_stale_seconds)
            if checked_at and utc_now() - checked_at < max_age:
                return self._status
        self._status = await self.backend.health()
        return self._status

    async def get_view_state(self) -> ViewState:
        """Current state for display, with fresh backend health."""
        normalized = self.store.normalized()
        state = normalized.state
        if normalized.changed and not self._write_lock.locked():
            async with self._write_lock:
                normalized = self.store.normalized()
                state = await self.store.save(normalized.state) if normalized.changed else normalized.state

        meta = state.meta
        checked_at = parse_datetime(meta.backend_status_checked_at)
        max_age = timedelta(seconds=self.settings.backend_status_stale_seconds)
        fresh = checked_at is not None and utc_now() - checked_at < max_age
        if meta.backend_online is None or not fresh:
            status = await self.backend_status()
            meta = meta.model_copy(
                update={
                    "backend_online": status.online,
                    "backend_codex_auth": status.codex_auth,
                    "backend_status_checked_at": status.checked_at,
                }
            )

        return ViewState(
            items=state.items,
            archive_items=state.archive_items,
            meta=meta,
            is_refreshing=self._refresh_task is not None,
            keep_panel_open=self.settings.keep_panel_open,
        )

    async def set_todo_done(self, todo_id: str, done: bool, now: datetime | None = None) -> TodoState:
        """Mark an active TODO done or pending and age the lists right away.

        Raises:
            InputRejectedError: If ``todo_id`` is empty.
            TodoNotFoundError: If no active TODO has that id.
        """
        async with self._write_lock:
            now = now or utc_now()
            state = self.store.load()
            items = set_item_done(state.items, todo_id, done, now)
            aged = self.store.normalize(
                TodoState(items=items, archive_items=state.archive_items, meta=state.meta), now
            )
            meta = aged.state.meta.model_copy(update={"last_manual_update_at": format_iso(now)})
            saved = await self.store.save(
                TodoState(items=aged.state.items, archive_items=aged.state.archive_items, meta=meta)
            )
        logger.info("todo_done_state_changed", todo_id=todo_id, done=done, archived=aged.moved_to_archive_count)
        return saved

    def _require_mail_ui(self) -> MailUi:
        if self.mail_ui is None:
            raise ConfigurationError("No mail client UI is attached.")
        return self.mail_ui

    async def begin_reply(self, todo_id: str, message_id: str) -> Optional[str]:
        """Open a reply to the TODO's source message and remember the pairing."""
        message_id = normalize_text(message_id)
        if not message_id:
            raise InputRejectedError("Cannot reply: missing source message id.")
        compose_id = await self._require_mail_ui().begin_reply(message_id)
        todo_id = normalize_text(todo_id)
        if compose_id and todo_id:
            self._reply_todos[str(compose_id)] = todo_id
        logger.info("todo_reply_started", todo_id=todo_id, compose_id=compose_id)
        return compose_id

    async def on_reply_sent(self, compose_id: str) -> TodoState | None:
        """Complete the TODO a sent reply was opened from, if any."""
        todo_id = self._reply_todos.pop(str(compose_id), None)
        if not todo_id:
            return None
        try:
            return await self.set_todo_done(todo_id, True)
        except TodoNotFoundError:
            logger.info("todo_reply_target_gone", todo_id=todo_id, compose_id=compose_id)
            return None

    def on_compose_closed(self, compose_id: str) -> None:
        self._reply_todos.pop(str(compose_id), None)

    async def open_source(self, message_id: str = "", header_message_id: str = "") -> None:
        message_id = normalize_text(message_id)
        header_message_id = normalize_text(header_message_id)
        if not message_id and not header_message_id:
            raise InputRejectedError("Cannot open source email: missing message reference.")
        await self._require_mail_ui().open_message(message_id, header_message_id)

    async def handle_intent(self, intent: Intent | dict[str, Any]) -> Any:
        """Single entry point for UI surfaces."""
        if not isinstance(intent, Intent):
            intent = Intent.model_validate(intent)

        if intent.kind is IntentKind.GET_STATE:
            return await self.get_view_state()
        if intent.kind is IntentKind.REFRESH:
            return await self.refresh(reason=intent.reason or "manual", force=intent.force)
        if intent.kind is IntentKind.TOGGLE_DONE:
            return await self.set_todo_done(intent.todo_id, intent.done)
        if intent.kind is IntentKind.REPLY:
            return await self.begin_reply(intent.todo_id, intent.message_id)
        if intent.kind is IntentKind.OPEN_SOURCE:
            return await self.open_source(intent.message_id, intent.header_message_id)
        if intent.kind is IntentKind.REPLY_SENT:
            return await self.on_reply_sent(intent.compose_id)
        if intent.kind is IntentKind.COMPOSE_CLOSED:
            return self.on_compose_closed(intent.compose_id)
        return await self.backend_status(force=True)

    async def initialize(self) -> None:
        """Bootstrap from the mirror when empty, then run a startup refresh."""
        async with self._write_lock:
            try:
                result = await self.store.import_from_mirror_if_empty()
            except Exception as e:
                logger.warning("todo_state_import_skipped", error=str(e))
            else:
                if result.imported:
                    logger.info("todo_state_bootstrapped", todo_count=len(result.state.items))

        try:
            await self.refresh(reason="startup")
        except Exception as e:
            logger.error("startup_refresh_failed", error=str(e) or type(e).__name__)

    async def run_scheduler(self, stop_event: asyncio.Event) -> None:
        """Force a refresh every ``refresh_interval_minutes`` until ``stop_event`` is set."""
        interval = self.settings.refresh_interval_minutes * 60
        logger.info("todo_scheduler_started", interval_seconds=interval)
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
            else:
                break

            try:
                await self.refresh(reason="hourly", force=True)
            except Exception as e:
                logger.error("scheduled_refresh_failed", error=str(e) or type(e).__name__)
        logger.info("todo_scheduler_stopped")
