"""Unit tests for the TODO agent orchestration."""

from __future__ import annotations

import asyncio
import sqlite3
from datetime import timedelta
from typing import Any

import pytest

from mail_todo_agent.agent.todo_agent import Intent, IntentKind, RefreshState, TodoAgent
from mail_todo_agent.exceptions import (
    ConfigurationError,
    InputRejectedError,
    NotAuthenticatedError,
    StateStoreError,
    TodoNotFoundError,
)
from mail_todo_agent.mailstore import MessageQuery
from mail_todo_agent.models import (
    BackendStatus,
    MessageHeader,
    MessagePart,
    TextPart,
    TodoItem,
    TodoMeta,
    TodoState,
)
from mail_todo_agent.store import TodoStateRepository, TodoStateStore
from mail_todo_agent.todos.collector import MessageCollector
from mail_todo_agent.utils.dates import format_iso, utc_now


class FakeMailStore:
    """Mail store whose unread query returns a fixed set of headers."""

    def __init__(self, headers: list[MessageHeader] | None = None) -> None:
        self.headers = headers or []

    async def query_messages(self, query: MessageQuery, limit: int) -> list[MessageHeader]:
        if query.flagged:
            return []
        return [h for h in self.headers if query.from_date is None or h.date >= query.from_date][:limit]

    async def list_inline_text_parts(self, message_id: str) -> list[TextPart]:
        return [TextPart(content=f"Body of {message_id}")]

    async def get_full_message(self, message_id: str) -> MessagePart:
        return MessagePart()


class FakeBackend:
    """Backend answering health and TODO generation."""

    def __init__(self, todos: list[dict[str, Any]] | None = None, error: Exception | None = None) -> None:
        self.todos = todos or []
        self.error = error
        self.health_calls = 0
        self.generate_calls: list[dict[str, Any]] = []

    async def health(self) -> BackendStatus:
        self.health_calls += 1
        await asyncio.sleep(0)
        return BackendStatus(
            online=True,
            backend_base_url="http://127.0.0.1:8787",
            codex_auth=True,
            checked_at=format_iso(utc_now()),
        )

    async def generate_todos(self, payload: dict[str, Any]) -> dict[str, Any]:
        self.generate_calls.append(payload)
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        return {"todos": self.todos}


class FakeMailUi:
    """Records UI calls and hands out compose ids."""

    def __init__(self) -> None:
        self.opened: list[tuple[str, str]] = []
        self.replies: list[str] = []

    async def begin_reply(self, message_id: str) -> str:
        self.replies.append(message_id)
        return f"compose-{len(self.replies)}"

    async def open_message(self, message_id: str, header_message_id: str) -> None:
        self.opened.append((message_id, header_message_id))


def _header(n: int, minutes_ago: int) -> MessageHeader:
    return MessageHeader(
        id=f"gm-{n}",
        header_message_id=f"<msg-{n}@example.com>",
        date=utc_now() - timedelta(minutes=minutes_ago),
        subject=f"Subject {n}",
        author=f"Sender {n}",
        unread=True,
    )


def _build_agent(
    mock_settings,
    headers: list[MessageHeader] | None = None,
    backend: FakeBackend | None = None,
    mail_ui: FakeMailUi | None = None,
) -> TodoAgent:
    repo = TodoStateRepository(mock_settings.state_db_path)
    repo.initialize()
    store = TodoStateStore(repo, settings=mock_settings)
    collector = MessageCollector.from_settings(FakeMailStore(headers), mock_settings)
    return TodoAgent(store, backend or FakeBackend(), collector, mock_settings, mail_ui=mail_ui)


def _seed(agent: TodoAgent, *items: TodoItem, meta: TodoMeta | None = None) -> TodoState:
    return agent.store.repository.save_state(TodoState(items=list(items), meta=meta or TodoMeta()))


def _item(n: int, **kwargs) -> TodoItem:
    return TodoItem(
        id=f"id-{n}",
        source_key=f"M{n}",
        title=f"Task {n}",
        source_message_id=f"gm-{n}",
        source_header_message_id=f"<msg-{n}@example.com>",
        **kwargs,
    )


class TestRefresh:
    """Test suite for refresh cycles."""

    @pytest.mark.asyncio
    async def test_refresh_generates_and_persists(self, mock_settings) -> None:
        backend = FakeBackend(todos=[{"sourceKey": "M1", "title": "Send report", "priority": "high"}])
        agent = _build_agent(mock_settings, [_header(1, 5), _header(2, 30)], backend)

        state = await agent.refresh(reason="manual")

        assert len(backend.generate_calls) == 1
        payload = backend.generate_calls[0]
        assert payload["model"] == "test-model"
        assert payload["language"] == "English"
        assert [m["sourceKey"] for m in payload["messages"]] == ["M1", "M2"]

        assert [i.title for i in state.items] == ["Send report"]
        assert state.items[0].source_message_id == "gm-1"
        assert state.meta.source_message_count == 2
        assert state.meta.added_todo_count == 1
        assert state.meta.last_reason == "manual"
        assert state.meta.backend_online is True
        assert state.meta.last_error == ""
        assert state.meta.next_refresh_at > state.meta.last_generated_at
        assert {"h:<msg-1@example.com>", "h:<msg-2@example.com>"} <= set(state.meta.processed_message_keys)
        assert agent.store.load() == state

    @pytest.mark.asyncio
    async def test_processed_messages_are_not_reoffered(self, mock_settings) -> None:
        backend = FakeBackend(todos=[{"sourceKey": "M1", "title": "Send report"}])
        agent = _build_agent(mock_settings, [_header(1, 5), _header(2, 30)], backend)

        await agent.refresh()
        second = await agent.refresh(force=True)

        assert len(backend.generate_calls) == 1
        assert second.meta.source_message_count == 0
        assert len(second.items) == 1

    @pytest.mark.asyncio
    async def test_no_candidates_skips_generation(self, mock_settings) -> None:
        backend = FakeBackend()
        agent = _build_agent(mock_settings, [], backend)
        _seed(agent, _item(1))

        state = await agent.refresh()

        assert backend.generate_calls == []
        assert state.meta.todo_count == 1
        assert state.meta.added_todo_count == 0
        assert state.meta.last_generated_at != ""

    @pytest.mark.asyncio
    async def test_concurrent_refreshes_share_one_cycle(self, mock_settings) -> None:
        backend = FakeBackend(todos=[{"sourceKey": "M1", "title": "Send report"}])
        agent = _build_agent(mock_settings, [_header(1, 5)], backend)

        first, second = await asyncio.gather(agent.refresh(), agent.refresh(reason="panel"))

        assert first is second
        assert backend.health_calls == 1
        assert len(backend.generate_calls) == 1
        assert agent.refresh_state is RefreshState.IDLE

    @pytest.mark.asyncio
    async def test_fresh_startup_refresh_is_skipped(self, mock_settings) -> None:
        backend = FakeBackend()
        agent = _build_agent(mock_settings, [_header(1, 5)], backend)
        _seed(agent, meta=TodoMeta(last_generated_at=format_iso(utc_now() - timedelta(minutes=5))))

        await agent.refresh(reason="startup")

        assert backend.health_calls == 0
        assert backend.generate_calls == []

    @pytest.mark.asyncio
    async def test_failure_is_recorded(self, mock_settings) -> None:
        backend = FakeBackend(error=NotAuthenticatedError("Login required."))
        agent = _build_agent(mock_settings, [_header(1, 5)], backend)
        _seed(agent, _item(7))

        with pytest.raises(NotAuthenticatedError):
            await agent.refresh()

        meta = agent.store.load().meta
        assert meta.last_error == "Login required."
        assert meta.backend_codex_auth is False
        assert meta.backend_online is True
        assert meta.last_generated_at == ""
        assert agent.refresh_state is RefreshState.IDLE

    @pytest.mark.asyncio
    async def test_initialize_runs_startup_refresh(self, mock_settings) -> None:
        backend = FakeBackend(todos=[{"sourceKey": "M1", "title": "Send report"}])
        agent = _build_agent(mock_settings, [_header(1, 5)], backend)

        await agent.initialize()

        state = agent.store.load()
        assert state.meta.last_reason == "startup"
        assert len(state.items) == 1

    @pytest.mark.asyncio
    async def test_initialize_survives_unexpected_errors(self, mock_settings) -> None:
        backend = FakeBackend(error=RuntimeError("boom"))
        agent = _build_agent(mock_settings, [_header(1, 5)], backend)

        await agent.initialize()

        assert agent.store.load().meta.last_error == "boom"
        assert agent.refresh_state is RefreshState.IDLE

    @pytest.mark.asyncio
    async def test_unreadable_state_raises_store_error(self, mock_settings) -> None:
        """A broken database surfaces as StateStoreError, also while recording the failure."""
        agent = _build_agent(mock_settings, [_header(1, 5)])
        with sqlite3.connect(mock_settings.state_db_path) as conn:
            conn.execute("DROP TABLE kv_store")

        with pytest.raises(StateStoreError):
            await agent.refresh(force=True)

        assert agent.refresh_state is RefreshState.IDLE


class TestScheduler:
    """Test suite for the periodic refresh loop."""

    @pytest.mark.asyncio
    async def test_scheduler_keeps_running_after_unexpected_errors(self, mock_settings) -> None:
        settings = mock_settings.model_copy(update={"refresh_interval_minutes": 0})
        backend = FakeBackend(error=RuntimeError("boom"))
        agent = _build_agent(settings, [_header(1, 5)], backend)
        stop = asyncio.Event()
        scheduler = asyncio.create_task(agent.run_scheduler(stop))

        async def wait_for_cycles(count: int) -> None:
            while len(backend.generate_calls) < count:
                assert not scheduler.done()
                await asyncio.sleep(0.01)

        await asyncio.wait_for(wait_for_cycles(3), timeout=5)
        stop.set()
        await asyncio.wait_for(scheduler, timeout=5)

        meta = agent.store.load().meta
        assert meta.last_reason == "hourly"
        assert meta.last_error == "boom"

    @pytest.mark.asyncio
    async def test_scheduler_stops_when_event_is_set(self, mock_settings) -> None:
        backend = FakeBackend()
        agent = _build_agent(mock_settings, [_header(1, 5)], backend)
        stop = asyncio.Event()
        stop.set()

        await asyncio.wait_for(agent.run_scheduler(stop), timeout=5)

        assert backend.generate_calls == []


class TestManualUpdates:
    """Test suite for done toggling and reply tracking."""

    @pytest.mark.asyncio
    async def test_set_todo_done(self, mock_settings) -> None:
        agent = _build_agent(mock_settings)
        _seed(agent, _item(1), _item(2))

        state = await agent.set_todo_done("id-2", True)

        assert [i.id for i in state.items] == ["id-1", "id-2"]
        assert state.items[1].done is True
        assert state.items[1].done_at != ""
        assert state.meta.last_manual_update_at != ""

    @pytest.mark.asyncio
    async def test_toggle_archives_expired_completions(self, mock_settings) -> None:
        agent = _build_agent(mock_settings)
        expired = format_iso(utc_now() - timedelta(days=4))
        _seed(agent, _item(1, done=True, done_at=expired), _item(2))

        state = await agent.set_todo_done("id-2", True)

        assert [i.id for i in state.items] == ["id-2"]
        assert [i.id for i in state.archive_items] == ["id-1"]
        assert state.meta.last_archived_at != ""

    @pytest.mark.asyncio
    async def test_unknown_todo(self, mock_settings) -> None:
        agent = _build_agent(mock_settings)

        with pytest.raises(TodoNotFoundError):
            await agent.set_todo_done("missing", True)

    @pytest.mark.asyncio
    async def test_sent_reply_completes_todo(self, mock_settings) -> None:
        ui = FakeMailUi()
        agent = _build_agent(mock_settings, mail_ui=ui)
        _seed(agent, _item(1))

        compose_id = await agent.begin_reply("id-1", "gm-1")
        state = await agent.on_reply_sent(compose_id)

        assert ui.replies == ["gm-1"]
        assert state is not None and state.items[0].done is True
        assert await agent.on_reply_sent(compose_id) is None

    @pytest.mark.asyncio
    async def test_closed_compose_forgets_todo(self, mock_settings) -> None:
        agent = _build_agent(mock_settings, mail_ui=FakeMailUi())
        _seed(agent, _item(1))

        compose_id = await agent.begin_reply("id-1", "gm-1")
        agent.on_compose_closed(compose_id)

        assert await agent.on_reply_sent(compose_id) is None
        assert agent.store.load().items[0].done is False

    @pytest.mark.asyncio
    async def test_reply_requires_message_and_ui(self, mock_settings) -> None:
        agent = _build_agent(mock_settings)

        with pytest.raises(InputRejectedError):
            await agent.begin_reply("id-1", "")
        with pytest.raises(ConfigurationError):
            await agent.begin_reply("id-1", "gm-1")


class TestIntents:
    """Test suite for the UI intent entry point."""

    @pytest.mark.asyncio
    async def test_toggle_done_intent_from_dict(self, mock_settings) -> None:
        agent = _build_agent(mock_settings)
        _seed(agent, _item(1))

        state = await agent.handle_intent({"kind": "toggle_done", "todoId": "id-1", "done": True})

        assert state.items[0].done is True

    @pytest.mark.asyncio
    async def test_get_state_hydrates_backend_status(self, mock_settings) -> None:
        backend = FakeBackend()
        agent = _build_agent(mock_settings, backend=backend)
        _seed(agent, _item(1))

        view = await agent.handle_intent(Intent(kind=IntentKind.GET_STATE))

        assert view.is_refreshing is False
        assert view.meta.backend_online is True
        assert view.meta.backend_codex_auth is True
        assert backend.health_calls == 1
        assert agent.store.load().meta.backend_online is None

    @pytest.mark.asyncio
    async def test_view_state_carries_panel_preference(self, mock_settings) -> None:
        settings = mock_settings.model_copy(update={"keep_panel_open": False})
        agent = _build_agent(settings)

        view = await agent.get_view_state()

        assert view.keep_panel_open is False
        assert view.to_json_dict()["keepPanelOpen"] is False

    @pytest.mark.asyncio
    async def test_open_source_intent(self, mock_settings) -> None:
        ui = FakeMailUi()
        agent = _build_agent(mock_settings, mail_ui=ui)

        await agent.handle_intent({"kind": "open_source", "headerMessageId": "<msg-1@example.com>"})

        assert ui.opened == [("", "<msg-1@example.com>")]
        with pytest.raises(InputRejectedError):
            await agent.open_source()
