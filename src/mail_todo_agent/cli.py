"""Command-line interface for Mail TODO Agent.

This module provides the main entry point for the CLI application.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

import structlog

from mail_todo_agent import __version__
from mail_todo_agent.agent.drafts import ComposeDetails, DraftComposer, DraftRequest, QuickStatus
from mail_todo_agent.agent.todo_agent import TodoAgent
from mail_todo_agent.backend import BackendClient
from mail_todo_agent.config import Settings, get_settings
from mail_todo_agent.exceptions import MailTodoError
from mail_todo_agent.gmail.client import GmailClient
from mail_todo_agent.gmail.store import GmailMailStore
from mail_todo_agent.models import TodoItem
from mail_todo_agent.store import TodoStateRepository, TodoStateStore
from mail_todo_agent.todos.collector import MessageCollector

logger = structlog.get_logger()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mail-todo", description="Mail TODO Agent")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # TODO list commands
    todos_parser = subparsers.add_parser("todos", help="Generate and manage the TODO list")
    todos_parser.add_argument(
        "--db",
        type=Path,
        default=None,
        help="Path to the SQLite state database (default: settings state_db_path)",
    )
    todos_sub = todos_parser.add_subparsers(dest="todos_command", required=True)

    refresh_parser = todos_sub.add_parser("refresh", help="Scan recent mail and update the list")
    refresh_parser.add_argument("--force", action="store_true", help="Ignore the startup freshness check")
    refresh_parser.add_argument("--reason", default="manual", help="Reason recorded in the state meta")

    list_parser = todos_sub.add_parser("list", help="Show the TODO list")
    list_parser.add_argument("--archive", action="store_true", help="Show archived items instead")
    list_parser.add_argument("--json", action="store_true", help="Print the full view state as JSON")

    done_parser = todos_sub.add_parser("done", help="Mark a TODO as done")
    done_parser.add_argument("todo_id", help="TODO id as shown by 'todos list'")
    done_parser.add_argument("--undo", action="store_true", help="Mark the TODO as pending again")

    todos_sub.add_parser("import", help="Bootstrap an empty local state from the backend mirror")
    todos_sub.add_parser("watch", help="Run the startup refresh and then refresh periodically")

    # Backend commands
    backend_parser = subparsers.add_parser("backend", help="Inspect the LLM backend")
    backend_sub = backend_parser.add_subparsers(dest="backend_command", required=True)
    backend_sub.add_parser("status", help="Show backend health and login status")
    backend_sub.add_parser("login", help="Start the backend's device login and wait for approval")
    backend_sub.add_parser("logout", help="Log the backend out")

    # Draft command
    draft_parser = subparsers.add_parser("draft", help="Generate an email draft")
    draft_parser.add_argument("prompt", help="What the email should say")
    draft_parser.add_argument("--tone", default="professional", help="Tone of the draft")
    draft_parser.add_argument("--language", default=None, help="Output language (default: settings)")
    draft_parser.add_argument("--subject", default="", help="Current subject")
    draft_parser.add_argument("--to", action="append", default=[], help="Recipient (repeatable)")
    draft_parser.add_argument("--cc", action="append", default=[], help="Cc recipient (repeatable)")
    draft_parser.add_argument(
        "--status",
        choices=[s.value for s in QuickStatus],
        default=None,
        help="State explicitly that the task is done or not done",
    )

    return parser


def _build_store(settings: Settings, db_path: Path | None) -> TodoStateStore:
    repo = TodoStateRepository(db_path or settings.state_db_path, settings.max_processed_message_keys)
    repo.initialize()
    return TodoStateStore(repo, settings=settings)


def _build_backend(settings: Settings, store: TodoStateStore | None = None) -> BackendClient:
    backend = BackendClient(
        settings,
        on_base_url_change=store.remember_backend_url if store is not None else None,
    )
    if store is not None:
        remembered = store.remembered_backend_url()
        if remembered:
            backend.base_url = remembered
        store.backend = backend
    return backend


async def _build_agent(settings: Settings, db_path: Path | None, with_mail: bool) -> TodoAgent:
    store = _build_store(settings, db_path)
    backend = _build_backend(settings, store)
    gmail = GmailClient(settings)
    if with_mail:
        await gmail.authenticate()
    collector = MessageCollector.from_settings(GmailMailStore(gmail), settings)
    return TodoAgent(store, backend, collector, settings)


def _print_items(items: list[TodoItem]) -> None:
    if not items:
        print("(no items)")
        return
    for item in items:
        mark = "x" if item.done else " "
        print(f"[{mark}] {item.priority.value:<6} {item.title}  ({item.id})")
        if item.source_subject or item.source_author:
            print(f"      {item.source_author} | {item.source_subject}")


async def _cmd_todos_refresh(args: argparse.Namespace) -> int:
    settings = get_settings()
    agent = await _build_agent(settings, args.db, with_mail=True)
    state = await agent.refresh(reason=args.reason, force=args.force)
    print(
        f"Analysed {state.meta.source_message_count} messages, "
        f"{state.meta.added_todo_count} new TODOs "
        f"({len(state.items)} active, {len(state.archive_items)} archived)"
    )
    return 0


async def _cmd_todos_list(args: argparse.Namespace) -> int:
    settings = get_settings()
    agent = await _build_agent(settings, args.db, with_mail=False)
    view = await agent.get_view_state()
    if args.json:
        print(json.dumps(view.to_json_dict(), indent=2, ensure_ascii=False))
        return 0

    _print_items(view.archive_items if args.archive else view.items)
    meta = view.meta
    online = "online" if meta.backend_online else "offline"
    print(f"\nLast generated: {meta.last_generated_at or 'never'} | backend {online}")
    if meta.last_error:
        print(f"Last error: {meta.last_error}")
    return 0


async def _cmd_todos_done(args: argparse.Namespace) -> int:
    settings = get_settings()
    agent = await _build_agent(settings, args.db, with_mail=False)
    state = await agent.set_todo_done(args.todo_id, not args.undo)
    print(f"Updated {args.todo_id} ({len(state.items)} active, {len(state.archive_items)} archived)")
    return 0


async def _cmd_todos_import(args: argparse.Namespace) -> int:
    settings = get_settings()
    store = _build_store(settings, args.db)
    _build_backend(settings, store)
    result = await store.import_from_mirror_if_empty()
    if result.imported:
        print(f"Imported {len(result.state.items)} TODOs and {len(result.state.archive_items)} archived")
    else:
        print("Nothing imported (local state not empty or mirror empty)")
    return 0


async def _cmd_todos_watch(args: argparse.Namespace) -> int:
    settings = get_settings()
    agent = await _build_agent(settings, args.db, with_mail=True)
    stop_event = asyncio.Event()
    await agent.initialize()
    try:
        await agent.run_scheduler(stop_event)
    except asyncio.CancelledError:
        stop_event.set()
    return 0


async def _cmd_backend_status(args: argparse.Namespace) -> int:
    settings = get_settings()
    backend = _build_backend(settings)
    status = await backend.health()
    print(f"Backend: {status.backend_base_url} ({'online' if status.online else 'offline'})")
    if not status.online:
        print(f"Error: {status.error}")
        return 1

    auth = await backend.auth_status()
    logged_in = auth.get("logged_in") is True
    provider = auth.get("provider") or ""
    print(f"Login: {'logged in' if logged_in else 'not logged in'}{f' via {provider}' if provider else ''}")
    return 0


async def _cmd_backend_login(args: argparse.Namespace) -> int:
    settings = get_settings()
    backend = _build_backend(settings)
    started = await backend.start_login()
    if started.get("status") == "already_logged_in":
        print("Already logged in")
        return 0

    session_id = str(started.get("session_id") or "")
    print(f"Open {started.get('verification_url')} and enter code {started.get('user_code')}")
    while True:
        await asyncio.sleep(5)
        polled = await backend.poll_login(session_id)
        status = polled.get("status")
        if status == "approved":
            print("Login approved")
            return 0
        if status not in ("pending", "starting"):
            print(f"Login {status}: {polled.get('error') or ''}".rstrip(": "))
            return 1


async def _cmd_backend_logout(args: argparse.Namespace) -> int:
    backend = _build_backend(get_settings())
    await backend.logout()
    print("Logged out")
    return 0


class _PrintingComposeWindow:
    """Compose window backed by CLI arguments; the draft is printed."""

    def __init__(self, details: ComposeDetails) -> None:
        self.details = details

    async def get_details(self) -> ComposeDetails:
        return self.details

    async def set_details(self, updates: dict[str, Any]) -> None:
        print(f"Subject: {updates.get('subject', '')}\n")
        print(updates.get("plainTextBody", ""))


async def _cmd_draft(args: argparse.Namespace) -> int:
    settings = get_settings()
    composer = DraftComposer(_build_backend(settings), settings)
    window = _PrintingComposeWindow(
        ComposeDetails(subject=args.subject, is_plain_text=True, to=args.to, cc=args.cc)
    )
    request = DraftRequest(
        prompt=args.prompt,
        tone=args.tone,
        language=args.language or "",
        quick_status=QuickStatus(args.status) if args.status else None,
    )
    await composer.generate_and_insert(request, window)
    return 0


_COMMANDS = {
    ("todos", "refresh"): _cmd_todos_refresh,
    ("todos", "list"): _cmd_todos_list,
    ("todos", "done"): _cmd_todos_done,
    ("todos", "import"): _cmd_todos_import,
    ("todos", "watch"): _cmd_todos_watch,
    ("backend", "status"): _cmd_backend_status,
    ("backend", "login"): _cmd_backend_login,
    ("backend", "logout"): _cmd_backend_logout,
    ("draft", None): _cmd_draft,
}


def _log_level(name: str) -> int:
    """Numeric logging level for ``name``; unknown names fall back to INFO."""
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else logging.INFO


def main(args: list[str] | None = None) -> int:
    """Main entry point for the Mail TODO Agent CLI.

    Args:
        args: Command-line arguments. If None, uses sys.argv.

    Returns:
        Exit code (0 for success, 1 for handled errors, 2 for unknown commands).
    """
    if args is None:
        args = sys.argv[1:]

    settings = get_settings()

    # Configure logging
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(_log_level(settings.log_level)),
    )

    logger.info("mail_todo_agent_started", version=__version__, debug=settings.debug)

    parser = _build_parser()
    parsed = parser.parse_args(args)

    subcommand = getattr(parsed, f"{parsed.command}_command", None)
    handler = _COMMANDS.get((parsed.command, subcommand))
    if handler is None:
        logger.error("unknown_command", command=parsed.command, subcommand=subcommand)
        return 2

    try:
        return asyncio.run(handler(parsed))
    except KeyboardInterrupt:
        return 0
    except MailTodoError as e:
        logger.error("command_failed", command=parsed.command, error=str(e))
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
