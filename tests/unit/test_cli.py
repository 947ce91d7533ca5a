"""Unit tests for the command-line interface."""

import logging
from pathlib import Path

import pytest

from mail_todo_agent import cli
from mail_todo_agent.config import get_settings


class TestParser:
    """Test suite for argument parsing."""

    def test_todos_done_arguments(self) -> None:
        args = cli._build_parser().parse_args(["todos", "--db", "x.sqlite3", "done", "id-1", "--undo"])

        assert args.command == "todos"
        assert args.todos_command == "done"
        assert args.db == Path("x.sqlite3")
        assert args.todo_id == "id-1"
        assert args.undo is True

    def test_draft_arguments(self) -> None:
        args = cli._build_parser().parse_args(
            ["draft", "Confirm the meeting", "--to", "a@example.com", "--to", "b@example.com", "--status", "done"]
        )

        assert args.prompt == "Confirm the meeting"
        assert args.to == ["a@example.com", "b@example.com"]
        assert args.status == "done"

    def test_subcommand_required(self) -> None:
        with pytest.raises(SystemExit):
            cli._build_parser().parse_args(["todos"])


class TestLogLevel:
    """Test suite for resolving the configured log level."""

    def test_known_names_map_to_numeric_levels(self) -> None:
        assert cli._log_level("DEBUG") == logging.DEBUG
        assert cli._log_level("warning") == logging.WARNING

    def test_unknown_name_falls_back_to_info(self) -> None:
        assert cli._log_level("CHATTY") == logging.INFO

    def test_main_runs_with_each_standard_level(self, tmp_path, monkeypatch) -> None:
        """Logging configuration never prevents a command from running."""
        monkeypatch.setenv("MAIL_TODO_BACKEND_BASE_URL", "http://127.0.0.1:9")
        monkeypatch.setenv("MAIL_TODO_STATUS_TIMEOUT", "0.5")
        db = str(tmp_path / "state.sqlite3")

        try:
            for level in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
                monkeypatch.setenv("MAIL_TODO_LOG_LEVEL", level)
                get_settings.cache_clear()
                assert cli.main(["todos", "--db", db, "list", "--archive"]) == 0
        finally:
            get_settings.cache_clear()


def test_list_and_done_on_local_state(tmp_path, monkeypatch, capsys) -> None:
    """Handled errors exit with 1; an empty list prints a placeholder."""
    monkeypatch.setenv("MAIL_TODO_BACKEND_BASE_URL", "http://127.0.0.1:9")
    monkeypatch.setenv("MAIL_TODO_STATUS_TIMEOUT", "0.5")
    get_settings.cache_clear()
    db = str(tmp_path / "state.sqlite3")

    try:
        assert cli.main(["todos", "--db", db, "done", "missing"]) == 1
        assert cli.main(["todos", "--db", db, "list"]) == 0
    finally:
        get_settings.cache_clear()

    out = capsys.readouterr().out
    assert "(no items)" in out
    assert "backend offline" in out
