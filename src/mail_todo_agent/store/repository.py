"""SQLite-backed storage for the local TODO state.

The state is small (a few hundred items), so it is kept as JSON documents in a
key/value table rather than normalised rows. The same table holds a handful of
settings such as the last backend base URL that answered.
"""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import structlog
from pydantic import ValidationError

from mail_todo_agent.exceptions import StateStoreError
from mail_todo_agent.models import TodoItem, TodoMeta, TodoState
from mail_todo_agent.todos.identity import (
    DEFAULT_PROCESSED_KEY_LIMIT,
    collect_processed_keys,
    merge_processed_keys,
    normalize_processed_keys,
)
from mail_todo_agent.utils.dates import format_iso, utc_now

logger = structlog.get_logger()


_SCHEMA_VERSION = 1

ITEMS_KEY = "todo_items"
ARCHIVE_KEY = "todo_archive_items"
META_KEY = "todo_meta"
SETTING_PREFIX = "setting:"


class TodoStateRepository:
    """Repository for the persisted TODO lists, their meta and local settings."""

    def __init__(
        self,
        db_path: Path,
        max_processed_keys: int = DEFAULT_PROCESSED_KEY_LIMIT,
    ) -> None:
        """Create a repository.

        Args:
            db_path: Path to the SQLite database file.
            max_processed_keys: Bound of the remembered processed-message keys.
        """

        self._db_path = db_path
        self._max_processed_keys = max_processed_keys

    def initialize(self) -> None:
        """Create or upgrade the state schema."""

        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL;")

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS _schema_meta (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );
                """
            )

            current_version = self._get_schema_version(conn)
            if current_version is None:
                self._create_schema_v1(conn)
                self._set_schema_version(conn, _SCHEMA_VERSION)
                conn.commit()
                logger.info("todo_state_schema_created", version=_SCHEMA_VERSION)
                return

            if current_version != _SCHEMA_VERSION:
                raise StateStoreError(
                    f"Unsupported schema version {current_version}; expected {_SCHEMA_VERSION}"
                )

    def load_state(self) -> TodoState:
        """Load the persisted state.

        Unreadable documents degrade to empty lists/meta. The processed-key set
        is widened with the keys of every stored item, so a message that already
        produced a TODO is never analysed again even if the meta was lost.
        """

        try:
            with self._connect() as conn:
                rows = conn.execute(
                    "SELECT key, value FROM kv_store WHERE key IN (?, ?, ?)",
                    (ITEMS_KEY, ARCHIVE_KEY, META_KEY),
                ).fetchall()
        except sqlite3.Error as e:
            raise StateStoreError(f"Failed to load TODO state: {e}") from e
        documents = {row["key"]: row["value"] for row in rows}

        items = self._decode_items(documents.get(ITEMS_KEY), ITEMS_KEY)
        archive_items = self._decode_items(documents.get(ARCHIVE_KEY), ARCHIVE_KEY)
        meta = self._decode_meta(documents.get(META_KEY))

        meta.processed_message_keys = merge_processed_keys(
            normalize_processed_keys(meta.processed_message_keys, self._max_processed_keys),
            collect_processed_keys(items, archive_items),
            limit=self._max_processed_keys,
        )
        return TodoState(items=items, archive_items=archive_items, meta=meta)

    def save_state(self, state: TodoState) -> TodoState:
        """Write items, archive and meta in one transaction.

        Returns the state as written: counts and the bounded processed-key set
        are recomputed from the lists.
        """

        meta = state.meta.model_copy(
            update={
                "todo_count": len(state.items),
                "archive_count": len(state.archive_items),
                "processed_message_keys": merge_processed_keys(
                    state.meta.processed_message_keys,
                    collect_processed_keys(state.items, state.archive_items),
                    limit=self._max_processed_keys,
                ),
            }
        )
        saved = TodoState(items=list(state.items), archive_items=list(state.archive_items), meta=meta)
        now_iso = format_iso(utc_now())

        try:
            with self._connect() as conn:
                conn.executemany(
                    """
                    INSERT INTO kv_store (key, value, updated_at_iso)
                    VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value=excluded.value,
                        updated_at_iso=excluded.updated_at_iso
                    """,
                    [
                        (ITEMS_KEY, json.dumps([i.to_json_dict() for i in saved.items]), now_iso),
                        (
                            ARCHIVE_KEY,
                            json.dumps([i.to_json_dict() for i in saved.archive_items]),
                            now_iso,
                        ),
                        (META_KEY, json.dumps(saved.meta.to_json_dict()), now_iso),
                    ],
                )
                conn.commit()
        except sqlite3.Error as e:
            raise StateStoreError(f"Failed to save TODO state: {e}") from e

        logger.debug(
            "todo_state_written",
            todo_count=len(saved.items),
            archive_count=len(saved.archive_items),
        )
        return saved

    def get_setting(self, name: str, default: str | None = None) -> str | None:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT value FROM kv_store WHERE key = ?", (SETTING_PREFIX + name,)
                ).fetchone()
        except sqlite3.Error as e:
            raise StateStoreError(f"Failed to read setting {name}: {e}") from e
        return row["value"] if row is not None else default

    def set_setting(self, name: str, value: str) -> None:
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO kv_store (key, value, updated_at_iso) VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value=excluded.value,
                        updated_at_iso=excluded.updated_at_iso
                    """,
                    (SETTING_PREFIX + name, value, format_iso(utc_now())),
                )
                conn.commit()
        except sqlite3.Error as e:
            raise StateStoreError(f"Failed to write setting {name}: {e}") from e

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._db_path)
        try:
            conn.row_factory = sqlite3.Row
            yield conn
        finally:
            conn.close()

    def _get_schema_version(self, conn: sqlite3.Connection) -> int | None:
        row = conn.execute(
            "SELECT value FROM _schema_meta WHERE key = 'schema_version'"
        ).fetchone()
        if row is None:
            return None
        return int(row[0])

    def _set_schema_version(self, conn: sqlite3.Connection, version: int) -> None:
        conn.execute(
            "INSERT OR REPLACE INTO _schema_meta(key, value) VALUES('schema_version', ?) ",
            (str(version),),
        )

    def _create_schema_v1(self, conn: sqlite3.Connection) -> None:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS kv_store (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at_iso TEXT NOT NULL
            );
            """
        )

    def _decode_items(self, raw: str | None, key: str) -> list[TodoItem]:
        if not raw:
            return []
        try:
            data: Any = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning("todo_state_unreadable", key=key, error=str(e))
            return []
        if not isinstance(data, list):
            logger.warning("todo_state_unreadable", key=key, error="not a list")
            return []

        items: list[TodoItem] = []
        for entry in data:
            try:
                items.append(TodoItem.model_validate(entry))
            except ValidationError as e:
                logger.warning("todo_item_dropped", key=key, error=str(e))
        return items

    def _decode_meta(self, raw: str | None) -> TodoMeta:
        if not raw:
            return TodoMeta()
        try:
            return TodoMeta.model_validate_json(raw)
        except ValidationError as e:
            logger.warning("todo_state_unreadable", key=META_KEY, error=str(e))
            return TodoMeta()
