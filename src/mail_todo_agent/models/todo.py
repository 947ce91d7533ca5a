"""TODO state models.

A TODO item lives either in the active list or in the archive list of a
:class:`TodoState`, never in both.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class Priority(str, Enum):
    """TODO priority enumeration."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @classmethod
    def coerce(cls, value: Any) -> Priority:
        """Map free-form model output onto a priority, defaulting to medium."""
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().lower()
        for member in cls:
            if member.value == text:
                return member
        return cls.MEDIUM


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class TodoItem(_CamelModel):
    """A task derived from one source message."""

    id: str = Field(description="Opaque id generated from source key, title and time")
    source_key: str = Field(description="Session-local key of the source message (e.g. M3)")
    title: str = Field(description="Short task title")
    description: str = Field(default="")
    priority: Priority = Field(default=Priority.MEDIUM)
    done: bool = Field(default=False)
    done_at: str = Field(default="", description="ISO-8601 completion time or empty")
    archived_at: str = Field(default="", description="ISO-8601 archive time, set only once archived")

    source_message_id: str = Field(default="", description="Store-local id of the source message")
    source_header_message_id: str = Field(default="")
    source_subject: str = Field(default="")
    source_author: str = Field(default="")
    source_date: str = Field(default="")

    @field_validator("priority", mode="before")
    @classmethod
    def _coerce_priority(cls, value: Any) -> Priority:
        return Priority.coerce(value)

    @field_validator("source_message_id", mode="before")
    @classmethod
    def _coerce_message_id(cls, value: Any) -> str:
        # Older snapshots stored numeric ids; 0 meant "absent".
        if value is None or value == 0 or value == "0":
            return ""
        return str(value).strip()

    @field_validator("done_at", "archived_at", "source_date", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> str:
        return "" if value is None else str(value)


class TodoMeta(_CamelModel):
    """Process-wide bookkeeping stored next to the TODO lists."""

    last_generated_at: str = ""
    last_attempt_at: str = ""
    last_reason: str = ""
    source_message_count: int = 0
    todo_count: int = 0
    archive_count: int = 0
    added_todo_count: int = 0
    backend_online: bool | None = None
    backend_codex_auth: bool | None = None
    backend_status_checked_at: str = ""
    processed_message_keys: list[str] = Field(default_factory=list)
    last_error: str = ""
    next_refresh_at: str = ""
    last_archived_at: str = ""
    last_manual_update_at: str = ""
    last_imported_from_backend_at: str = ""

    @field_validator("processed_message_keys", mode="before")
    @classmethod
    def _list_or_empty(cls, value: Any) -> list[str]:
        if not isinstance(value, (list, tuple)):
            return []
        return [str(v) for v in value if v is not None]


class TodoState(_CamelModel):
    """A snapshot of the TODO store."""

    items: list[TodoItem] = Field(default_factory=list)
    archive_items: list[TodoItem] = Field(default_factory=list)
    meta: TodoMeta = Field(default_factory=TodoMeta)

    @property
    def is_empty(self) -> bool:
        return not self.items and not self.archive_items


class ViewState(TodoState):
    """A snapshot as shown to UI surfaces."""

    is_refreshing: bool = False
    keep_panel_open: bool = True


class BackendStatus(_CamelModel):
    """Result of a backend health check."""

    online: bool = False
    backend_base_url: str = ""
    codex_auth: bool = False
    checked_at: str = ""
    error: str = ""
