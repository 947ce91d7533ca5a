"""Data models for Mail TODO Agent.

This module contains Pydantic models for data validation and serialization.
Persisted and wire representations use camelCase aliases so that the local
snapshot and the backend mirror share one JSON shape.
"""

from mail_todo_agent.models.message import MessageHeader, MessagePart, MessageSummary, TextPart
from mail_todo_agent.models.todo import (
    BackendStatus,
    Priority,
    TodoItem,
    TodoMeta,
    TodoState,
    ViewState,
)

__all__ = [
    "BackendStatus",
    "MessageHeader",
    "MessagePart",
    "MessageSummary",
    "Priority",
    "TextPart",
    "TodoItem",
    "TodoMeta",
    "TodoState",
    "ViewState",
]
