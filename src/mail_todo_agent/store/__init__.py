"""Local TODO state persistence and backend mirror synchronisation."""

from mail_todo_agent.store.repository import TodoStateRepository
from mail_todo_agent.store.service import ImportResult, NormalizedState, TodoStateStore

__all__ = ["ImportResult", "NormalizedState", "TodoStateRepository", "TodoStateStore"]
