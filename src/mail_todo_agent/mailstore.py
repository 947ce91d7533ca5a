"""Mail store interface consumed by the message collector."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from mail_todo_agent.models import MessageHeader, MessagePart, TextPart


@dataclass(frozen=True)
class MessageQuery:
    """Criteria for a bounded header query."""

    from_date: datetime | None = None
    unread: bool | None = None
    flagged: bool | None = None


class MailStore(Protocol):
    """Read-only access to the user's mailbox."""

    async def query_messages(self, query: MessageQuery, limit: int) -> list[MessageHeader]:
        """Return at most ``limit`` headers matching ``query``; paging is internal."""
        ...

    async def list_inline_text_parts(self, message_id: str) -> list[TextPart]:
        """Return the inline text parts of a message (may be empty)."""
        ...

    async def get_full_message(self, message_id: str) -> MessagePart:
        """Return the decoded MIME tree of a message."""
        ...
