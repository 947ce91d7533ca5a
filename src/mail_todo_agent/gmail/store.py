"""Gmail-backed :class:`~mail_todo_agent.mailstore.MailStore`."""

from __future__ import annotations

import asyncio
from typing import Any

import structlog

from mail_todo_agent.gmail.client import GmailClient
from mail_todo_agent.gmail.parsing import (
    METADATA_HEADERS,
    inline_text_parts,
    message_to_header,
    payload_to_part,
)
from mail_todo_agent.mailstore import MessageQuery
from mail_todo_agent.models import MessageHeader, MessagePart, TextPart

logger = structlog.get_logger()

# Parallel metadata fetches per query.
_FETCH_CONCURRENCY = 8


def build_query(query: MessageQuery) -> str:
    """Translate query criteria into Gmail search syntax."""
    terms: list[str] = []
    if query.from_date is not None:
        terms.append(f"after:{int(query.from_date.timestamp())}")
    if query.unread is True:
        terms.append("is:unread")
    elif query.unread is False:
        terms.append("is:read")
    if query.flagged is True:
        terms.append("is:starred")
    elif query.flagged is False:
        terms.append("-is:starred")
    return " ".join(terms)


class GmailMailStore:
    """Reads message headers and bodies through the Gmail API."""

    def __init__(self, client: GmailClient) -> None:
        self.client = client
        self._full_cache: dict[str, dict[str, Any]] = {}

    async def query_messages(self, query: MessageQuery, limit: int) -> list[MessageHeader]:
        q = build_query(query)
        ids = await self.client.list_message_ids(query=q or None, max_results=max(1, limit))
        semaphore = asyncio.Semaphore(_FETCH_CONCURRENCY)

        async def fetch(message_id: str) -> MessageHeader:
            async with semaphore:
                raw = await self.client.get_message(
                    message_id, format="metadata", metadata_headers=METADATA_HEADERS
                )
            return message_to_header(raw)

        headers = await asyncio.gather(*(fetch(message_id) for message_id in ids))
        logger.debug("gmail_query_completed", query=q, count=len(headers))
        return [h for h in headers if h.id]

    async def _full_payload(self, message_id: str) -> dict[str, Any]:
        cached = self._full_cache.pop(message_id, None)
        if cached is not None:
            return cached
        raw = await self.client.get_message(message_id, format="full")
        return raw.get("payload") or {}

    async def list_inline_text_parts(self, message_id: str) -> list[TextPart]:
        payload = await self._full_payload(message_id)
        parts = inline_text_parts(payload)
        if not parts:
            # Keep the payload for the get_full_message fallback that follows.
            self._full_cache[message_id] = payload
        return parts

    async def get_full_message(self, message_id: str) -> MessagePart:
        return payload_to_part(await self._full_payload(message_id))
