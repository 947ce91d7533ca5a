"""Unit tests for the Gmail-backed mail store."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import pytest

from mail_todo_agent.gmail.store import GmailMailStore, build_query
from mail_todo_agent.mailstore import MessageQuery


class FakeGmailClient:
    """Returns the same Gmail message for every id."""

    def __init__(self, message: dict[str, Any], ids: list[str]) -> None:
        self.message = message
        self.ids = ids
        self.list_calls: list[tuple[str | None, int]] = []
        self.get_calls: list[tuple[str, str]] = []

    async def list_message_ids(self, query: str | None = None, max_results: int = 100) -> list[str]:
        self.list_calls.append((query, max_results))
        return self.ids[:max_results]

    async def get_message(self, message_id: str, *, format: str = "metadata", metadata_headers=None) -> dict:
        self.get_calls.append((message_id, format))
        return {**self.message, "id": message_id}


def test_build_query() -> None:
    since = datetime(2025, 1, 1, tzinfo=timezone.utc)

    assert build_query(MessageQuery(from_date=since, unread=True)) == "after:1735689600 is:unread"
    assert build_query(MessageQuery(flagged=True)) == "is:starred"
    assert build_query(MessageQuery(unread=False, flagged=False)) == "is:read -is:starred"
    assert build_query(MessageQuery()) == ""


@pytest.mark.asyncio
async def test_query_messages_fetches_metadata(sample_gmail_message) -> None:
    client = FakeGmailClient(sample_gmail_message, ["a", "b", "c"])
    store = GmailMailStore(client)

    headers = await store.query_messages(MessageQuery(unread=True), limit=2)

    assert [h.id for h in headers] == ["a", "b"]
    assert client.list_calls == [("is:unread", 2)]
    assert {fmt for _, fmt in client.get_calls} == {"metadata"}


@pytest.mark.asyncio
async def test_inline_parts_and_full_message(sample_gmail_message) -> None:
    client = FakeGmailClient(sample_gmail_message, [])
    store = GmailMailStore(client)

    parts = await store.list_inline_text_parts("a")
    full = await store.get_full_message("a")

    assert len(parts) == 2
    assert full.content_type == "multipart/mixed"
    assert client.get_calls == [("a", "full"), ("a", "full")]


@pytest.mark.asyncio
async def test_full_payload_reused_when_no_inline_parts() -> None:
    client = FakeGmailClient({"payload": {"mimeType": "image/png", "body": {}}}, [])
    store = GmailMailStore(client)

    assert await store.list_inline_text_parts("img") == []
    full = await store.get_full_message("img")

    assert full.content_type == "image/png"
    assert client.get_calls == [("img", "full")]
