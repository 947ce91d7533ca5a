"""Pick recent, not yet processed messages and reduce them to summaries."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta

import structlog

from mail_todo_agent.config import Settings
from mail_todo_agent.mailstore import MailStore, MessageQuery
from mail_todo_agent.models import MessageHeader, MessagePart, MessageSummary, TextPart
from mail_todo_agent.todos.identity import tracking_key_of
from mail_todo_agent.utils.aio import map_with_concurrency
from mail_todo_agent.utils.dates import parse_datetime, to_iso, to_timestamp, utc_now
from mail_todo_agent.utils.text import normalize_text, strip_html, truncate_text

logger = structlog.get_logger()

TRUNCATED_SUFFIX = "\n\n[...truncated...]"


@dataclass(frozen=True)
class CollectedMessages:
    """Headers picked for analysis and their summaries."""

    headers: list[MessageHeader]
    summaries: list[MessageSummary]


def _join_text(plain: list[str], html: list[str]) -> str:
    if plain:
        return "\n\n".join(plain)
    if html:
        return strip_html("\n\n".join(html))
    return ""


def text_from_inline_parts(parts: Iterable[TextPart]) -> str:
    """Prefer text/plain parts, falling back to stripped text/html."""
    plain: list[str] = []
    html: list[str] = []
    for part in parts:
        if not part.content:
            continue
        content_type = part.content_type.strip().lower()
        if content_type.startswith("text/plain"):
            plain.append(part.content)
        elif content_type.startswith("text/html"):
            html.append(part.content)
    return _join_text(plain, html)


def text_from_message_part(root: MessagePart) -> str:
    """Walk a MIME tree collecting text bodies, text/plain preferred."""
    plain: list[str] = []
    html: list[str] = []
    stack = [root]
    while stack:
        part = stack.pop()
        if part.body:
            content_type = part.content_type.strip().lower()
            if content_type.startswith("text/plain"):
                plain.append(part.body)
            elif content_type.startswith("text/html"):
                html.append(part.body)
        stack.extend(reversed(part.parts))
    return _join_text(plain, html)


class MessageCollector:
    """Collects TODO candidate messages from a :class:`MailStore`."""

    def __init__(
        self,
        mail_store: MailStore,
        lookback_hours: int = 72,
        per_query_cap: int = 120,
        analysis_cap: int = 40,
        snippet_limit: int = 700,
        concurrency: int = 4,
        recent_grace_minutes: int = 15,
    ) -> None:
        self.mail_store = mail_store
        self.lookback = timedelta(hours=lookback_hours)
        self.per_query_cap = per_query_cap
        self.analysis_cap = analysis_cap
        self.snippet_limit = snippet_limit
        self.concurrency = concurrency
        self.recent_grace = timedelta(minutes=recent_grace_minutes)

    @classmethod
    def from_settings(cls, mail_store: MailStore, settings: Settings) -> MessageCollector:
        return cls(
            mail_store,
            lookback_hours=settings.lookback_hours,
            per_query_cap=settings.max_messages_per_query,
            analysis_cap=settings.max_messages_for_analysis,
            snippet_limit=settings.snippet_limit,
            concurrency=settings.snippet_concurrency,
            recent_grace_minutes=settings.recent_grace_minutes,
        )

    async def _safe_query(self, query: MessageQuery, name: str) -> list[MessageHeader]:
        try:
            return await self.mail_store.query_messages(query, self.per_query_cap)
        except Exception as e:
            logger.warning("message_query_failed", query=name, error=str(e))
            return []

    async def collect_candidate_headers(
        self,
        last_generated_at: str | datetime | None = None,
        processed_keys: Iterable[str] = (),
        now: datetime | None = None,
    ) -> list[MessageHeader]:
        """Query unread, flagged and recent messages and pick the newest unprocessed ones."""
        now = now or utc_now()
        lookback_start = now - self.lookback
        last_generated = parse_datetime(last_generated_at)
        recent_start = last_generated - self.recent_grace if last_generated else lookback_start
        processed = {key for key in (str(k or "").strip().lower() for k in processed_keys) if key}

        unread, flagged, recent = await asyncio.gather(
            self._safe_query(MessageQuery(from_date=lookback_start, unread=True), "unread"),
            self._safe_query(MessageQuery(from_date=lookback_start, flagged=True), "flagged"),
            self._safe_query(MessageQuery(from_date=recent_start), "recent"),
        )

        by_key: dict[str, MessageHeader] = {}
        skipped = 0
        for header in [*recent, *unread, *flagged]:
            key = tracking_key_of(header)
            if key and key in processed:
                skipped += 1
                continue
            dedupe_key = normalize_text(header.header_message_id) or normalize_text(header.id)
            if not dedupe_key or dedupe_key in by_key:
                continue
            by_key[dedupe_key] = header

        headers = sorted(by_key.values(), key=lambda h: to_timestamp(h.date), reverse=True)
        logger.info(
            "todo_candidates_collected",
            unread=len(unread),
            flagged=len(flagged),
            recent=len(recent),
            skipped_processed=skipped,
            candidates=min(len(headers), self.analysis_cap),
        )
        return headers[: self.analysis_cap]

    async def extract_snippet(self, message_id: str) -> str:
        """Bounded plain-text excerpt of a message; "" when nothing can be read."""
        try:
            text = text_from_inline_parts(await self.mail_store.list_inline_text_parts(message_id))
            if text:
                return truncate_text(text, self.snippet_limit, TRUNCATED_SUFFIX)
        except Exception as e:
            logger.debug("inline_parts_unavailable", message_id=message_id, error=str(e))

        try:
            full = await self.mail_store.get_full_message(message_id)
        except Exception as e:
            logger.warning("snippet_extraction_failed", message_id=message_id, error=str(e))
            return ""
        return truncate_text(text_from_message_part(full), self.snippet_limit, TRUNCATED_SUFFIX)

    async def build_summaries(self, headers: list[MessageHeader]) -> list[MessageSummary]:
        async def summarize(header: MessageHeader, index: int) -> MessageSummary:
            snippet = await self.extract_snippet(header.id)
            return MessageSummary(
                source_key=f"M{index + 1}",
                message_id=header.id,
                header_message_id=normalize_text(header.header_message_id),
                subject=normalize_text(header.subject) or "(no subject)",
                author=normalize_text(header.author) or "(unknown sender)",
                date=to_iso(header.date),
                folder_path=normalize_text(header.folder),
                snippet=snippet,
            )

        return await map_with_concurrency(headers, self.concurrency, summarize)

    async def collect(
        self,
        last_generated_at: str | datetime | None = None,
        processed_keys: Iterable[str] = (),
        now: datetime | None = None,
    ) -> CollectedMessages:
        headers = await self.collect_candidate_headers(last_generated_at, processed_keys, now)
        summaries = await self.build_summaries(headers) if headers else []
        return CollectedMessages(headers=headers, summaries=summaries)
