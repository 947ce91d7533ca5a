"""Draft generation for compose windows.

A draft is generated by the backend from a short prompt plus the current
compose context, then written back into the window. The existing signature and
quoted thread are kept below the generated text.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Sequence
from enum import Enum
from typing import Any, Optional, Protocol

import structlog
from pydantic import BaseModel, Field

from mail_todo_agent.backend import BackendClient
from mail_todo_agent.config import Settings
from mail_todo_agent.exceptions import BackendResponseError, InputRejectedError
from mail_todo_agent.utils.text import (
    normalize_text,
    plain_text_to_html,
    split_html_reply_tail,
    split_reply_tail,
    strip_code_fence,
    strip_html,
)

logger = structlog.get_logger()

DEFAULT_TONE = "professional"


class QuickStatus(str, Enum):
    """Completion status a reply should state explicitly."""

    DONE = "done"
    NOT_DONE = "not_done"


class ComposeDetails(BaseModel):
    """State of a compose window."""

    subject: str = ""
    body: str = Field(default="", description="HTML body")
    plain_text_body: str = ""
    is_plain_text: bool = False
    to: list[Any] = Field(default_factory=list)
    cc: list[Any] = Field(default_factory=list)


class DraftRequest(BaseModel):
    """What the user asked for."""

    prompt: str
    tone: str = DEFAULT_TONE
    language: str = ""
    quick_status: Optional[QuickStatus] = None


class DraftResult(BaseModel):
    """A generated draft."""

    subject: str
    body: str


class ComposeWindow(Protocol):
    """A compose window the draft is read from and written into."""

    async def get_details(self) -> ComposeDetails:
        ...

    async def set_details(self, updates: dict[str, Any]) -> None:
        ...


class StatusClassifier(Protocol):
    def classify(self, prompt: str) -> Optional[QuickStatus]:
        ...


class KeywordStatusClassifier:
    """Infers a quick status from phrases in the prompt.

    Phrase lists are locale specific, so this classifier is opt-in. "Not done"
    phrases are checked first since they usually contain the "done" phrase.
    """

    def __init__(self, done_phrases: Iterable[str], not_done_phrases: Iterable[str]) -> None:
        self.done_phrases = [p.lower() for p in done_phrases if p]
        self.not_done_phrases = [p.lower() for p in not_done_phrases if p]

    def classify(self, prompt: str) -> Optional[QuickStatus]:
        text = normalize_text(prompt).lower()
        if any(phrase in text for phrase in self.not_done_phrases):
            return QuickStatus.NOT_DONE
        if any(phrase in text for phrase in self.done_phrases):
            return QuickStatus.DONE
        return None


def format_recipients(value: Any) -> str:
    """Flatten compose recipients (strings or ``{name, email}`` dicts) to one line."""
    if not value:
        return ""
    if isinstance(value, str):
        return value
    if not isinstance(value, Sequence):
        return str(value)

    entries = []
    for entry in value:
        if isinstance(entry, str):
            entries.append(entry)
        elif isinstance(entry, dict) and entry.get("email"):
            name = normalize_text(entry.get("name"))
            entries.append(f"{name} <{entry['email']}>" if name else str(entry["email"]))
        else:
            entries.append(json.dumps(entry, default=str))
    return ", ".join(entries)


def parse_draft_response(raw: Any, fallback_subject: str) -> DraftResult:
    """Read ``{subject, body_plain}`` from a backend answer, leniently.

    Raises:
        BackendResponseError: If no body can be found.
    """
    subject = ""
    body = ""
    if isinstance(raw, str):
        text = strip_code_fence(raw)
        try:
            raw = json.loads(text)
        except json.JSONDecodeError:
            body = normalize_text(raw)
    if isinstance(raw, dict):
        subject = normalize_text(raw.get("subject"))
        body = normalize_text(raw.get("body_plain") or raw.get("body"))

    if not body:
        raise BackendResponseError("Backend returned an empty body.")
    return DraftResult(subject=subject or fallback_subject, body=body)


class DraftComposer:
    """Generates drafts through the backend and inserts them into compose windows."""

    def __init__(
        self,
        backend: BackendClient,
        settings: Settings | None = None,
        status_classifier: StatusClassifier | None = None,
    ) -> None:
        from mail_todo_agent.config import get_settings

        self.backend = backend
        self.settings = settings or get_settings()
        self.status_classifier = status_classifier

    def build_payload(self, request: DraftRequest, compose: ComposeDetails) -> dict[str, Any]:
        quick_status = request.quick_status
        if quick_status is None and self.status_classifier is not None:
            quick_status = self.status_classifier.classify(request.prompt)

        current_body = compose.plain_text_body if compose.is_plain_text else strip_html(compose.body)
        return {
            "prompt": normalize_text(request.prompt),
            "tone": normalize_text(request.tone) or DEFAULT_TONE,
            "language": normalize_text(request.language) or self.settings.language,
            "model": self.settings.model,
            "currentSubject": normalize_text(compose.subject),
            "currentBody": normalize_text(current_body),
            "to": format_recipients(compose.to),
            "cc": format_recipients(compose.cc),
            "isPlainText": compose.is_plain_text,
            "quickStatus": quick_status.value if quick_status else "",
        }

    async def generate(self, request: DraftRequest, compose: ComposeDetails) -> DraftResult:
        """Generate a draft for ``compose``.

        Raises:
            InputRejectedError: If the prompt is empty.
            BackendError: If the backend fails or returns no body.
        """
        if not normalize_text(request.prompt):
            raise InputRejectedError("Prompt cannot be empty.")

        payload = self.build_payload(request, compose)
        response = await self.backend.generate_draft(payload)
        result = parse_draft_response(response, normalize_text(compose.subject))
        logger.info(
            "draft_generated",
            quick_status=payload["quickStatus"] or None,
            body_length=len(result.body),
        )
        return result

    async def generate_and_insert(self, request: DraftRequest, window: ComposeWindow) -> DraftResult:
        """Generate a draft and write it above the window's signature and quote."""
        if not normalize_text(request.prompt):
            raise InputRejectedError("Prompt cannot be empty.")

        compose = await window.get_details()
        result = await self.generate(request, compose)
        await window.set_details(build_compose_updates(result, compose))
        return result


def build_compose_updates(result: DraftResult, compose: ComposeDetails) -> dict[str, Any]:
    """Compose-field updates placing ``result`` above the kept reply tail."""
    updates: dict[str, Any] = {"subject": result.subject}
    if compose.is_plain_text:
        _, tail = split_reply_tail(compose.plain_text_body)
        updates["plainTextBody"] = f"{result.body}\n\n{tail}" if tail else result.body
    else:
        _, tail = split_html_reply_tail(compose.body)
        updates["body"] = plain_text_to_html(result.body) + tail
    return updates
