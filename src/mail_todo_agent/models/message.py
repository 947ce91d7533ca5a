"""Mail store message models.

Only the metadata needed to pick TODO candidates and a bounded text snippet
are modelled; full bodies never leave the collector.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class MessageHeader(BaseModel):
    """Header-level view of a message returned by a mail store query."""

    id: str = Field(description="Store-local message id; may change across sessions")
    header_message_id: str = Field(default="", description="RFC 5322 Message-ID, may be empty")
    date: datetime | None = Field(default=None, description="Message date")
    author: str = Field(default="", description="Raw From header")
    subject: str = Field(default="", description="Subject header")
    folder: str = Field(default="", description="Folder path or label the message lives in")
    unread: bool = Field(default=False, description="Whether the message is unread")
    flagged: bool = Field(default=False, description="Whether the message is flagged/starred")


class MessageSummary(BaseModel):
    """A collected message as offered to the backend for TODO extraction."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    source_key: str = Field(description="Session-local label such as M3")
    message_id: str = Field(default="", description="Store-local message id")
    header_message_id: str = Field(default="", description="Stable header Message-ID")
    subject: str = Field(default="(no subject)")
    author: str = Field(default="(unknown sender)")
    date: str = Field(default="", description="ISO-8601 message date or empty")
    folder_path: str = Field(default="")
    snippet: str = Field(default="", description="Bounded plain-text excerpt of the body")

    def to_backend_payload(self) -> dict[str, str]:
        """Fields sent to /api/todos/generate."""
        return {
            "sourceKey": self.source_key,
            "subject": self.subject,
            "author": self.author,
            "date": self.date,
            "snippet": self.snippet,
        }


class TextPart(BaseModel):
    """A flattened inline text part of a message."""

    content_type: str = Field(default="text/plain")
    content: str = Field(default="")


class MessagePart(BaseModel):
    """A node of a decoded MIME tree."""

    content_type: str = Field(default="")
    body: str | None = Field(default=None, description="Decoded body for leaf text parts")
    parts: list[MessagePart] = Field(default_factory=list)
