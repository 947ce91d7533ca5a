"""Mail TODO Agent - LLM-assisted TODO list and reply drafts from your inbox.

This package scans recent mail through the Gmail API, asks a local LLM backend
to derive actionable TODO items, and keeps a deduplicated, persisted TODO list
with done/archive lifecycle tracking.
"""

__version__ = "0.1.0"

from mail_todo_agent.config import Settings, get_settings

__all__ = ["Settings", "get_settings", "__version__"]
