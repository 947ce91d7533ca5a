"""Client for the local LLM backend."""

from mail_todo_agent.backend.client import BackendClient, build_loopback_fallback_urls

__all__ = ["BackendClient", "build_loopback_fallback_urls"]
