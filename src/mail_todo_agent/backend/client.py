"""HTTP client for the local LLM backend.

The backend usually listens on a loopback address. Because ``localhost`` may
resolve to IPv6 while the server binds IPv4 (or the other way round), every
call tries the configured base URL first and then the other loopback
spellings. The first address that answers becomes the preferred one.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Optional
from urllib.parse import urlsplit, urlunsplit

import httpx
import structlog

from mail_todo_agent.config import Settings
from mail_todo_agent.exceptions import (
    BackendConnectionError,
    BackendResponseError,
    NotAuthenticatedError,
)
from mail_todo_agent.models import BackendStatus
from mail_todo_agent.utils.dates import format_iso, utc_now
from mail_todo_agent.utils.text import normalize_base_url, normalize_text

logger = structlog.get_logger()

LOOPBACK_HOSTS = ("127.0.0.1", "localhost", "::1")


def build_loopback_fallback_urls(base_url: str) -> list[str]:
    """Candidate base URLs: ``base_url`` first, then the other loopback hosts."""
    primary = normalize_base_url(base_url)
    if not primary:
        return []
    urls = [primary]

    try:
        parts = urlsplit(primary)
        host = (parts.hostname or "").lower()
        port = parts.port
    except ValueError:
        return urls
    if host not in LOOPBACK_HOSTS:
        return urls

    for alt_host in LOOPBACK_HOSTS:
        if alt_host == host:
            continue
        netloc = f"[{alt_host}]" if ":" in alt_host else alt_host
        if port is not None:
            netloc = f"{netloc}:{port}"
        alt = normalize_base_url(urlunsplit((parts.scheme, netloc, parts.path, parts.query, "")))
        if alt not in urls:
            urls.append(alt)
    return urls


def _error_message(response: httpx.Response, body: Any) -> str:
    if isinstance(body, dict) and normalize_text(body.get("error")):
        return normalize_text(body["error"])
    return normalize_text(response.text) or f"Backend error {response.status_code}."


def _json_or_none(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return None


class BackendClient:
    """Async client for the generation, state mirror and auth endpoints."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        on_base_url_change: Optional[Callable[[str], None]] = None,
    ) -> None:
        """Initialize the backend client.

        Args:
            settings: Application settings. If None, uses default settings.
            transport: Optional httpx transport (tests pass ``httpx.MockTransport``).
            on_base_url_change: Called with the new base URL whenever a fallback
                candidate answers instead of the preferred one.
        """
        from mail_todo_agent.config import get_settings

        self.settings = settings or get_settings()
        self._transport = transport
        self._on_base_url_change = on_base_url_change
        self.base_url = normalize_base_url(self.settings.backend_base_url)
        logger.debug("backend_client_initialized", base_url=self.base_url)

    def candidate_urls(self) -> list[str]:
        return build_loopback_fallback_urls(self.base_url)

    def _remember(self, candidate: str) -> None:
        if candidate == self.base_url:
            return
        logger.info("backend_base_url_changed", previous=self.base_url, current=candidate)
        self.base_url = candidate
        if self._on_base_url_change is not None:
            self._on_base_url_change(candidate)

    async def _request(
        self,
        method: str,
        path: str,
        timeout: float,
        json: Any = None,
        params: Optional[dict[str, str]] = None,
        fail_fast: bool = True,
        expect_object: bool = True,
    ) -> Any:
        """Send one request, walking the loopback candidates on network failure.

        With ``fail_fast`` an HTTP error answer raises at once; otherwise the
        next candidate is tried and the last error is raised at the end. Without
        ``expect_object`` any 2xx answer counts, and a non-object body reads as ``{}``.
        """
        candidates = self.candidate_urls()
        last_error: Exception | None = None
        timed_out = False

        async with httpx.AsyncClient(transport=self._transport, timeout=timeout) as client:
            for candidate in candidates:
                try:
                    response = await client.request(
                        method, f"{candidate}{path}", json=json, params=params
                    )
                except httpx.RequestError as e:
                    timed_out = isinstance(e, httpx.TimeoutException)
                    logger.debug(
                        "backend_candidate_failed",
                        url=candidate,
                        path=path,
                        error=str(e) or type(e).__name__,
                    )
                    last_error = e
                    continue

                body = _json_or_none(response)
                if response.is_error:
                    if response.status_code == 401:
                        raise NotAuthenticatedError(_error_message(response, body))
                    error = BackendResponseError(
                        _error_message(response, body), status_code=response.status_code
                    )
                    if fail_fast:
                        raise error
                    last_error = error
                    continue

                if not isinstance(body, dict):
                    if not expect_object:
                        self._remember(candidate)
                        return {}
                    error = BackendResponseError(
                        "Invalid backend response format.", status_code=response.status_code
                    )
                    if fail_fast:
                        raise error
                    last_error = error
                    continue

                self._remember(candidate)
                return body

        if isinstance(last_error, BackendResponseError):
            raise last_error
        hint = " Request timed out." if timed_out else ""
        raise BackendConnectionError(
            f"Cannot reach backend. Tried: {', '.join(candidates)}.{hint}"
        ) from last_error

    async def health(self) -> BackendStatus:
        """Probe ``/health`` on every candidate; never raises."""
        try:
            body = await self._request(
                "GET",
                "/health",
                timeout=self.settings.status_timeout,
                fail_fast=False,
                expect_object=False,
            )
        except Exception as e:
            logger.info("backend_offline", base_url=self.base_url, error=str(e))
            return BackendStatus(
                online=False,
                backend_base_url=self.base_url,
                codex_auth=False,
                checked_at=format_iso(utc_now()),
                error=str(e) or "Health check failed.",
            )
        return BackendStatus(
            online=True,
            backend_base_url=self.base_url,
            codex_auth=body.get("codex_auth") is True,
            checked_at=format_iso(utc_now()),
        )

    async def generate_todos(self, payload: dict[str, Any]) -> dict[str, Any]:
        """POST ``/api/todos/generate`` and return the response object."""
        logger.info("todo_generation_requested", messages=len(payload.get("messages", [])))
        return await self._request(
            "POST", "/api/todos/generate", timeout=self.settings.generate_timeout, json=payload
        )

    async def generate_draft(self, payload: dict[str, Any]) -> dict[str, Any]:
        """POST ``/api/generate`` and return ``{subject, body_plain}``."""
        logger.info("draft_generation_requested", prompt_length=len(payload.get("prompt", "")))
        return await self._request(
            "POST", "/api/generate", timeout=self.settings.generate_timeout, json=payload
        )

    async def fetch_state(self) -> dict[str, Any]:
        """GET the mirrored TODO state (the ``state`` object of the response)."""
        body = await self._request(
            "GET", "/api/todos/state", timeout=self.settings.state_sync_timeout, fail_fast=False
        )
        state = body.get("state")
        if not isinstance(state, dict):
            raise BackendResponseError("Invalid backend TODO state payload.")
        return state

    async def push_state(self, payload: dict[str, Any]) -> dict[str, Any]:
        """POST a ``{items, archiveItems, meta, savedAt}`` snapshot to the mirror."""
        return await self._request(
            "POST",
            "/api/todos/state",
            timeout=self.settings.state_sync_timeout,
            json=payload,
            fail_fast=False,
        )

    async def auth_status(self) -> dict[str, Any]:
        return await self._request("GET", "/auth/openai/status", timeout=self.settings.status_timeout)

    async def start_login(self) -> dict[str, Any]:
        return await self._request(
            "POST", "/auth/openai/start", timeout=self.settings.generate_timeout, json={}
        )

    async def poll_login(self, session_id: str) -> dict[str, Any]:
        return await self._request(
            "GET",
            "/auth/openai/poll",
            timeout=self.settings.status_timeout,
            params={"session_id": session_id},
        )

    async def logout(self) -> dict[str, Any]:
        return await self._request(
            "POST", "/auth/openai/logout", timeout=self.settings.state_sync_timeout, json={}
        )
