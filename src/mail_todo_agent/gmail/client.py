"""Gmail API client implementation.

This module provides a client for interacting with the Gmail API.

Notes:
    The Google API client is synchronous. This project wraps those calls using
    `asyncio.to_thread` so the rest of the codebase can remain async-friendly.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import structlog
from googleapiclient.errors import HttpError

from mail_todo_agent.config import Settings
from mail_todo_agent.exceptions import AuthenticationError, ConfigurationError, MailStoreError
from mail_todo_agent.utils import retry_on_failure

logger = structlog.get_logger()

_TRANSIENT_STATUSES = {429, 500, 502, 503, 504}

# Gmail caps list pages at 500 ids.
_MAX_PAGE_SIZE = 500


class TransientGmailError(MailStoreError):
    """A Gmail call failed in a way worth retrying (rate limit, 5xx, socket error)."""


def _translate_http_error(exc: HttpError) -> MailStoreError:
    status = getattr(exc.resp, "status", None)
    try:
        status = int(status)
    except (TypeError, ValueError):
        status = None
    if status in _TRANSIENT_STATUSES:
        return TransientGmailError(f"Gmail API returned HTTP {status}")
    return MailStoreError(str(exc))


class GmailClient:
    """Gmail API client for read-only message access.

    This client handles authentication, paged message listing
    and message retrieval.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        """Initialize Gmail client.

        Args:
            settings: Application settings. If None, uses default settings.
        """
        from mail_todo_agent.config import get_settings

        self.settings = settings or get_settings()
        self._service: Any | None = None
        logger.info("gmail_client_initialized")

    async def authenticate(self) -> None:
        """Authenticate with Gmail API using OAuth2.

        Raises:
            ConfigurationError: If the credentials file is missing.
            AuthenticationError: If authentication fails.
        """

        if self._service is not None:
            return

        credentials_path = Path(self.settings.gmail_credentials_path)
        token_path = Path(self.settings.gmail_token_path)
        scope = self.settings.gmail_scope

        if not credentials_path.exists():
            raise ConfigurationError(
                f"Gmail credentials file not found: {credentials_path}. "
                "See README.md -> Gmail API Setup."
            )

        logger.info(
            "gmail_authentication_started",
            credentials_path=str(credentials_path),
            token_path=str(token_path),
            scope=scope,
        )

        try:
            self._service = await asyncio.to_thread(
                self._build_service,
                credentials_path,
                token_path,
                scope,
            )
        except Exception as exc:  # noqa: BLE001
            logger.exception("gmail_authentication_failed", error=str(exc))
            raise AuthenticationError(str(exc)) from exc

        logger.info("gmail_authentication_completed")

    async def list_message_ids(self, query: str | None = None, max_results: int = 100) -> list[str]:
        """List message ids matching a Gmail search query, newest first.

        Args:
            query: Gmail search query string.
            max_results: Maximum number of ids to return; pages are followed
                until it is reached.

        Raises:
            MailStoreError: If the API request fails after retries.
        """

        await self._ensure_authenticated()
        logger.debug("listing_messages", max_results=max_results, query=query)
        return await asyncio.to_thread(self._with_retry(self._list_message_ids_sync), query, max_results)

    async def get_message(
        self,
        message_id: str,
        *,
        format: str = "metadata",
        metadata_headers: list[str] | None = None,
    ) -> dict[str, Any]:
        """Get a specific message by ID.

        Args:
            message_id: The Gmail message ID.
            format: Gmail response format (``metadata`` or ``full``).
            metadata_headers: Headers to include for ``metadata`` fetches.

        Raises:
            MailStoreError: If the API request fails after retries.
        """

        await self._ensure_authenticated()
        logger.debug("getting_message", message_id=message_id, format=format)
        return await asyncio.to_thread(
            self._with_retry(self._get_message_sync),
            message_id,
            format,
            metadata_headers,
        )

    def _with_retry(self, func):
        return retry_on_failure(
            max_retries=self.settings.max_retries,
            retry_on=(TransientGmailError, OSError),
        )(func)

    async def _ensure_authenticated(self) -> None:
        if self._service is None:
            raise AuthenticationError(
                "Gmail client is not authenticated. Call await GmailClient.authenticate() first."
            )

    def _build_service(self, credentials_path: Path, token_path: Path, scope: str) -> Any:
        # Imported lazily to keep import-time cost low and tests fast.
        from google.auth.transport.requests import Request
        from google.oauth2.credentials import Credentials
        from google_auth_oauthlib.flow import InstalledAppFlow
        from googleapiclient.discovery import build

        creds: Credentials | None = None
        if token_path.exists():
            creds = Credentials.from_authorized_user_file(str(token_path), scopes=[scope])

        if creds is not None and creds.expired and creds.refresh_token:
            creds.refresh(Request())

        if creds is None or not creds.valid:
            flow = InstalledAppFlow.from_client_secrets_file(str(credentials_path), scopes=[scope])
            creds = flow.run_local_server(port=0)
            token_path.parent.mkdir(parents=True, exist_ok=True)
            token_path.write_text(creds.to_json(), encoding="utf-8")

        # cache_discovery=False prevents writing discovery docs to disk.
        return build("gmail", "v1", credentials=creds, cache_discovery=False)

    def _list_message_ids_sync(self, query: str | None, max_results: int) -> list[str]:
        assert self._service is not None
        ids: list[str] = []

        page_token: str | None = None
        while len(ids) < max_results:
            request = (
                self._service.users()
                .messages()
                .list(
                    userId="me",
                    maxResults=min(_MAX_PAGE_SIZE, max_results - len(ids)),
                    q=query,
                    pageToken=page_token,
                )
            )
            try:
                response = request.execute()
            except HttpError as exc:
                raise _translate_http_error(exc) from exc

            ids.extend(str(m["id"]) for m in response.get("messages", []) or [] if m.get("id"))
            page_token = response.get("nextPageToken")
            if page_token is None:
                break

        return ids[:max_results]

    def _get_message_sync(
        self,
        message_id: str,
        format: str,
        metadata_headers: list[str] | None,
    ) -> dict[str, Any]:
        assert self._service is not None
        request = (
            self._service.users()
            .messages()
            .get(userId="me", id=message_id, format=format, metadataHeaders=metadata_headers)
        )
        try:
            return request.execute()
        except HttpError as exc:
            raise _translate_http_error(exc) from exc
