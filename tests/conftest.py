"""Pytest configuration and shared fixtures."""

import base64

import pytest


@pytest.fixture
def mock_settings(tmp_path):
    """Provide mock settings for testing."""
    from mail_todo_agent.config import Settings

    return Settings(
        backend_base_url="http://127.0.0.1:8787",
        model="test-model",
        language="English",
        state_db_path=tmp_path / "state.sqlite3",
        gmail_credentials_path=tmp_path / "missing-credentials.json",
        gmail_token_path=tmp_path / "token.json",
        log_level="DEBUG",
        debug=True,
    )


def _b64(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


@pytest.fixture
def sample_gmail_message() -> dict:
    """Provide a Gmail API message (format=full) with plain and HTML parts."""
    return {
        "id": "msg123456",
        "threadId": "thread789",
        "labelIds": ["INBOX", "UNREAD", "CATEGORY_PERSONAL"],
        "internalDate": "1735732800000",
        "snippet": "Could you send the signed contract by Friday?",
        "payload": {
            "mimeType": "multipart/mixed",
            "headers": [
                {"name": "Subject", "value": "Contract signature"},
                {"name": "From", "value": "Anna Nowak <anna@example.com>"},
                {"name": "Date", "value": "Wed, 01 Jan 2025 12:00:00 +0000"},
                {"name": "Message-ID", "value": "<Contract-1@example.com>"},
            ],
            "body": {"size": 0},
            "parts": [
                {
                    "mimeType": "multipart/alternative",
                    "body": {"size": 0},
                    "parts": [
                        {
                            "mimeType": "text/plain",
                            "body": {"data": _b64("Could you send the signed contract by Friday?")},
                        },
                        {
                            "mimeType": "text/html",
                            "body": {
                                "data": _b64("<p>Could you send the <b>signed</b> contract by Friday?</p>")
                            },
                        },
                    ],
                },
                {
                    "mimeType": "text/plain",
                    "filename": "notes.txt",
                    "body": {"attachmentId": "att1", "size": 120},
                },
            ],
        },
    }
