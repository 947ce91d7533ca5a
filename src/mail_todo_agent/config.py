"""Configuration management for Mail TODO Agent.

This module handles application configuration using Pydantic settings.
Configuration can be loaded from environment variables or .env files.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with
    the MAIL_TODO_ prefix (e.g., MAIL_TODO_BACKEND_BASE_URL).
    """

    model_config = SettingsConfigDict(
        env_prefix="MAIL_TODO_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # LLM backend configuration
    backend_base_url: str = Field(
        default="http://127.0.0.1:8787",
        description="Base URL of the local LLM backend",
    )
    model: str = Field(
        default="gpt-5.3-codex",
        description="Model name forwarded to the backend for generation",
    )
    language: str = Field(
        default="Polish",
        description="Preferred output language for drafts and TODO items",
    )
    keep_panel_open: bool = Field(
        default=True,
        description="Whether UI surfaces should keep the TODO panel visible",
    )
    generate_timeout: float = Field(
        default=120.0,
        description="Timeout for draft/TODO generation requests in seconds",
    )
    state_sync_timeout: float = Field(
        default=8.0,
        description="Timeout for remote TODO state push/pull in seconds",
    )
    status_timeout: float = Field(
        default=5.0,
        description="Timeout for backend health checks in seconds",
    )
    backend_status_stale_seconds: int = Field(
        default=90,
        description="Age after which a cached backend health result is re-checked",
    )

    # Message collection
    lookback_hours: int = Field(
        default=72,
        description="How far back unread/flagged messages are considered",
    )
    max_messages_per_query: int = Field(
        default=120,
        description="Maximum number of headers fetched per mail store query",
    )
    max_messages_for_analysis: int = Field(
        default=40,
        description="Maximum number of messages sent to the backend per refresh",
    )
    snippet_limit: int = Field(
        default=700,
        description="Maximum snippet length extracted from each message",
    )
    snippet_concurrency: int = Field(
        default=4,
        description="Concurrent snippet extractions (clamped to 1..8)",
    )
    recent_grace_minutes: int = Field(
        default=15,
        description="Overlap subtracted from the last generation time for the recent query",
    )

    # TODO lifecycle
    max_todos: int = Field(
        default=25,
        description="Maximum number of TODO items accepted from one generation",
    )
    max_stored_todos: int = Field(
        default=400,
        description="Maximum number of active TODO items kept",
    )
    max_archived_todos: int = Field(
        default=800,
        description="Maximum number of archived TODO items kept",
    )
    done_to_archive_days: float = Field(
        default=3.0,
        description="Days a completed TODO stays visible before it is archived",
    )
    max_processed_message_keys: int = Field(
        default=6000,
        description="Maximum number of message tracking keys remembered as processed",
    )

    # Scheduling
    refresh_interval_minutes: int = Field(
        default=60,
        description="Interval of the periodic TODO refresh",
    )
    stale_after_minutes: int = Field(
        default=60,
        description="A startup refresh is skipped when the last generation is newer than this",
    )

    # Local state storage
    state_db_path: Path = Field(
        default=Path("todo_state.sqlite3"),
        description="Path to the local SQLite database holding the TODO state",
    )

    # Gmail Configuration
    gmail_credentials_path: Path = Field(
        default=Path("credentials.json"),
        description="Path to Gmail API credentials file",
    )
    gmail_token_path: Path = Field(
        default=Path("token.json"),
        description="Path to Gmail API token file",
    )
    gmail_scope: str = Field(
        default="https://www.googleapis.com/auth/gmail.readonly",
        description="OAuth scope used for Gmail access; reading messages only needs gmail.readonly.",
    )

    # Application Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )
    max_retries: int = Field(
        default=3,
        description="Maximum number of retries for failed mail store calls",
    )

    @field_validator("backend_base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.strip().rstrip("/")

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, value: str) -> str:
        return value.strip().upper()


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings: Application settings instance.
    """
    return Settings()
