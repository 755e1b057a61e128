"""Configuration and environment settings for the import tool."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServerSettings(BaseSettings):
    """JMAP server connection settings."""

    model_config = SettingsConfigDict(extra="forbid")

    url: Annotated[str | None, Field(min_length=1)] = None
    username: Annotated[str, Field(min_length=1)] = "admin"
    secret: Annotated[str | None, Field(min_length=1, repr=False)] = None
    timeout_seconds: Annotated[float, Field(gt=0, le=3600)] = 120.0
    verify_tls: bool = True

    @field_validator("url")
    @classmethod
    def _url_must_be_http(cls, value: str | None) -> str | None:
        """Validate and normalize the server base URL.

        Args:
            value: Raw base URL.

        Returns:
            URL without a trailing slash.

        Raises:
            ValueError: If the URL is not http(s).
        """
        if value is None:
            return None
        stripped = value.strip().rstrip("/")
        if not stripped.startswith(("http://", "https://")):
            raise ValueError(f"url must start with http:// or https://: {value!r}")
        return stripped

    @property
    def session_url(self) -> str:
        """Return the JMAP session resource URL."""
        return f"{self.url}/.well-known/jmap"


class ImportSettings(BaseSettings):
    """Message import tuning and exit policy."""

    model_config = SettingsConfigDict(extra="forbid")

    workers: Annotated[int | None, Field(ge=1, le=256)] = None
    upload_attempts: Annotated[int, Field(ge=1, le=10)] = 3
    fail_on_errors: bool = False

    @property
    def effective_workers(self) -> int:
        """Return the worker pool size, defaulting to host parallelism."""
        return self.workers or os.cpu_count() or 1


class LoggingSettings(BaseSettings):
    """Logging configuration settings."""

    model_config = SettingsConfigDict(extra="forbid")

    level: Annotated[str, Field(min_length=1)] = "WARNING"
    json_logs: bool = False


class AppSettings(BaseSettings):
    """Top-level application settings."""

    model_config = SettingsConfigDict(
        env_prefix="JMAP_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="forbid",
    )

    server: ServerSettings | None = None
    importer: ImportSettings = Field(default_factory=ImportSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def load_settings(*, env_file: Path | None) -> AppSettings:
    """Load validated settings from environment and optional file.

    Args:
        env_file: Optional .env file path.

    Returns:
        Validated AppSettings instance.
    """
    if env_file is None:
        return AppSettings()
    return AppSettings(_env_file=env_file)  # type: ignore[call-arg]


def parse_credentials(credentials: str, *, default_user: str = "admin") -> tuple[str, str]:
    """Split a ``user:secret`` credentials string.

    Args:
        credentials: Either ``user:secret`` or a bare secret.
        default_user: Account used when no user part is present.

    Returns:
        Tuple of (username, secret).

    Raises:
        ValueError: If the secret part is empty.
    """
    user, sep, secret = credentials.partition(":")
    if not sep:
        user, secret = default_user, credentials
    if not secret:
        raise ValueError("credentials must include a non-empty secret")
    return (user or default_user), secret
