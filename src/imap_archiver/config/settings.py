"""Configuration and environment settings for the archiver."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from imap_archiver.models.types import TransportSecurity


class ImapSettings(BaseSettings):
    """IMAP connection settings."""

    model_config = SettingsConfigDict(extra="forbid")

    host: Annotated[str, Field(min_length=1)] = "127.0.0.1"
    port: Annotated[int, Field(ge=1, le=65535)] = 1143
    security: TransportSecurity = TransportSecurity.starttls
    username: Annotated[str, Field(min_length=1)]
    password: Annotated[str, Field(min_length=1, repr=False)]
    verify_tls: bool = False

    connection_timeout_s: Annotated[float, Field(gt=0)] = 90.0
    greeting_timeout_s: Annotated[float, Field(gt=0)] = 16.0
    socket_timeout_s: Annotated[float, Field(gt=0)] = 300.0


class ArchiveSettings(BaseSettings):
    """What to archive and how to move it."""

    model_config = SettingsConfigDict(extra="forbid")

    source_mailbox: Annotated[str, Field(min_length=1)] = "INBOX"
    archive_mailbox: Annotated[str, Field(min_length=1)] = "Archive"

    batch_size: Annotated[int, Field(ge=1)] = 500
    cutoff_days: Annotated[int, Field(ge=1)] = 7

    # None keeps retrying a failing chunk forever.
    move_max_attempts: Annotated[int | None, Field(ge=1)] = None
    move_retry_base_delay_s: Annotated[float, Field(ge=0)] = 1.0
    move_retry_max_delay_s: Annotated[float, Field(ge=0)] = 60.0

    dry_run: bool = False

    @field_validator("source_mailbox", "archive_mailbox")
    @classmethod
    def _mailbox_not_blank(cls, value: str) -> str:
        """Normalize and validate mailbox names.

        Args:
            value: Raw mailbox name.

        Returns:
            Stripped mailbox name.

        Raises:
            ValueError: If the name is blank.
        """
        stripped = value.strip()
        if not stripped:
            raise ValueError("mailbox name must not be blank")
        return stripped


class LoggingSettings(BaseSettings):
    """Logging configuration settings."""

    model_config = SettingsConfigDict(extra="forbid")

    level: Annotated[str, Field(min_length=1)] = "INFO"
    json_logs: bool = True
    debug: bool = False


class DisplaySettings(BaseSettings):
    """Terminal output settings."""

    model_config = SettingsConfigDict(extra="forbid")

    progress: bool = True


class AppSettings(BaseSettings):
    """Top-level application settings."""

    model_config = SettingsConfigDict(
        env_prefix="ARCHIVER_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="forbid",
    )

    imap: ImapSettings | None = None
    archive: ArchiveSettings = Field(default_factory=ArchiveSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    display: DisplaySettings = Field(default_factory=DisplaySettings)


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
