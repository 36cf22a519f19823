"""Configuration and environment settings for the mailbox replica."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

from pydantic import Field, computed_field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GmailSettings(BaseSettings):
    """Gmail OAuth and listing settings."""

    model_config = SettingsConfigDict(extra="forbid")

    user_id: Annotated[str, Field(min_length=1)] = "me"

    credentials_file: Path
    token_file: Path = Path(".secrets/gmail-token.json")

    query: str | None = None
    include_spam_trash: bool = False
    request_attempts: Annotated[int, Field(ge=1, le=10)] = 5

    @field_validator("credentials_file")
    @classmethod
    def _credentials_file_must_exist(cls, value: Path) -> Path:
        """Ensure the OAuth client file exists and is a file.

        Args:
            value: Path to the credentials file.

        Returns:
            The validated path.

        Raises:
            ValueError: If the path does not exist or is not a file.
        """
        if not value.exists():
            msg = f"credentials_file does not exist: {value}"
            raise ValueError(msg)
        if not value.is_file():
            msg = f"credentials_file is not a file: {value}"
            raise ValueError(msg)
        return value

    @field_validator("query")
    @classmethod
    def _blank_query_is_none(cls, value: str | None) -> str | None:
        """Treat an empty search query as no query."""
        if value is None:
            return None
        stripped = value.strip()
        return stripped or None


class StorageSettings(BaseSettings):
    """Settings for the local replica database."""

    model_config = SettingsConfigDict(extra="forbid")

    root_dir: Path = Path("./data")
    sqlite_path_override: Path | None = None

    @field_validator("root_dir")
    @classmethod
    def _root_dir_to_absolute(cls, value: Path) -> Path:
        """Resolve the storage root directory to an absolute path."""
        return value.expanduser().resolve()

    @field_validator("sqlite_path_override")
    @classmethod
    def _path_to_absolute(cls, value: Path | None) -> Path | None:
        """Resolve the optional override path to an absolute path."""
        return value.expanduser().resolve() if value is not None else None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def sqlite_path(self) -> Path:
        """Return the resolved sqlite database path."""
        return (self.sqlite_path_override or (self.root_dir / "replica.sqlite3")).resolve()


class SyncSettings(BaseSettings):
    """Batching and paging limits for the sync engine."""

    model_config = SettingsConfigDict(extra="forbid")

    batch_size: Annotated[int, Field(ge=1, le=100)] = 8
    page_size: Annotated[int, Field(ge=1, le=500)] = 100
    default_limit: Annotated[int, Field(ge=0)] = 50


class LoggingSettings(BaseSettings):
    """Logging configuration settings."""

    model_config = SettingsConfigDict(extra="forbid")

    level: Annotated[str, Field(min_length=1)] = "INFO"
    json_logs: bool = True
    log_file: Path | None = None


class AppSettings(BaseSettings):
    """Top-level application settings."""

    model_config = SettingsConfigDict(
        env_prefix="REPLICA_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="forbid",
    )

    gmail: GmailSettings | None = None
    storage: StorageSettings = Field(default_factory=StorageSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def load_settings(*, env_file: Path | None = None) -> AppSettings:
    """Load validated settings from environment and optional file.

    Args:
        env_file: Optional .env file path.

    Returns:
        Validated AppSettings instance.
    """
    if env_file is None:
        return AppSettings()
    return AppSettings(_env_file=env_file)  # type: ignore[call-arg]
