"""Configuration management for realmsync."""

from __future__ import annotations

import json
import tempfile
from pathlib import Path

import structlog
from pydantic import BaseModel, Field, field_validator

logger = structlog.get_logger()


def _validate_http_url(v: str) -> str:
    if not v.startswith(("http://", "https://")):
        raise ValueError(f"URL must use http or https: {v}")
    return v


class HTTPConfig(BaseModel):
    """HTTP transfer configuration."""

    timeout: float = Field(default=30.0, description="Request timeout in seconds")
    max_retries: int = Field(default=3, description="Maximum attempts per transfer")
    retry_backoff: float = Field(
        default=0.5,
        description="Base delay in seconds for exponential backoff"
    )
    verify_ssl: bool = Field(default=True, description="Verify SSL certificates")
    chunk_size: int = Field(
        default=1 << 16,
        description="Streaming chunk size in bytes"
    )

    @field_validator("timeout")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        """Validate timeout value."""
        if v <= 0:
            raise ValueError("Timeout must be positive")
        return v

    @field_validator("max_retries")
    @classmethod
    def validate_max_retries(cls, v: int) -> int:
        """Validate max retries value."""
        if v < 1:
            raise ValueError("Max retries must be at least 1")
        return v

    @field_validator("retry_backoff")
    @classmethod
    def validate_retry_backoff(cls, v: float) -> float:
        if v < 0:
            raise ValueError("Retry backoff must be non-negative")
        return v

    @field_validator("chunk_size")
    @classmethod
    def validate_chunk_size(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Chunk size must be positive")
        return v


class BulkHelperConfig(BaseModel):
    """External bulk-transfer helper (aria2c) configuration."""

    enabled: bool = Field(default=True, description="Use the helper when a transfer hint exists")
    executable_name: str | None = Field(
        default=None,
        description="Helper binary name (default: aria2c, aria2c.exe on Windows)"
    )
    search_dir: Path | None = Field(
        default=None,
        description="Directory holding the helper (default: next to the running program)"
    )
    poll_interval: float = Field(default=0.2, description="Seconds between helper exit polls")

    @field_validator("poll_interval")
    @classmethod
    def validate_poll_interval(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Poll interval must be positive")
        return v


class HandoffConfig(BaseModel):
    """Timing of the detached self-update helper."""

    startup_delay: float = Field(
        default=1.0,
        description="Seconds to wait before touching the executable"
    )
    parent_exit_timeout: float = Field(
        default=10.0,
        description="Seconds to wait for the parent process to exit"
    )
    max_attempts: int = Field(default=10, description="Overwrite attempts before giving up")
    retry_delay: float = Field(default=1.0, description="Seconds between overwrite attempts")

    @field_validator("max_attempts")
    @classmethod
    def validate_max_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Max attempts must be at least 1")
        return v

    @field_validator("startup_delay", "parent_exit_timeout", "retry_delay")
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("Delays must be non-negative")
        return v


class AppConfig(BaseModel):
    """Application configuration."""

    # Directory settings
    config_dir: Path = Field(
        default=Path.home() / ".config" / "realmsync",
        description="Configuration directory"
    )
    install_dir: Path = Field(
        default=Path.home() / "Games" / "Azeroth Reforged",
        description="Game client installation root"
    )
    staging_dir: Path = Field(
        default=Path(tempfile.gettempdir()),
        description="Scratch directory for archives and self-update artifacts"
    )
    metadata_dir_name: str = Field(
        default=".arlauncher",
        description="Hidden metadata directory inside the install root"
    )
    user_settings_file: str = Field(
        default="launcher.cfg",
        description="Launcher settings file preserved across self-updates"
    )
    game_executable: str = Field(
        default="Wow.exe",
        description="Game executable relative to the install root"
    )

    # Endpoints
    manifest_url: str = Field(
        default="https://cdn.azerothreforged.xyz/latest.json",
        description="Content manifest URL"
    )
    self_update_manifest_url: str = Field(
        default="https://cdn.azerothreforged.xyz/launcher.json",
        description="Launcher self-update manifest URL"
    )
    client_version: str = Field(
        default="0.1.0",
        description="Version of the running launcher"
    )
    realmlist_host: str | None = Field(
        default="login.azerothreforged.xyz",
        description="Realm host written to realmlist.wtf after a sync"
    )

    http: HTTPConfig = Field(default_factory=HTTPConfig)
    bulk_helper: BulkHelperConfig = Field(default_factory=BulkHelperConfig)
    handoff: HandoffConfig = Field(default_factory=HandoffConfig)

    # Output settings
    output_format: str = Field(
        default="rich",
        description="Output format (rich, json, plain)"
    )
    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    @property
    def metadata_dir(self) -> Path:
        """Hidden metadata directory holding the ledger."""
        return self.install_dir / self.metadata_dir_name

    @classmethod
    def load(cls, config_file: Path | None = None) -> AppConfig:
        """Load configuration from file.

        Args:
            config_file: Path to config file, uses default if None

        Returns:
            Application configuration
        """
        if config_file is None:
            config_file = Path.home() / ".config" / "realmsync" / "config.json"

        if config_file.exists():
            with open(config_file) as f:
                data = json.load(f)
                return cls(**data)

        # Return defaults
        return cls()

    def save(self, config_file: Path | None = None) -> None:
        """Save configuration to file.

        Args:
            config_file: Path to config file, uses default if None
        """
        if config_file is None:
            config_file = self.config_dir / "config.json"

        config_file.parent.mkdir(parents=True, exist_ok=True)

        with open(config_file, "w") as f:
            json.dump(self.model_dump(mode="json"), f, indent=2, default=str)

        logger.info("config_saved", path=str(config_file))

    @field_validator("manifest_url", "self_update_manifest_url")
    @classmethod
    def validate_urls(cls, v: str) -> str:
        """Validate endpoint URLs."""
        return _validate_http_url(v)

    @field_validator("output_format")
    @classmethod
    def validate_output_format(cls, v: str) -> str:
        """Validate output format."""
        valid_formats = {"rich", "json", "plain"}
        if v not in valid_formats:
            raise ValueError(f"Invalid output format: {v}. Valid formats: {valid_formats}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Valid levels: {valid_levels}")
        return v

    @field_validator("metadata_dir_name", "user_settings_file", "game_executable")
    @classmethod
    def validate_relative_name(cls, v: str) -> str:
        if not v or Path(v).is_absolute():
            raise ValueError(f"Expected a non-empty relative name: {v!r}")
        return v
