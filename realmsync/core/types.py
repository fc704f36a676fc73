"""Core type definitions for realmsync."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from realmsync.core.utils import canonical_hash, normalize_relative_path

ARCHIVE_EXTENSION = ".zip"


class Outcome(StrEnum):
    """Per-entry result of a sync pass."""
    OK = "ok"
    UPDATED = "updated"
    EXTRACTED = "extracted"
    HASH_MISMATCH = "hash_mismatch"
    SKIPPED = "skipped"
    FAILED = "failed"

    @property
    def is_error(self) -> bool:
        return self in (Outcome.HASH_MISMATCH, Outcome.FAILED)


class LauncherState(StrEnum):
    """Primary action offered to the user."""
    INSTALL = "install"
    UPDATE = "update"
    PLAY = "play"


class ManifestEntry(BaseModel):
    """A single file declared by the content manifest."""
    path: str = Field(..., description="Relative, forward-slash path")
    size: int = Field(default=0, ge=0, description="Size in bytes (informational)")
    content_hash: str = Field(..., alias="sha256", description="SHA-256, uppercase hex")
    transfer_hint: str | None = Field(
        default=None,
        alias="torrent",
        description="Magnet URI or .torrent URL"
    )

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        return normalize_relative_path(v)

    @field_validator("content_hash")
    @classmethod
    def validate_content_hash(cls, v: str) -> str:
        return canonical_hash(v)

    @field_validator("transfer_hint")
    @classmethod
    def validate_transfer_hint(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        return v.strip()

    @property
    def is_archive(self) -> bool:
        """True when the entry is an install-time package archive."""
        return self.path.lower().endswith(ARCHIVE_EXTENSION)


class ContentManifest(BaseModel):
    """Remote description of the expected install directory contents."""
    version: str = Field(default="", description="Content version")
    min_client_version: str = Field(
        default="",
        alias="minLauncherVersion",
        description="Oldest launcher allowed to apply this manifest"
    )
    client_build: str = Field(default="", alias="clientBuild", description="Game client build")
    base_url: str = Field(..., alias="baseUrl", description="Prefix joined with entry paths")
    entries: list[ManifestEntry] = Field(default_factory=list, alias="files")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @model_validator(mode="after")
    def check_unique_paths(self) -> ContentManifest:
        seen: set[str] = set()
        for entry in self.entries:
            key = entry.path.lower()
            if key in seen:
                raise ValueError(f"Duplicate manifest path: {entry.path}")
            seen.add(key)
        return self


class SelfUpdateManifest(BaseModel):
    """Remote description of the newest launcher build."""
    version: str = Field(..., description="Dotted numeric version")
    artifact_url: str = Field(..., alias="url", description="Executable or archive URL")
    content_hash: str = Field(..., alias="sha256", description="SHA-256, uppercase hex")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("content_hash")
    @classmethod
    def validate_content_hash(cls, v: str) -> str:
        return canonical_hash(v)

    @property
    def is_archive(self) -> bool:
        return self.artifact_url.split("?", 1)[0].lower().endswith(ARCHIVE_EXTENSION)


class UpdatePlan(BaseModel):
    """Ordered set of manifest entries that need action."""
    pending_entries: list[ManifestEntry] = Field(default_factory=list)

    @property
    def pending_count(self) -> int:
        return len(self.pending_entries)

    @property
    def needs_any(self) -> bool:
        return bool(self.pending_entries)


@dataclass(frozen=True)
class EntryResult:
    """Outcome of processing one manifest entry.

    Attributes:
        entry: The manifest entry that was processed
        outcome: Closed status value
        detail: Human-readable reason for skips and failures
    """

    entry: ManifestEntry
    outcome: Outcome
    detail: str | None = None

    def describe(self) -> str:
        """Single status line for logs and console output."""
        status = self.outcome.value.upper()
        line = f"{status:<14} {self.entry.path} ({self.entry.size} bytes)"
        if self.detail:
            line += f" - {self.detail}"
        return line
