"""Durable record of archive packages already installed.

The ledger is an append-only log (``applied.log``) holding one uppercase
SHA-256 per line, plus an in-memory set rebuilt at startup. Older launchers
wrote one empty ``<HASH>.stamp`` marker per archive into a ``stamps``
directory instead; those markers are folded into the log once and are still
honoured on lookup, but never written.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

import structlog

from realmsync.core.errors import FilesystemError
from realmsync.core.utils import SHA256_HEX_LENGTH, validate_hash_string

logger = structlog.get_logger()


@dataclass(frozen=True)
class LedgerEntry:
    """An applied archive hash and when it was recorded."""

    content_hash: str
    applied_at: datetime


class ContentLedger:
    """Persistent set of applied archive content hashes.

    Args:
        metadata_dir: Hidden metadata directory inside the install root
    """

    LOG_FILENAME = "applied.log"
    STAMP_DIRNAME = "stamps"
    STAMP_SUFFIX = ".stamp"

    def __init__(self, metadata_dir: Path) -> None:
        self.metadata_dir = metadata_dir
        self._applied: dict[str, datetime] = {}
        self.migrated_count = 0

        self._load_log()
        self._migrate_legacy_stamps()

    @property
    def log_path(self) -> Path:
        """Path to the append-only log."""
        return self.metadata_dir / self.LOG_FILENAME

    @property
    def stamp_dir(self) -> Path:
        """Directory of legacy per-hash marker files."""
        return self.metadata_dir / self.STAMP_DIRNAME

    def __len__(self) -> int:
        return len(self._applied)

    def __contains__(self, content_hash: object) -> bool:
        return isinstance(content_hash, str) and self.has_applied(content_hash)

    def has_applied(self, content_hash: str) -> bool:
        """Check whether an archive with this content hash was installed.

        Read-only: legacy stamps are folded into the log at startup, a stamp
        that appears later is honoured here without being written through.
        """
        key = content_hash.strip().upper()
        if key in self._applied:
            return True
        return self._stamp_path(key).is_file()

    def record_applied(self, content_hash: str) -> bool:
        """Record an archive hash as installed.

        Args:
            content_hash: SHA-256 hex digest (any case)

        Returns:
            True if the hash was new, False if it was already recorded

        Raises:
            ValueError: If content_hash is not a SHA-256 hex digest
            FilesystemError: If the log cannot be written
        """
        key = content_hash.strip().upper()
        if not validate_hash_string(key, length=SHA256_HEX_LENGTH):
            raise ValueError(f"Invalid SHA-256 hex digest: {content_hash!r}")
        if key in self._applied:
            return False

        self._append(key, datetime.now(UTC))
        logger.info("ledger_recorded", hash=key)
        return True

    def entries(self) -> list[LedgerEntry]:
        """Return applied hashes in the order they were recorded."""
        return [LedgerEntry(h, ts) for h, ts in self._applied.items()]

    def _stamp_path(self, key: str) -> Path:
        return self.stamp_dir / f"{key}{self.STAMP_SUFFIX}"

    def _append(self, key: str, applied_at: datetime) -> None:
        try:
            self.metadata_dir.mkdir(parents=True, exist_ok=True)
            with open(self.log_path, "a", encoding="ascii", newline="\n") as f:
                f.write(key + "\n")
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            raise FilesystemError(f"Cannot write ledger {self.log_path}: {e}") from e
        self._applied[key] = applied_at

    def _load_log(self) -> None:
        if not self.log_path.exists():
            return

        try:
            lines = self.log_path.read_text(encoding="ascii", errors="ignore").splitlines()
        except OSError as e:
            logger.warning("ledger_unreadable", path=str(self.log_path), error=str(e))
            return

        loaded_at = _mtime(self.log_path)
        for line in lines:
            key = line.strip().upper()
            if not key:
                continue
            if not validate_hash_string(key, length=SHA256_HEX_LENGTH):
                logger.debug("ledger_line_ignored", line=line)
                continue
            self._applied.setdefault(key, loaded_at)

        logger.debug("ledger_loaded", path=str(self.log_path), count=len(self._applied))

    def _migrate_legacy_stamps(self) -> None:
        if not self.stamp_dir.is_dir():
            return

        for stamp in sorted(self.stamp_dir.glob(f"*{self.STAMP_SUFFIX}")):
            key = stamp.stem.strip().upper()
            if not validate_hash_string(key, length=SHA256_HEX_LENGTH):
                continue
            if key in self._applied:
                continue
            self._append(key, _mtime(stamp))
            self.migrated_count += 1

        if self.migrated_count:
            logger.info("ledger_migrated", stamps=self.migrated_count, path=str(self.log_path))


def _mtime(path: Path) -> datetime:
    try:
        return datetime.fromtimestamp(path.stat().st_mtime, UTC)
    except OSError:
        return datetime.now(UTC)
