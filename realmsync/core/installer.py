"""Install-time archive packages.

Archives are identified by content hash only. A package whose hash is in the
ledger is skipped without touching the network or the disk. Otherwise it is
acquired (through the optional bulk-transfer helper when the manifest gives a
transfer hint, else plain HTTP), verified, extracted over the install root
and recorded in the ledger.
"""

from __future__ import annotations

import os
import shutil
import subprocess
import sys
import threading
import time
import zipfile
from collections.abc import Callable
from pathlib import Path

import httpx
import structlog

from realmsync.core.config import BulkHelperConfig, HTTPConfig
from realmsync.core.errors import (
    ExtractionError,
    FilesystemError,
    HashMismatchError,
    OperationCancelledError,
)
from realmsync.core.integrity import verify_file
from realmsync.core.ledger import ContentLedger
from realmsync.core.types import EntryResult, ManifestEntry, Outcome
from realmsync.core.utils import build_file_url, normalize_relative_path, safe_temp_name

logger = structlog.get_logger()


def program_dir() -> Path:
    """Directory of the running program (the frozen executable or entry script)."""
    if getattr(sys, "frozen", False):
        return Path(sys.executable).resolve().parent
    return Path(sys.argv[0]).resolve().parent


def extract_archive(archive: Path, dest_dir: Path) -> int:
    """Extract every file of a zip archive into dest_dir, overwriting.

    Directory entries are skipped; their files create the directories they
    need. Member paths must stay inside dest_dir.

    Returns:
        Number of files written

    Raises:
        ExtractionError: If the archive is corrupt, escapes dest_dir or a
            file cannot be written
    """
    root = dest_dir.resolve()
    written = 0
    try:
        with zipfile.ZipFile(archive) as zf:
            for info in zf.infolist():
                if info.is_dir():
                    continue
                target = (root / normalize_relative_path(info.filename)).resolve()
                if not target.is_relative_to(root):
                    raise ExtractionError(f"Archive member escapes install root: {info.filename}")
                target.parent.mkdir(parents=True, exist_ok=True)
                with zf.open(info) as src, open(target, "wb") as dst:
                    shutil.copyfileobj(src, dst)
                written += 1
    except ExtractionError:
        raise
    except (zipfile.BadZipFile, zipfile.LargeZipFile, RuntimeError, ValueError, OSError) as e:
        raise ExtractionError(f"Failed to extract {archive.name}: {e}") from e

    logger.debug("archive_extracted", archive=str(archive), dest=str(dest_dir), files=written)
    return written


class BulkTransferHelper:
    """Optional external bulk-transfer client (aria2c) run as a subprocess.

    Args:
        config: Helper configuration
        cancel_event: Polled while the helper runs; terminates it when set
        sleep: Poll sleep function
    """

    def __init__(
        self,
        config: BulkHelperConfig | None = None,
        cancel_event: threading.Event | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config or BulkHelperConfig()
        self.cancel_event = cancel_event
        self._sleep = sleep

    @property
    def executable_name(self) -> str:
        if self.config.executable_name:
            return self.config.executable_name
        return "aria2c.exe" if sys.platform == "win32" else "aria2c"

    def locate(self) -> Path | None:
        """Find the helper binary next to the running program."""
        if not self.config.enabled:
            return None
        search_dir = self.config.search_dir or program_dir()
        candidate = search_dir / self.executable_name
        return candidate if candidate.is_file() else None

    def build_command(self, executable: Path, hint: str, output_path: Path) -> list[str]:
        return [
            str(executable),
            "--allow-overwrite=true",
            "--seed-time=0",
            f"--dir={output_path.parent}",
            f"--out={output_path.name}",
            hint,
        ]

    def fetch(self, hint: str, output_path: Path) -> bool:
        """Fetch output_path by transfer hint.

        Returns:
            True when the helper exited with status zero and produced the file

        Raises:
            OperationCancelledError: If cancelled while the helper runs
        """
        executable = self.locate()
        if executable is None:
            return False

        output_path.unlink(missing_ok=True)
        command = self.build_command(executable, hint, output_path)
        logger.info("bulk_helper_started", helper=str(executable), output=str(output_path))

        try:
            proc = subprocess.Popen(
                command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except OSError as e:
            logger.warning("bulk_helper_unavailable", helper=str(executable), error=str(e))
            return False

        while proc.poll() is None:
            if self.cancel_event is not None and self.cancel_event.is_set():
                proc.terminate()
                proc.wait()
                raise OperationCancelledError("Bulk transfer cancelled")
            self._sleep(self.config.poll_interval)

        ok = proc.returncode == 0 and output_path.is_file()
        logger.info("bulk_helper_finished", returncode=proc.returncode, success=ok)
        return ok


class PackageInstaller:
    """Downloads, verifies and extracts archive packages.

    Args:
        install_dir: Installation root archives are extracted into
        ledger: Ledger of applied archive hashes
        client: HTTP client
        staging_dir: Directory for temporary archive files
        config: HTTP configuration
        helper: Optional bulk-transfer helper
        cancel_event: Checked at every network read
    """

    def __init__(
        self,
        install_dir: Path,
        ledger: ContentLedger,
        client: httpx.Client,
        staging_dir: Path,
        config: HTTPConfig | None = None,
        helper: BulkTransferHelper | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self.install_dir = install_dir
        self.ledger = ledger
        self.client = client
        self.staging_dir = staging_dir
        self.config = config or HTTPConfig()
        self.helper = helper
        self.cancel_event = cancel_event

    def archive_path(self, entry: ManifestEntry) -> Path:
        return self.staging_dir / safe_temp_name(entry.path)

    def apply(self, entry: ManifestEntry, base_url: str) -> EntryResult:
        """Install one archive package.

        Returns:
            EntryResult with skipped, extracted, hash_mismatch or failed
        """
        if self.ledger.has_applied(entry.content_hash):
            return EntryResult(entry, Outcome.SKIPPED, "already applied")

        archive = self.archive_path(entry)
        try:
            self.staging_dir.mkdir(parents=True, exist_ok=True)
            source = self._acquire(entry, base_url, archive)
        except httpx.HTTPError as e:
            return self._failed(entry, e)
        except OSError as e:
            return self._failed(entry, FilesystemError(f"Cannot write {archive}: {e}"))

        try:
            verify_file(archive, entry.content_hash, self.cancel_event)
        except HashMismatchError as e:
            archive.unlink(missing_ok=True)
            logger.warning("hash_mismatch", path=entry.path, expected=e.expected, actual=e.actual)
            return EntryResult(entry, Outcome.HASH_MISMATCH, f"got {e.actual}")
        except OperationCancelledError:
            archive.unlink(missing_ok=True)
            raise

        try:
            files = extract_archive(archive, self.install_dir)
        except ExtractionError as e:
            return self._failed(entry, e)
        finally:
            archive.unlink(missing_ok=True)

        try:
            self.ledger.record_applied(entry.content_hash)
        except FilesystemError as e:
            return self._failed(entry, e)

        logger.info("archive_installed", path=entry.path, files=files, source=source)
        return EntryResult(entry, Outcome.EXTRACTED)

    def _acquire(self, entry: ManifestEntry, base_url: str, archive: Path) -> str:
        if entry.transfer_hint and self.helper is not None:
            if self.helper.fetch(entry.transfer_hint, archive):
                return "bulk"
            archive.unlink(missing_ok=True)
            logger.info("bulk_helper_fallback", path=entry.path)

        self._download(build_file_url(base_url, entry.path), archive)
        return "http"

    def _download(self, url: str, archive: Path) -> None:
        """Download the full archive, retrying transient failures from scratch."""
        part = archive.with_name(archive.name + ".part")
        last_error: httpx.HTTPError | None = None

        for attempt in range(1, self.config.max_retries + 1):
            part.unlink(missing_ok=True)
            try:
                with self.client.stream("GET", url) as response:
                    response.raise_for_status()
                    with open(part, "wb") as f:
                        for chunk in response.iter_bytes(self.config.chunk_size):
                            if self.cancel_event is not None and self.cancel_event.is_set():
                                raise OperationCancelledError("Archive download cancelled")
                            f.write(chunk)
                os.replace(part, archive)
                return
            except httpx.HTTPStatusError as e:
                if e.response.status_code < 500:
                    part.unlink(missing_ok=True)
                    raise
                last_error = e
            except httpx.TransportError as e:
                last_error = e
            logger.debug("archive_download_retry", url=url, attempt=attempt, error=str(last_error))

        part.unlink(missing_ok=True)
        assert last_error is not None
        raise last_error

    def _failed(self, entry: ManifestEntry, error: Exception) -> EntryResult:
        logger.error("entry_failed", path=entry.path, error=str(error))
        return EntryResult(entry, Outcome.FAILED, str(error))
