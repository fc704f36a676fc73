"""Resumable, hash-verified transfer of loose files.

Each file is downloaded to a sibling ``<name>.part`` file. An interrupted
transfer leaves the partial file behind and the next attempt resumes it with
a ``Range: bytes=<offset>-`` request. The final path is only ever replaced by
a single rename after the partial file's SHA-256 matches the manifest.
"""

from __future__ import annotations

import os
import threading
import time
from collections.abc import Callable
from pathlib import Path

import httpx
import structlog

from realmsync.core.config import HTTPConfig
from realmsync.core.errors import (
    FilesystemError,
    HashMismatchError,
    OperationCancelledError,
)
from realmsync.core.integrity import file_matches, verify_file
from realmsync.core.types import EntryResult, ManifestEntry, Outcome
from realmsync.core.utils import build_file_url

logger = structlog.get_logger()


class TransferEngine:
    """Downloads loose manifest files into the install root.

    Args:
        install_dir: Installation root
        client: HTTP client
        config: HTTP configuration (retries, backoff, chunk size)
        cancel_event: Checked at every network read and file write
        sleep: Backoff sleep function
    """

    PART_SUFFIX = ".part"

    def __init__(
        self,
        install_dir: Path,
        client: httpx.Client,
        config: HTTPConfig | None = None,
        cancel_event: threading.Event | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.install_dir = install_dir
        self.client = client
        self.config = config or HTTPConfig()
        self.cancel_event = cancel_event
        self._sleep = sleep

    def final_path(self, entry: ManifestEntry) -> Path:
        return self.install_dir / entry.path

    def part_path(self, entry: ManifestEntry) -> Path:
        final = self.final_path(entry)
        return final.with_name(final.name + self.PART_SUFFIX)

    def apply(self, entry: ManifestEntry, base_url: str) -> EntryResult:
        """Bring one loose file up to date.

        Returns:
            EntryResult with ok, updated, hash_mismatch or failed

        Raises:
            OperationCancelledError: If the cancellation signal is set; any
                partial file is left in place for a later resume
        """
        final = self.final_path(entry)
        part = self.part_path(entry)

        try:
            final.parent.mkdir(parents=True, exist_ok=True)
            if file_matches(final, entry.content_hash, self.cancel_event):
                part.unlink(missing_ok=True)
                return EntryResult(entry, Outcome.OK)
        except OSError as e:
            return self._failed(entry, FilesystemError(f"Cannot prepare {final}: {e}"))

        url = build_file_url(base_url, entry.path)
        try:
            self._download(url, part)
        except httpx.HTTPError as e:
            return self._failed(entry, e)
        except OSError as e:
            return self._failed(entry, FilesystemError(f"Cannot write {part}: {e}"))

        try:
            verify_file(part, entry.content_hash, self.cancel_event)
        except HashMismatchError as e:
            part.unlink(missing_ok=True)
            logger.warning("hash_mismatch", path=entry.path, expected=e.expected, actual=e.actual)
            return EntryResult(entry, Outcome.HASH_MISMATCH, f"got {e.actual}")

        try:
            # os.replace overwrites an existing file in a single step
            os.replace(part, final)
        except OSError as e:
            return self._failed(entry, FilesystemError(f"Cannot install {final}: {e}"))

        logger.info("entry_updated", path=entry.path, size=final.stat().st_size)
        return EntryResult(entry, Outcome.UPDATED)

    def _download(self, url: str, part: Path) -> None:
        """Stream url into part, resuming from its current length.

        Transport errors and 5xx responses are retried with exponential
        backoff, each retry resuming from wherever the previous one stopped.
        """
        last_error: httpx.HTTPError | None = None

        for attempt in range(1, self.config.max_retries + 1):
            self._check_cancelled()
            try:
                self._stream_once(url, part)
                return
            except httpx.HTTPStatusError as e:
                if e.response.status_code < 500:
                    raise
                last_error = e
            except httpx.TransportError as e:
                last_error = e

            logger.debug("transfer_retry", url=url, attempt=attempt, error=str(last_error))
            if attempt < self.config.max_retries:
                self._sleep(self.config.retry_backoff * (2 ** (attempt - 1)))

        assert last_error is not None
        raise last_error

    def _stream_once(self, url: str, part: Path) -> None:
        offset = part.stat().st_size if part.exists() else 0
        headers = {"Accept-Encoding": "identity"}
        if offset > 0:
            headers["Range"] = f"bytes={offset}-"

        with self.client.stream("GET", url, headers=headers) as response:
            if offset > 0 and response.status_code == 416:
                # Partial file already holds the whole body
                logger.debug("transfer_resume_complete", url=url, offset=offset)
                return
            response.raise_for_status()

            if offset > 0 and response.status_code != 206:
                # Appending a full body corrupts the file, the hash check discards it
                logger.warning("range_not_honored", url=url, status=response.status_code)
            elif offset > 0:
                logger.debug("transfer_resumed", url=url, offset=offset)

            with open(part, "ab") as f:
                for chunk in response.iter_bytes(self.config.chunk_size):
                    self._check_cancelled()
                    f.write(chunk)

    def _check_cancelled(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise OperationCancelledError("Transfer cancelled")

    def _failed(self, entry: ManifestEntry, error: Exception) -> EntryResult:
        logger.error("entry_failed", path=entry.path, error=str(error))
        return EntryResult(entry, Outcome.FAILED, str(error))
