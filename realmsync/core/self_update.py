"""Launcher self-update orchestration.

State machine::

    CHECKING_REMOTE -> UP_TO_DATE
                    -> UPDATE_AVAILABLE -> DOWNLOADING -> VERIFYING -> DEPLOYING
                                                                    -> ABORTED

A remote version is only acted on when it compares strictly greater than
the running version. Unparseable versions compare as ``0.0.0.0``, so a
malformed manifest can never trigger an update.
"""

from __future__ import annotations

import re
import shutil
import sys
import threading
from collections.abc import Callable
from enum import StrEnum
from pathlib import Path
from typing import NoReturn

import httpx
import structlog

from realmsync.core.config import AppConfig
from realmsync.core.errors import (
    ExtractionError,
    FilesystemError,
    HashMismatchError,
    OperationCancelledError,
    SelfUpdateVerificationError,
)
from realmsync.core.handoff import launch_detached
from realmsync.core.installer import extract_archive
from realmsync.core.integrity import verify_file
from realmsync.core.manifest import ManifestClient, create_http_client
from realmsync.core.types import SelfUpdateManifest

logger = structlog.get_logger()

_VERSION_RE = re.compile(r"^[0-9]{1,10}(\.[0-9]{1,10}){0,3}$")
# Components above a signed 32-bit int make the whole version unparseable
_MAX_COMPONENT = 2**31 - 1

Version = tuple[int, int, int, int]

ARCHIVE_ARTIFACT_NAME = "ARLauncherUpdate.zip"
SCRATCH_DIR_NAME = "ARLauncherUpdate"
HANDOFF_HELPER_NAME = "realmsync-handoff"


class SelfUpdateState(StrEnum):
    """Self-update state machine states."""
    CHECKING_REMOTE = "checking_remote"
    UP_TO_DATE = "up_to_date"
    UPDATE_AVAILABLE = "update_available"
    DOWNLOADING = "downloading"
    VERIFYING = "verifying"
    DEPLOYING = "deploying"
    ABORTED = "aborted"


def parse_version(text: str) -> Version:
    """Parse a dotted numeric version of up to four components.

    Missing components are zero; anything unparseable is ``(0, 0, 0, 0)``.

    Example:
        >>> parse_version("1.2")
        (1, 2, 0, 0)
        >>> parse_version("v1.2")
        (0, 0, 0, 0)
    """
    value = text.strip()
    if not _VERSION_RE.match(value):
        return (0, 0, 0, 0)
    parts = [int(p) for p in value.split(".")]
    if any(p > _MAX_COMPONENT for p in parts):
        return (0, 0, 0, 0)
    parts += [0] * (4 - len(parts))
    return (parts[0], parts[1], parts[2], parts[3])


def compare_versions(a: str, b: str) -> int:
    """Return -1, 0 or 1 as version a is lower, equal or greater than b."""
    va, vb = parse_version(a), parse_version(b)
    return (va > vb) - (va < vb)


class SelfUpdateOrchestrator:
    """Checks for, downloads, verifies and deploys a new launcher build.

    Args:
        config: Application configuration (endpoint, version, staging dir)
        executable: Path of the running launcher executable
        client: Optional HTTP client
        launcher: Starts the detached helper process
        exit_func: Terminates the current process after the handoff
        cancel_event: Checked while downloading
    """

    def __init__(
        self,
        config: AppConfig,
        executable: Path,
        client: httpx.Client | None = None,
        launcher: Callable[[list[str]], object] | None = None,
        exit_func: Callable[[int], object] | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self.config = config
        self.executable = executable
        self._owns_client = client is None
        self.client = client or create_http_client(config.http)
        self.manifest_client = ManifestClient(config.http, self.client)
        self._launcher = launcher or launch_detached
        self._exit = exit_func or sys.exit
        self.cancel_event = cancel_event
        self.state = SelfUpdateState.CHECKING_REMOTE

    @property
    def current_version(self) -> str:
        return self.config.client_version

    def _transition(self, state: SelfUpdateState, **context: object) -> None:
        self.state = state
        logger.info("self_update_state", state=state.value, **context)

    def check(self) -> SelfUpdateManifest | None:
        """Fetch the self-update manifest and compare versions.

        Returns:
            The manifest when an update is available, otherwise None

        Raises:
            ManifestFetchError: If the manifest cannot be fetched
        """
        self._transition(SelfUpdateState.CHECKING_REMOTE)
        manifest = self.manifest_client.fetch_self_update_manifest(
            self.config.self_update_manifest_url
        )
        if compare_versions(manifest.version, self.current_version) > 0:
            self._transition(
                SelfUpdateState.UPDATE_AVAILABLE,
                current=self.current_version,
                remote=manifest.version,
            )
            return manifest

        self._transition(SelfUpdateState.UP_TO_DATE, current=self.current_version, remote=manifest.version)
        return None

    def artifact_path(self, manifest: SelfUpdateManifest) -> Path:
        if manifest.is_archive:
            return self.config.staging_dir / ARCHIVE_ARTIFACT_NAME
        return self.config.staging_dir / f"{self.executable.stem}.new{self.executable.suffix}"

    def download(self, manifest: SelfUpdateManifest) -> Path:
        """Download the artifact into the staging directory.

        Raises:
            httpx.HTTPError: On network failure
            OperationCancelledError: If cancelled mid-download
        """
        self._transition(SelfUpdateState.DOWNLOADING, url=manifest.artifact_url)
        artifact = self.artifact_path(manifest)
        artifact.parent.mkdir(parents=True, exist_ok=True)

        try:
            with self.client.stream("GET", manifest.artifact_url) as response:
                response.raise_for_status()
                with open(artifact, "wb") as f:
                    for chunk in response.iter_bytes(self.config.http.chunk_size):
                        if self.cancel_event is not None and self.cancel_event.is_set():
                            raise OperationCancelledError("Self-update download cancelled")
                        f.write(chunk)
        except BaseException:
            artifact.unlink(missing_ok=True)
            self._transition(SelfUpdateState.ABORTED, reason="download failed")
            raise
        return artifact

    def verify(self, artifact: Path, manifest: SelfUpdateManifest) -> None:
        """Verify the artifact's SHA-256.

        Raises:
            SelfUpdateVerificationError: On mismatch; the artifact is deleted
        """
        self._transition(SelfUpdateState.VERIFYING)
        try:
            verify_file(artifact, manifest.content_hash)
        except HashMismatchError as e:
            artifact.unlink(missing_ok=True)
            self._transition(SelfUpdateState.ABORTED, reason="hash mismatch", actual=e.actual)
            raise SelfUpdateVerificationError(
                f"Launcher update {manifest.version} failed verification: {e}"
            ) from e

    @property
    def helper_path(self) -> Path:
        return self.config.staging_dir / f"{HANDOFF_HELPER_NAME}{self.executable.suffix}"

    def remove_stale_helper(self) -> None:
        """Delete a helper copy left behind by a previous handoff."""
        try:
            self.helper_path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("stale_helper_not_removed", path=str(self.helper_path), error=str(e))

    def helper_command(self, *args: str) -> list[str]:
        """Command line that runs the handoff helper in a new process.

        Raises:
            FilesystemError: If the frozen helper cannot be copied to staging
        """
        if getattr(sys, "frozen", False):
            # The frozen launcher cannot run its helper from the file being replaced
            helper = self.helper_path
            try:
                helper.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(sys.executable, helper)
            except OSError as e:
                self._transition(SelfUpdateState.ABORTED, reason="helper copy failed")
                raise FilesystemError(f"Cannot stage handoff helper {helper}: {e}") from e
            return [str(helper), "handoff", *args]
        return [sys.executable, "-m", "realmsync", "handoff", *args]

    def _timing_args(self) -> list[str]:
        handoff = self.config.handoff
        return [
            "--startup-delay", str(handoff.startup_delay),
            "--exit-timeout", str(handoff.parent_exit_timeout),
            "--attempts", str(handoff.max_attempts),
            "--retry-delay", str(handoff.retry_delay),
        ]

    def deploy(self, artifact: Path, manifest: SelfUpdateManifest, pid: int) -> NoReturn:
        """Hand the artifact to the detached helper and terminate.

        Raises:
            ExtractionError: If an archive artifact cannot be extracted
        """
        self._transition(SelfUpdateState.DEPLOYING, artifact=str(artifact))

        if manifest.is_archive:
            scratch = self.config.staging_dir / SCRATCH_DIR_NAME
            shutil.rmtree(scratch, ignore_errors=True)
            scratch.mkdir(parents=True, exist_ok=True)
            try:
                extract_archive(artifact, scratch)
            except ExtractionError:
                self._transition(SelfUpdateState.ABORTED, reason="extraction failed")
                raise
            finally:
                artifact.unlink(missing_ok=True)

            command = self.helper_command(
                "mirror",
                "--pid", str(pid),
                "--source", str(scratch),
                "--target", str(self.executable.parent),
                "--exclude", self.config.user_settings_file,
                "--relaunch", str(self.executable),
                *self._timing_args(),
            )
        else:
            command = self.helper_command(
                "swap",
                "--pid", str(pid),
                "--source", str(artifact),
                "--target", str(self.executable),
                *self._timing_args(),
            )

        self._launcher(command)
        logger.info("self_update_handoff", version=manifest.version, pid=pid)
        self._exit(0)
        raise SystemExit(0)

    def run(self, pid: int, check_only: bool = False) -> SelfUpdateState:
        """Run the whole state machine.

        Returns only when no deployment happens (up to date, check only).

        Raises:
            ManifestFetchError: If the manifest cannot be fetched
            SelfUpdateVerificationError: If the artifact fails verification
            FilesystemError: If the handoff helper cannot be staged
        """
        self.remove_stale_helper()
        manifest = self.check()
        if manifest is None or check_only:
            return self.state

        artifact = self.download(manifest)
        self.verify(artifact, manifest)
        self.deploy(artifact, manifest, pid)

    def close(self) -> None:
        if self._owns_client:
            self.client.close()

    def __enter__(self) -> SelfUpdateOrchestrator:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
