"""Content sync driver.

Wires the manifest client, diff planner, transfer engine, package installer
and content ledger together. Entries are processed one at a time in manifest
order and every entry produces exactly one ``EntryResult``.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

import httpx
import structlog

from realmsync.core.config import AppConfig
from realmsync.core.errors import FilesystemError, ManifestFetchError, OperationCancelledError
from realmsync.core.installer import BulkTransferHelper, PackageInstaller
from realmsync.core.ledger import ContentLedger
from realmsync.core.manifest import ManifestClient, create_http_client
from realmsync.core.planner import DiffPlanner
from realmsync.core.transfer import TransferEngine
from realmsync.core.types import (
    ContentManifest,
    EntryResult,
    LauncherState,
    ManifestEntry,
    Outcome,
    UpdatePlan,
)

logger = structlog.get_logger()

DEFAULT_LOCALE = "enUS"


@dataclass
class SyncProgress:
    """Counters for progress reporting."""

    total: int = 0
    processed: int = 0
    errors: int = 0

    @property
    def percent(self) -> int:
        return round(self.processed / max(1, self.total) * 100)


def ensure_realmlist(install_dir: Path, host: str) -> Path:
    """Write ``Data/<locale>/realmlist.wtf`` pointing at host.

    The locale is the first 4-5 character directory under ``Data``,
    ``enUS`` when there is none.

    Raises:
        FilesystemError: If the file cannot be written
    """
    data_dir = install_dir / "Data"
    try:
        data_dir.mkdir(parents=True, exist_ok=True)
        locales = sorted(
            d.name for d in data_dir.iterdir() if d.is_dir() and len(d.name) in (4, 5)
        )
        path = data_dir / (locales[0] if locales else DEFAULT_LOCALE) / "realmlist.wtf"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(f"set realmlist {host}\r\n".encode("ascii"))
    except (OSError, UnicodeEncodeError) as e:
        raise FilesystemError(f"Cannot write realmlist under {data_dir}: {e}") from e

    logger.info("realmlist_ensured", path=str(path), host=host)
    return path


class ContentSync:
    """Keeps an install directory in step with the content manifest.

    Args:
        config: Application configuration
        client: Optional HTTP client, created from config when omitted
        cancel_event: Cancellation signal shared by every component
        helper: Optional bulk-transfer helper, created from config when omitted
    """

    def __init__(
        self,
        config: AppConfig,
        client: httpx.Client | None = None,
        cancel_event: threading.Event | None = None,
        helper: BulkTransferHelper | None = None,
    ) -> None:
        self.config = config
        self.cancel_event = cancel_event or threading.Event()
        self._owns_client = client is None
        self.client = client or create_http_client(config.http)
        self.progress = SyncProgress()

        self.ledger = ContentLedger(config.metadata_dir)
        self.manifest_client = ManifestClient(config.http, self.client)
        self.planner = DiffPlanner(config.install_dir, self.ledger, cancel_event=self.cancel_event)
        self.transfer = TransferEngine(
            config.install_dir, self.client, config.http, self.cancel_event
        )
        self.installer = PackageInstaller(
            config.install_dir,
            self.ledger,
            self.client,
            config.staging_dir,
            config.http,
            helper or BulkTransferHelper(config.bulk_helper, self.cancel_event),
            self.cancel_event,
        )

    def fetch_manifest(self) -> ContentManifest:
        """Fetch the content manifest fresh.

        Raises:
            ManifestFetchError: On network or parse failure
        """
        return self.manifest_client.fetch_content_manifest(self.config.manifest_url)

    def plan(self, manifest: ContentManifest, install_mode: bool = False) -> UpdatePlan:
        return self.planner.plan(manifest, install_mode)

    def run(self, manifest: ContentManifest, install_mode: bool = False) -> Iterator[EntryResult]:
        """Process every manifest entry in order.

        Single traversal; the generator is not restartable.

        Yields:
            One EntryResult per manifest entry

        Raises:
            OperationCancelledError: When the cancellation signal is set
        """
        self.progress = SyncProgress(total=len(manifest.entries))
        logger.info("sync_started", entries=self.progress.total, install_mode=install_mode)

        for entry in manifest.entries:
            if self.cancel_event.is_set():
                logger.info("sync_cancelled", processed=self.progress.processed)
                raise OperationCancelledError("Sync cancelled")

            result = self._apply(entry, manifest.base_url, install_mode)
            self.progress.processed += 1
            if result.outcome.is_error:
                self.progress.errors += 1
            logger.debug("entry_processed", path=entry.path, outcome=result.outcome.value)
            yield result

        logger.info(
            "sync_finished",
            processed=self.progress.processed,
            errors=self.progress.errors,
        )

    def _apply(self, entry: ManifestEntry, base_url: str, install_mode: bool) -> EntryResult:
        if self.planner.is_excluded(entry):
            return EntryResult(entry, Outcome.SKIPPED, "ignored")
        if entry.is_archive:
            if not install_mode:
                return EntryResult(entry, Outcome.SKIPPED, "not install mode")
            return self.installer.apply(entry, base_url)
        return self.transfer.apply(entry, base_url)

    def launcher_state(
        self, manifest: ContentManifest | None = None
    ) -> tuple[LauncherState, UpdatePlan | None]:
        """Derive the primary launcher action.

        Fetches the manifest when none is given and falls back to local
        state alone when it is unreachable.
        """
        has_game = (self.config.install_dir / self.config.game_executable).is_file()
        try:
            plan = self.plan(manifest or self.fetch_manifest())
        except ManifestFetchError as e:
            logger.warning("launcher_state_offline", error=str(e))
            return (LauncherState.PLAY if has_game else LauncherState.INSTALL), None

        if not has_game:
            return LauncherState.INSTALL, plan
        if plan.needs_any:
            return LauncherState.UPDATE, plan
        return LauncherState.PLAY, plan

    def ensure_realmlist(self) -> Path | None:
        if not self.config.realmlist_host:
            return None
        return ensure_realmlist(self.config.install_dir, self.config.realmlist_host)

    def close(self) -> None:
        if self._owns_client:
            self.client.close()

    def __enter__(self) -> ContentSync:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
