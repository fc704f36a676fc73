"""Manifest diff planning.

Compares the content manifest against the install directory and the
content ledger to decide which entries need action:

- excluded: locale realmlist files and the launcher's own namespace, never planned
- archive: only in install mode, pending unless its hash is in the ledger
- loose file: pending if missing or its SHA-256 differs

Planning is read-only and deterministic. Running it twice without
intervening changes yields the same plan.
"""

from __future__ import annotations

import re
import threading
from dataclasses import dataclass, field
from pathlib import Path

import structlog

from realmsync.core.integrity import file_matches
from realmsync.core.ledger import ContentLedger
from realmsync.core.types import ContentManifest, ManifestEntry, UpdatePlan

logger = structlog.get_logger()

REALMLIST_PATTERN = r"^Data/[a-z]{2}[A-Z]{2}/realmlist\.wtf$"
SELF_UPDATE_NAMESPACE = "Launcher/"


def _default_patterns() -> list[re.Pattern[str]]:
    return [re.compile(REALMLIST_PATTERN)]


def _default_prefixes() -> list[str]:
    return [SELF_UPDATE_NAMESPACE]


@dataclass
class ExclusionRules:
    """Paths that are never planned and never reported as missing."""

    patterns: list[re.Pattern[str]] = field(default_factory=_default_patterns)
    reserved_prefixes: list[str] = field(default_factory=_default_prefixes)

    def matches(self, path: str) -> bool:
        normalized = path.replace("\\", "/")
        if any(p.match(normalized) for p in self.patterns):
            return True
        lowered = normalized.lower()
        return any(lowered.startswith(prefix.lower()) for prefix in self.reserved_prefixes)


class DiffPlanner:
    """Computes the ordered set of manifest entries requiring action.

    Args:
        install_dir: Installation root
        ledger: Ledger of applied archive hashes
        rules: Exclusion rules, defaults to the realmlist and launcher rules
    """

    def __init__(
        self,
        install_dir: Path,
        ledger: ContentLedger,
        rules: ExclusionRules | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self.install_dir = install_dir
        self.ledger = ledger
        self.rules = rules or ExclusionRules()
        self.cancel_event = cancel_event

    def is_excluded(self, entry: ManifestEntry) -> bool:
        return self.rules.matches(entry.path)

    def local_path(self, entry: ManifestEntry) -> Path:
        return self.install_dir / entry.path

    def needs_action(self, entry: ManifestEntry, install_mode: bool) -> bool:
        """Decide whether a single entry is stale."""
        if self.is_excluded(entry):
            return False

        if entry.is_archive:
            # Archives are install-time payloads, not incremental patches
            if not install_mode:
                return False
            return not self.ledger.has_applied(entry.content_hash)

        return not file_matches(self.local_path(entry), entry.content_hash, self.cancel_event)

    def plan(self, manifest: ContentManifest, install_mode: bool = False) -> UpdatePlan:
        """Compute the update plan for a manifest.

        Args:
            manifest: Freshly fetched content manifest
            install_mode: Consider archive packages when True

        Returns:
            UpdatePlan with pending entries in manifest order
        """
        pending = [e for e in manifest.entries if self.needs_action(e, install_mode)]

        logger.info(
            "update_plan_computed",
            total=len(manifest.entries),
            pending=len(pending),
            install_mode=install_mode,
        )
        return UpdatePlan(pending_entries=pending)
