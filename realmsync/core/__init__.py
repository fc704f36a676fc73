"""Core functionality for realmsync.

This module provides the sync engine used by every command:
- Configuration management
- Type definitions and error taxonomy
- Content ledger, diff planner, transfer engine and package installer
- Launcher self-update orchestration
"""

from realmsync.core.errors import (
    ExtractionError,
    FilesystemError,
    HashMismatchError,
    ManifestFetchError,
    OperationCancelledError,
    RealmSyncError,
    SelfUpdateVerificationError,
)
from realmsync.core.types import (
    ContentManifest,
    EntryResult,
    LauncherState,
    ManifestEntry,
    Outcome,
    SelfUpdateManifest,
    UpdatePlan,
)
from realmsync.core.utils import (
    build_file_url,
    canonical_hash,
    format_size,
    hashes_equal,
    normalize_relative_path,
    validate_hash_string,
)

__all__ = [
    # Errors
    "RealmSyncError",
    "ManifestFetchError",
    "HashMismatchError",
    "ExtractionError",
    "FilesystemError",
    "SelfUpdateVerificationError",
    "OperationCancelledError",
    # Types
    "ContentManifest",
    "ManifestEntry",
    "SelfUpdateManifest",
    "UpdatePlan",
    "EntryResult",
    "Outcome",
    "LauncherState",
    # Utils
    "build_file_url",
    "canonical_hash",
    "format_size",
    "hashes_equal",
    "normalize_relative_path",
    "validate_hash_string",
]
