"""Realmsync - game client sync and launcher self-update tools.

This package keeps a local game installation in step with a remote,
manifest-declared set of files and keeps the launcher itself up to date.

Key modules:
- core: Sync engine (config, types, ledger, planner, transfers, self-update)
- commands: CLI command implementations
"""

__version__ = "0.1.0"
__author__ = "Realmsync Team"

# Re-export commonly used types
from realmsync.core.types import (
    ContentManifest,
    EntryResult,
    ManifestEntry,
    Outcome,
    SelfUpdateManifest,
    UpdatePlan,
)

__all__ = [
    "__version__",
    "__author__",
    "ContentManifest",
    "EntryResult",
    "ManifestEntry",
    "Outcome",
    "SelfUpdateManifest",
    "UpdatePlan",
]
