"""Error taxonomy for realmsync.

Attempt-level errors (manifest acquisition, self-update verification) are
raised. Per-entry errors are normally converted into ``EntryResult`` values
by the sync driver so one bad entry never aborts a whole sync.
"""

from __future__ import annotations


class RealmSyncError(Exception):
    """Base class for all realmsync errors."""


class ManifestFetchError(RealmSyncError):
    """Raised when a manifest cannot be fetched or parsed.

    Attributes:
        url: Manifest URL that failed
    """

    def __init__(self, message: str, *, url: str | None = None):
        self.url = url
        super().__init__(message)


class HashMismatchError(RealmSyncError):
    """Raised when content does not match its expected SHA-256.

    Attributes:
        expected: Expected digest (uppercase hex)
        actual: Computed digest (uppercase hex)
        path: File that was verified
    """

    def __init__(
        self,
        message: str,
        *,
        expected: str | None = None,
        actual: str | None = None,
        path: str | None = None,
    ):
        self.expected = expected
        self.actual = actual
        self.path = path
        super().__init__(message)


class ExtractionError(RealmSyncError):
    """Raised when an archive is corrupt or cannot be written out."""


class FilesystemError(RealmSyncError):
    """Raised on permission or disk-full failures while writing."""


class SelfUpdateVerificationError(RealmSyncError):
    """Raised when a downloaded launcher artifact fails verification."""


class OperationCancelledError(RealmSyncError):
    """Raised when the cancellation signal is observed mid-operation."""
