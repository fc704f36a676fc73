"""Content integrity verification for downloaded files.

Every staleness and idempotency decision is made from a SHA-256 digest of
the exact file bytes. Digests are rendered as uppercase hex and compared
case-insensitively.
"""

from __future__ import annotations

import hashlib
import threading
from pathlib import Path

import structlog

from realmsync.core.errors import HashMismatchError, OperationCancelledError
from realmsync.core.utils import chunked_read, hashes_equal

logger = structlog.get_logger()

HASH_CHUNK_SIZE = 1 << 16


def sha256_file(path: Path, cancel_event: threading.Event | None = None) -> str:
    """Compute the SHA-256 of a file.

    Args:
        path: File to hash
        cancel_event: Checked between chunks

    Returns:
        Uppercase hex digest

    Raises:
        OperationCancelledError: If cancel_event is set while hashing
    """
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in chunked_read(f, HASH_CHUNK_SIZE):
            if cancel_event is not None and cancel_event.is_set():
                raise OperationCancelledError(f"Hashing cancelled: {path}")
            digest.update(chunk)
    return digest.hexdigest().upper()


def file_matches(
    path: Path,
    expected: str,
    cancel_event: threading.Event | None = None,
) -> bool:
    """Check whether a file exists and its digest equals expected."""
    if not path.is_file():
        return False
    return hashes_equal(sha256_file(path, cancel_event), expected)


def verify_file(
    path: Path,
    expected: str,
    cancel_event: threading.Event | None = None,
) -> str:
    """Verify a file against its expected SHA-256.

    Args:
        path: File to verify
        expected: Expected hex digest (any case)
        cancel_event: Checked between chunks

    Returns:
        The computed uppercase digest

    Raises:
        HashMismatchError: If the digest does not match
    """
    actual = sha256_file(path, cancel_event)
    if not hashes_equal(actual, expected):
        logger.debug("hash_verify_failed", path=str(path), expected=expected, actual=actual)
        raise HashMismatchError(
            f"SHA-256 mismatch for {path.name}: expected {expected.upper()}, got {actual}",
            expected=expected.upper(),
            actual=actual,
            path=str(path),
        )
    return actual
