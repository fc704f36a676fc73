"""Shared utilities for realmsync."""

from __future__ import annotations

import re
from collections.abc import Iterator
from typing import BinaryIO

_HEX_RE = re.compile(r"^[0-9a-fA-F]+$")

SHA256_HEX_LENGTH = 64


def chunked_read(
    stream: BinaryIO,
    chunk_size: int = 8192
) -> Iterator[bytes]:
    """Read stream in chunks.

    Args:
        stream: Binary stream to read from
        chunk_size: Size of each chunk in bytes

    Yields:
        Data chunks as bytes

    Raises:
        ValueError: If chunk_size is not positive
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")

    while True:
        chunk = stream.read(chunk_size)
        if not chunk:
            break
        yield chunk


def format_size(size: int) -> str:
    """Format byte size as human-readable string.

    Args:
        size: Size in bytes

    Returns:
        Formatted string with appropriate unit (e.g., "1.5 MB")

    Example:
        >>> format_size(1024)
        '1.0 KB'
        >>> format_size(1536)
        '1.5 KB'
    """
    if size < 0:
        return "0 B"

    size_float = float(size)
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if size_float < 1024.0:
            if unit == "B":
                return f"{int(size_float)} {unit}"
            return f"{size_float:.1f} {unit}"
        size_float /= 1024.0
    return f"{size_float:.1f} PB"


def validate_hash_string(hash_str: str, length: int | None = None) -> bool:
    """Validate hex hash string.

    Args:
        hash_str: Hash string to validate
        length: Required number of hex characters, any length if None

    Returns:
        True if valid hex string, False otherwise

    Example:
        >>> validate_hash_string("deadbeef")
        True
        >>> validate_hash_string("deadbeef", length=64)
        False
    """
    if not hash_str or not _HEX_RE.match(hash_str):
        return False
    if length is not None and len(hash_str) != length:
        return False
    return len(hash_str) % 2 == 0


def canonical_hash(hash_str: str) -> str:
    """Canonicalize a SHA-256 hex digest to uppercase.

    Raises:
        ValueError: If the value is not a 64 character hex string
    """
    value = hash_str.strip()
    if not validate_hash_string(value, length=SHA256_HEX_LENGTH):
        raise ValueError(f"Invalid SHA-256 hex digest: {hash_str!r}")
    return value.upper()


def hashes_equal(a: str, b: str) -> bool:
    """Compare two hex digests case-insensitively."""
    return a.strip().upper() == b.strip().upper()


def normalize_relative_path(path: str) -> str:
    """Normalize a manifest path to a relative, forward-slash form.

    Raises:
        ValueError: If the path is empty, absolute or escapes its root

    Example:
        >>> normalize_relative_path("Data\\\\enUS\\\\realmlist.wtf")
        'Data/enUS/realmlist.wtf'
    """
    normalized = path.strip().replace("\\", "/")
    if not normalized or normalized.startswith("/") or re.match(r"^[A-Za-z]:", normalized):
        raise ValueError(f"Path must be relative: {path!r}")

    parts = [p for p in normalized.split("/") if p not in ("", ".")]
    if not parts or ".." in parts:
        raise ValueError(f"Path escapes install root: {path!r}")
    return "/".join(parts)


def build_file_url(base_url: str, relative_path: str) -> str:
    """Join a manifest base URL and an entry path.

    Example:
        >>> build_file_url("https://cdn.example.com/client", "Data/patch-A.MPQ")
        'https://cdn.example.com/client/Data/patch-A.MPQ'
    """
    base = base_url if base_url.endswith("/") else base_url + "/"
    return base + relative_path.replace("\\", "/").lstrip("/")


def safe_temp_name(relative_path: str, prefix: str = "AR_") -> str:
    """Flatten a relative path into a single file name."""
    return prefix + relative_path.replace("\\", "_").replace("/", "_")
