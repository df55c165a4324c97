"""Hashing utilities for deterministic snapshot identities.

Every fingerprint in personahub, per-file or aggregate, is a SHA-256 hex
digest truncated to ``HASH_LENGTH`` characters.
"""

from pathlib import Path
from typing import Iterable, Union
import hashlib

from .constants import HASH_LENGTH


def hash_content(content: Union[bytes, str]) -> str:
    """Hash in-memory content.

    Args:
        content: Bytes, or text encoded as UTF-8

    Returns:
        Truncated SHA-256 hex digest
    """
    if isinstance(content, str):
        content = content.encode("utf-8")
    return hashlib.sha256(content).hexdigest()[:HASH_LENGTH]


def compute_file_hash(path: Path) -> str:
    """Compute the truncated SHA-256 hash of file contents.

    Simple byte-for-byte hashing - any change invalidates the hash.

    Args:
        path: Path to file to hash

    Returns:
        Truncated SHA-256 hex digest
    """
    sha256 = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            sha256.update(chunk)
    return sha256.hexdigest()[:HASH_LENGTH]


def compute_aggregate_hash(files: Iterable) -> str:
    """Compute the aggregate hash of a tracked file set.

    Concatenates ``"{relative_path}:{content_hash}\\n"`` for every file and
    hashes the result. The input order is used as-is: callers pass the
    scanner's output, which is already sorted by relative path.

    Args:
        files: Objects with ``relative_path`` and ``content_hash`` attributes

    Returns:
        Truncated SHA-256 hex digest identifying the whole set

    Example:
        >>> files = scan_tracked_files(root, config)
        >>> snapshot_hash = compute_aggregate_hash(files)
    """
    h = hashlib.sha256()
    for f in files:
        h.update(f"{f.relative_path}:{f.content_hash}\n".encode("utf-8"))
    return h.hexdigest()[:HASH_LENGTH]


__all__ = [
    "hash_content",
    "compute_file_hash",
    "compute_aggregate_hash",
]
