"""Utility functions for personahub."""

from datetime import datetime, timezone
from pathlib import Path
from typing import Union
import contextlib
import logging
import os
import shutil
import tempfile

from .errors import PathTraversalError, SnapshotIOError

logger = logging.getLogger(__name__)


# ============= Path Safety =============

def validate_path(
    base_dir: Union[str, Path],
    rel_path: Union[str, Path],
    follow_symlinks: bool = True,
) -> Path:
    """Resolve a relative path and require it to stay inside base_dir.

    Args:
        base_dir: Directory the path must stay within
        rel_path: Path drawn from snapshot metadata or scan results
        follow_symlinks: Resolve the final component too. Write destinations
            pass False so a symlink there is replaced, not written through.

    Returns:
        Resolved absolute path, equal to base_dir or strictly below it

    Raises:
        PathTraversalError: If the path escapes base_dir via ``..``, an
            absolute override, or a symlink
    """
    base_resolved = Path(base_dir).resolve()
    if follow_symlinks:
        target = (base_resolved / rel_path).resolve()
    else:
        joined = Path(os.path.normpath(base_resolved / rel_path))
        target = joined.parent.resolve() / joined.name

    try:
        target.relative_to(base_resolved)
    except ValueError:
        raise PathTraversalError(base_resolved, str(rel_path)) from None

    return target


# ============= File Copying =============

def _fsync_dir(path: Path) -> None:
    """Fsync a directory so a rename inside it is durable.

    Best-effort: Windows and some filesystems don't support directory fsync.
    """
    try:
        flags = os.O_RDONLY
        if hasattr(os, "O_DIRECTORY"):
            flags |= os.O_DIRECTORY

        fd = os.open(str(path), flags)
        try:
            os.fsync(fd)
        finally:
            os.close(fd)
    except OSError:
        logger.debug("Directory fsync not supported for %s", path)


def copy_file_safe(src: Path, dest: Path) -> None:
    """Copy a file, creating destination directories as needed.

    Raises:
        SnapshotIOError: If the copy fails
    """
    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(src, dest)
    except OSError as e:
        raise SnapshotIOError("copy", src, str(e)) from e


def copy_file_atomic(src: Path, dest: Path) -> None:
    """Copy a file so the destination is either fully old or fully new.

    Copies to a temp file in the destination directory, fsyncs it, then
    promotes it with ``os.replace``. Works across storage devices since the
    source is never moved.

    Raises:
        SnapshotIOError: If the copy fails; no temp file is left behind
    """
    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{dest.name}.tmp-", dir=str(dest.parent))
        os.close(fd)
    except OSError as e:
        raise SnapshotIOError("write", dest, str(e)) from e

    tmp = Path(tmp_name)
    try:
        shutil.copy2(src, tmp)
        with open(tmp, "r+b") as f:
            os.fsync(f.fileno())
        os.replace(tmp, dest)
    except OSError as e:
        with contextlib.suppress(OSError):
            tmp.unlink()
        raise SnapshotIOError("write", dest, str(e)) from e

    _fsync_dir(dest.parent)


def atomic_write_text(path: Path, text: str) -> None:
    """Atomically write text to file with crash safety.

    1. Writes to temp file with fsync to ensure content is on disk
    2. Atomic rename to target path (appears all-at-once)
    3. Fsync parent directory to ensure rename is durable

    Args:
        path: Target file path
        text: Text content to write
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    with tempfile.NamedTemporaryFile(
        mode="w",
        delete=False,
        dir=path.parent,
        prefix=f".{path.name}.tmp-",
        suffix="",
        encoding="utf-8",
    ) as f:
        f.write(text)
        f.flush()
        os.fsync(f.fileno())
        tmp = Path(f.name)

    try:
        os.replace(tmp, path)
    except OSError:
        tmp.unlink(missing_ok=True)
        raise

    _fsync_dir(path.parent)


def remove_tree(path: Path) -> None:
    """Remove a directory tree if it exists."""
    if path.exists():
        shutil.rmtree(path)


# ============= Formatting =============

def humanize_size(size: float) -> str:
    """Convert bytes to human-readable format."""
    if size < 1024:
        return f"{int(size)} B"
    size /= 1024
    for unit in ["KB", "MB", "GB"]:
        if size < 1024.:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TB"


def get_iso_timestamp() -> str:
    """Get current UTC timestamp in ISO 8601 format with microseconds."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def parse_iso_timestamp(iso_string: str) -> datetime:
    """Parse a timestamp written by get_iso_timestamp into an aware datetime."""
    dt = datetime.fromisoformat(iso_string.rstrip("Z"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_iso_date(iso_string: str) -> str:
    """Render a stored UTC timestamp as local time for display.

    Examples:
        "2025-08-26T02:51:17.317839Z" -> "2025-08-26 04:51" (in UTC+2)
    """
    try:
        return parse_iso_timestamp(iso_string).astimezone().strftime("%Y-%m-%d %H:%M")
    except ValueError:
        return iso_string


def truncate(text: str, length: int) -> str:
    """Shorten text to length characters, marking the cut with an ellipsis."""
    if len(text) <= length:
        return text
    return text[: length - 1] + "…"
