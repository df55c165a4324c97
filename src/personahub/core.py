"""Core data models for personahub.

Snapshot Lifecycle:
-------------------
A snapshot is captured from the live working directory, stored as a full
copy of every tracked file under ``snapshots/<aggregate_hash>/`` and
described by one metadata row plus one row per file. Rows are never
mutated; they only disappear through retention cleanup.

Two captures of byte-identical tracked state produce the same aggregate
hash and therefore share one content directory.
"""

from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field

from .utils import humanize_size


# ============= File Tracking =============

class TrackedFile(BaseModel):
    """A file matched by the tracking configuration at scan time.

    Recomputed on every scan; never persisted directly.
    """

    absolute_path: Path
    relative_path: str  # POSIX, relative to the working directory
    size_bytes: int
    content_hash: str


# ============= Persisted Records =============

class Snapshot(BaseModel):
    """One point-in-time capture of the tracked files."""

    id: int
    aggregate_hash: str
    message: Optional[str] = None
    created_at: str  # UTC ISO 8601
    file_count: int
    total_size_bytes: int
    is_auto: bool = False
    is_restore_backup: bool = False


class SnapshotFile(BaseModel):
    """A single file recorded in a snapshot."""

    id: int
    snapshot_id: int
    path: str
    content_hash: str
    size_bytes: int


# ============= Operation Results =============

class InitResult(BaseModel):
    """Result of initializing a store."""

    file_count: int


class CreateSnapshotResult(BaseModel):
    """Result of a create operation."""

    id: int
    aggregate_hash: str
    message: Optional[str] = None
    file_count: int
    total_size_bytes: int
    reused: bool = False  # True when an identical earlier snapshot was returned

    def summary(self) -> str:
        """Get human-readable summary."""
        return f"{self.file_count} files, {humanize_size(self.total_size_bytes)}"


class ModifiedFile(BaseModel):
    """A path whose content differs between the two sides of a diff."""

    path: str
    changed_line_count: int
    diff_text: str


class DiffResult(BaseModel):
    """Three-way classification of a snapshot against a target state."""

    added: List[str] = Field(default_factory=list)
    removed: List[str] = Field(default_factory=list)
    modified: List[ModifiedFile] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        """Check if the two sides are identical."""
        return not (self.added or self.removed or self.modified)


class RestorePreview(BaseModel):
    """What a restore would do, computed without side effects.

    ``remove`` lists live files absent from the snapshot. Restore never
    deletes them; they are left in place as orphans.
    """

    overwrite: List[str] = Field(default_factory=list)
    remove: List[str] = Field(default_factory=list)
    restore: List[str] = Field(default_factory=list)


class RestoreResult(BaseModel):
    """Result of a completed restore."""

    backup_id: int
    restored_file_count: int


class CleanupResult(BaseModel):
    """Result of applying the retention policy."""

    deleted: List[int] = Field(default_factory=list)
    kept: int = 0
    dry_run: bool = False
