"""Snapshot engine: create, compare and restore snapshots of tracked files.

The engine owns every invariant of the store:

- The content directory ``snapshots/<aggregate_hash>/`` exists exactly when
  at least one metadata row carries that hash. Directories are created
  before their row is committed and removed if the commit never happens.
  Once committed, a content directory's files are never rewritten; later
  rows with the same hash share it as-is.
- Every path taken from scan results or snapshot metadata goes through
  ``validate_path`` before it is read or written.
- Restore runs BackingUp -> Staging -> Verifying -> Committing -> CleaningUp.
  A failure before Committing leaves the working directory untouched.

Known limitation:
    A failure in the middle of Committing (disk full, permission denied)
    can leave some files restored and others not. Each file is replaced
    atomically, and the backup snapshot created in BackingUp holds the
    complete pre-restore state, so ``restore(backup_id)`` recovers.
"""

from __future__ import annotations
import contextlib
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterator, List, Optional

import portalocker

from .config import PersonaHubConfig, load_config, save_config
from .constants import LOCK_TIMEOUT
from .context import ProjectContext
from .core import (
    CleanupResult,
    CreateSnapshotResult,
    DiffResult,
    InitResult,
    ModifiedFile,
    RestorePreview,
    RestoreResult,
    Snapshot,
    SnapshotFile,
    TrackedFile,
)
from .database import MetadataStore
from .diffing import classify_changes, decode_text, render_diff
from .errors import (
    DigestMismatchError,
    NotInitializedError,
    SnapshotIOError,
    SnapshotNotFoundError,
    StagingError,
    StoreLockedError,
)
from .hashing import compute_aggregate_hash, compute_file_hash
from .patterns import TrackingSpec
from .scanner import scan_tracked_files
from .utils import (
    copy_file_atomic,
    copy_file_safe,
    parse_iso_timestamp,
    remove_tree,
    validate_path,
)

logger = logging.getLogger(__name__)


class SnapshotEngine:
    """Snapshot history for one working directory.

    Each engine owns its metadata store handle and configuration. Both are
    loaded on first use; call ``close()`` (or use the engine as a context
    manager) to release the database connection.

    Example:
        >>> with SnapshotEngine(Path("~/persona").expanduser()) as engine:
        ...     engine.create_snapshot("Before rewrite")
        ...     engine.restore(1)
    """

    def __init__(
        self,
        root: Path,
        store: Optional[MetadataStore] = None,
        config: Optional[PersonaHubConfig] = None,
    ):
        """Create an engine for a working directory.

        Args:
            root: Working directory holding the tracked files
            store: Pre-opened metadata store (opened lazily if None)
            config: Tracking configuration (loaded lazily if None)
        """
        self.ctx = ProjectContext(root)
        self._store = store
        self._config = config

    # ---- Resource management ------------------------------------------------

    @property
    def store(self) -> MetadataStore:
        """Get the metadata store, opening it on first use."""
        if self._store is None:
            self._store = MetadataStore(self.ctx.db_path)
        return self._store

    @property
    def config(self) -> PersonaHubConfig:
        """Get the tracking configuration, loading it on first use."""
        if self._config is None:
            self._config = load_config(self.ctx.config_path)
        return self._config

    def close(self) -> None:
        """Release the metadata store connection."""
        if self._store is not None:
            self._store.close()
            self._store = None

    def __enter__(self) -> "SnapshotEngine":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @contextlib.contextmanager
    def _writer_lock(self) -> Iterator[None]:
        """Hold the store's exclusive writer lock.

        Raises:
            StoreLockedError: If another process holds the lock
        """
        lock = portalocker.Lock(str(self.ctx.lock_path), "a", timeout=LOCK_TIMEOUT)
        try:
            lock.acquire()
        except portalocker.LockException as e:
            raise StoreLockedError(self.ctx.lock_path) from e
        try:
            yield
        finally:
            lock.release()

    # ---- Initialization -----------------------------------------------------

    def is_initialized(self) -> bool:
        return self.ctx.is_initialized()

    def ensure_initialized(self) -> None:
        """Raise NotInitializedError unless the store exists."""
        if not self.is_initialized():
            raise NotInitializedError(self.ctx.root)

    def init(self) -> InitResult:
        """Create the store layout, default config and database.

        An existing config file is kept.

        Returns:
            InitResult with the number of files currently tracked
        """
        self.ctx.snapshots_dir.mkdir(parents=True, exist_ok=True)

        if self.ctx.config_path.exists():
            self._config = load_config(self.ctx.config_path)
        else:
            self._config = self._config or PersonaHubConfig()
            save_config(self._config, self.ctx.config_path)

        # Opening the store creates the schema
        _ = self.store

        files = self._scan()
        logger.info("Initialized store in %s (%d tracked files)", self.ctx.storage_dir, len(files))
        return InitResult(file_count=len(files))

    # ---- Helpers ------------------------------------------------------------

    def _scan(self) -> List[TrackedFile]:
        return scan_tracked_files(self.ctx.root, TrackingSpec.from_config(self.config))

    def _require_snapshot(self, snapshot_id: int) -> Snapshot:
        snapshot = self.store.get_snapshot(snapshot_id)
        if snapshot is None:
            raise SnapshotNotFoundError(snapshot_id)
        return snapshot

    def _content_dir(self, aggregate_hash: str) -> Path:
        return validate_path(self.ctx.snapshots_dir, aggregate_hash)

    def _read_snapshot_file(self, snapshot: Snapshot, rel_path: str) -> bytes:
        path = validate_path(self._content_dir(snapshot.aggregate_hash), rel_path)
        try:
            return path.read_bytes()
        except OSError as e:
            raise SnapshotIOError("read", path, str(e)) from e

    def _read_live_file(self, rel_path: str) -> bytes:
        path = validate_path(self.ctx.root, rel_path)
        try:
            return path.read_bytes()
        except OSError as e:
            raise SnapshotIOError("read", path, str(e)) from e

    # ---- Create -------------------------------------------------------------

    def create_snapshot(
        self,
        message: Optional[str],
        is_auto: bool = False,
        is_restore_backup: bool = False,
    ) -> CreateSnapshotResult:
        """Capture the current tracked files as a snapshot.

        A regular snapshot of the state recorded by the latest snapshot
        returns that snapshot (``reused=True``) instead of adding a
        duplicate. Any other capture, including a return to an older state,
        is recorded as a new snapshot; captures of an already stored state
        share its content directory without copying. Restore backups are
        always recorded as new snapshots.

        Args:
            message: Snapshot message
            is_auto: Created by an automated save
            is_restore_backup: Pre-image captured by restore

        Returns:
            CreateSnapshotResult describing the new or reused snapshot

        Raises:
            NotInitializedError: If the store does not exist
            PathTraversalError: If a tracked path escapes its base directory
            SnapshotIOError: If a file cannot be copied
            DigestMismatchError: If a file changed while it was being copied
        """
        self.ensure_initialized()
        with self._writer_lock():
            return self._create(message, is_auto, is_restore_backup)

    def _create(self, message: Optional[str], is_auto: bool, is_restore_backup: bool) -> CreateSnapshotResult:
        files = self._scan()
        aggregate_hash = compute_aggregate_hash(files)
        total_size = sum(f.size_bytes for f in files)

        if not is_restore_backup:
            latest = self.store.get_latest_snapshot()
            if (
                latest is not None
                and not latest.is_restore_backup
                and latest.aggregate_hash == aggregate_hash
            ):
                logger.info(
                    "State unchanged since snapshot #%d (%s); reusing it", latest.id, aggregate_hash
                )
                return CreateSnapshotResult(
                    id=latest.id,
                    aggregate_hash=latest.aggregate_hash,
                    message=latest.message,
                    file_count=latest.file_count,
                    total_size_bytes=latest.total_size_bytes,
                    reused=True,
                )

        content_dir = self._content_dir(aggregate_hash)
        # Rows sharing a hash share one directory; its files are never rewritten
        shared = self.store.count_snapshots_with_hash(aggregate_hash) > 0 and content_dir.is_dir()
        if shared:
            logger.debug("Content for %s already stored; sharing %s", aggregate_hash, content_dir)
        elif content_dir.exists():
            # Left behind by an interrupted create; no row refers to it
            logger.debug("Removing orphaned content directory %s", content_dir)
            remove_tree(content_dir)

        try:
            if not shared:
                content_dir.mkdir(parents=True)
                for f in files:
                    src = validate_path(self.ctx.root, f.relative_path)
                    dest = validate_path(content_dir, f.relative_path)
                    copy_file_safe(src, dest)
                    # The live file may have changed since it was scanned
                    actual = compute_file_hash(dest)
                    if actual != f.content_hash:
                        raise DigestMismatchError(f.relative_path, f.content_hash, actual)

            snapshot_id = self.store.insert_snapshot(
                aggregate_hash=aggregate_hash,
                message=message,
                files=files,
                is_auto=is_auto,
                is_restore_backup=is_restore_backup,
            )
        except Exception:
            if not shared:
                remove_tree(content_dir)
            raise

        logger.info("Created snapshot #%d (%s, %d files)", snapshot_id, aggregate_hash, len(files))
        return CreateSnapshotResult(
            id=snapshot_id,
            aggregate_hash=aggregate_hash,
            message=message,
            file_count=len(files),
            total_size_bytes=total_size,
        )

    # ---- Queries ------------------------------------------------------------

    def has_changes(self) -> bool:
        """Check whether the live state differs from the latest snapshot.

        Returns:
            True if there is no snapshot yet or the aggregate hashes differ
        """
        self.ensure_initialized()
        latest = self.store.get_latest_snapshot()
        if latest is None:
            return True
        return compute_aggregate_hash(self._scan()) != latest.aggregate_hash

    def list_snapshots(self, limit: Optional[int] = None) -> List[Snapshot]:
        """List snapshots, newest first."""
        self.ensure_initialized()
        return self.store.list_snapshots(limit)

    def get_snapshot(self, snapshot_id: int) -> Optional[Snapshot]:
        self.ensure_initialized()
        return self.store.get_snapshot(snapshot_id)

    def get_snapshot_files(self, snapshot_id: int) -> List[SnapshotFile]:
        """Get the files recorded in a snapshot.

        Raises:
            SnapshotNotFoundError: If the snapshot does not exist
        """
        self.ensure_initialized()
        self._require_snapshot(snapshot_id)
        return self.store.get_files_for_snapshot(snapshot_id)

    # ---- Diff ---------------------------------------------------------------

    def diff(self, base_id: int, target_id: Optional[int] = None) -> DiffResult:
        """Compare a snapshot with another snapshot or the working directory.

        Args:
            base_id: Snapshot on the "old" side
            target_id: Snapshot on the "new" side; None compares against the
                live working directory

        Returns:
            DiffResult with added, removed and modified paths

        Raises:
            SnapshotNotFoundError: If either snapshot does not exist
        """
        self.ensure_initialized()
        base = self._require_snapshot(base_id)
        base_files = {f.path: f.content_hash for f in self.store.get_files_for_snapshot(base_id)}

        if target_id is not None:
            target = self._require_snapshot(target_id)
            target_files = {f.path: f.content_hash for f in self.store.get_files_for_snapshot(target_id)}

            def read_target(rel_path: str) -> bytes:
                return self._read_snapshot_file(target, rel_path)
        else:
            target_files = {f.relative_path: f.content_hash for f in self._scan()}
            read_target = self._read_live_file

        added, removed, modified_paths = classify_changes(base_files, target_files)

        modified = []
        for rel_path in modified_paths:
            diff_text, changed = render_diff(
                decode_text(self._read_snapshot_file(base, rel_path)),
                decode_text(read_target(rel_path)),
                rel_path,
            )
            modified.append(ModifiedFile(path=rel_path, changed_line_count=changed, diff_text=diff_text))

        logger.debug(
            "Diff #%d -> %s: %d added, %d removed, %d modified",
            base_id, f"#{target_id}" if target_id is not None else "working directory",
            len(added), len(removed), len(modified),
        )
        return DiffResult(added=added, removed=removed, modified=modified)

    # ---- Restore ------------------------------------------------------------

    def get_restore_preview(self, snapshot_id: int) -> RestorePreview:
        """Describe what restoring a snapshot would do, without doing it.

        Raises:
            SnapshotNotFoundError: If the snapshot does not exist
        """
        self.ensure_initialized()
        self._require_snapshot(snapshot_id)

        snapshot_paths = [f.path for f in self.store.get_files_for_snapshot(snapshot_id)]
        live_paths = [f.relative_path for f in self._scan()]
        snapshot_set = set(snapshot_paths)
        live_set = set(live_paths)

        return RestorePreview(
            overwrite=[p for p in snapshot_paths if p in live_set],
            restore=[p for p in snapshot_paths if p not in live_set],
            remove=[p for p in live_paths if p not in snapshot_set],
        )

    def restore(self, snapshot_id: int) -> RestoreResult:
        """Restore the working directory to a snapshot.

        A backup snapshot of the current state is always created first.
        Files are staged and verified before any live file is touched. Live
        files not in the snapshot are left in place.

        Args:
            snapshot_id: Snapshot to restore

        Returns:
            RestoreResult with the backup snapshot id

        Raises:
            SnapshotNotFoundError: If the snapshot does not exist
            StagingError: If a file could not be staged (nothing applied)
            DigestMismatchError: If a staged file is corrupted (nothing applied)
            SnapshotIOError: If copying fails
        """
        self.ensure_initialized()
        with self._writer_lock():
            snapshot = self._require_snapshot(snapshot_id)

            # BackingUp
            backup = self._create(
                f"Backup before restore to #{snapshot_id}",
                is_auto=False,
                is_restore_backup=True,
            )
            logger.debug("Restore #%d: backup snapshot #%d created", snapshot_id, backup.id)

            files = self.store.get_files_for_snapshot(snapshot_id)
            content_dir = self._content_dir(snapshot.aggregate_hash)
            staging_dir = self.ctx.staging_dir

            try:
                # Staging
                remove_tree(staging_dir)
                staging_dir.mkdir(parents=True)
                for f in files:
                    copy_file_safe(
                        validate_path(content_dir, f.path),
                        validate_path(staging_dir, f.path),
                    )
                logger.debug("Restore #%d: staged %d files", snapshot_id, len(files))

                # Verifying
                plan = []
                for f in files:
                    staged = validate_path(staging_dir, f.path)
                    if not staged.is_file():
                        raise StagingError(f.path)
                    actual = compute_file_hash(staged)
                    if actual != f.content_hash:
                        raise DigestMismatchError(f.path, f.content_hash, actual)
                    # Replace a live symlink itself rather than writing through it
                    dest = validate_path(self.ctx.root, f.path, follow_symlinks=False)
                    plan.append((staged, dest))
            except Exception:
                remove_tree(staging_dir)
                logger.debug("Restore #%d aborted before commit; working directory untouched", snapshot_id)
                raise

            try:
                # Committing
                for staged, dest in plan:
                    copy_file_atomic(staged, dest)
            except Exception:
                logger.warning(
                    "Restore #%d failed while committing; recover with restore of backup #%d",
                    snapshot_id, backup.id,
                )
                raise
            finally:
                # CleaningUp
                remove_tree(staging_dir)

        logger.info("Restored snapshot #%d (%d files, backup #%d)", snapshot_id, len(files), backup.id)
        return RestoreResult(backup_id=backup.id, restored_file_count=len(files))

    # ---- Retention ----------------------------------------------------------

    def delete_snapshot(self, snapshot_id: int) -> None:
        """Delete a snapshot and, if no other snapshot shares it, its content.

        Raises:
            SnapshotNotFoundError: If the snapshot does not exist
        """
        self.ensure_initialized()
        with self._writer_lock():
            self._delete(self._require_snapshot(snapshot_id))

    def _delete(self, snapshot: Snapshot) -> None:
        # Row first: a crash in between leaves an unreferenced directory,
        # which the next create of that hash cleans up
        self.store.delete_snapshot(snapshot.id)
        if self.store.count_snapshots_with_hash(snapshot.aggregate_hash) == 0:
            remove_tree(self._content_dir(snapshot.aggregate_hash))
        logger.debug("Deleted snapshot #%d (%s)", snapshot.id, snapshot.aggregate_hash)

    def cleanup(self, dry_run: bool = False, now: Optional[datetime] = None) -> CleanupResult:
        """Delete snapshots that exceed the configured retention policy.

        The newest ``min_snapshots`` snapshots are always kept. Older ones are
        deleted once older than ``auto_snapshot_days`` (automatic saves) or
        ``manual_snapshot_days`` (everything else).

        Args:
            dry_run: Report what would be deleted without deleting
            now: Reference time (defaults to the current UTC time)

        Returns:
            CleanupResult with deleted ids and the number kept
        """
        self.ensure_initialized()
        policy = self.config.retention
        now = now or datetime.now(timezone.utc)

        with self._writer_lock():
            snapshots = self.store.list_snapshots()
            expired = []
            for index, snapshot in enumerate(snapshots):
                if index < policy.min_snapshots:
                    continue
                max_age = timedelta(
                    days=policy.auto_snapshot_days if snapshot.is_auto else policy.manual_snapshot_days
                )
                if now - parse_iso_timestamp(snapshot.created_at) > max_age:
                    expired.append(snapshot)

            if not dry_run:
                for snapshot in expired:
                    self._delete(snapshot)

        logger.info(
            "Cleanup %s %d of %d snapshots",
            "would delete" if dry_run else "deleted", len(expired), len(snapshots),
        )
        return CleanupResult(
            deleted=[s.id for s in expired],
            kept=len(snapshots) - len(expired),
            dry_run=dry_run,
        )
