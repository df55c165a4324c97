"""SQLite metadata store for snapshots and their files."""

from pathlib import Path
from typing import Iterable, List, Optional
import logging
import sqlite3

from .core import Snapshot, SnapshotFile
from .errors import ConstraintViolationError, SnapshotNotFoundError, StoreCorruptedError
from .utils import get_iso_timestamp

logger = logging.getLogger(__name__)


SCHEMA = """
    CREATE TABLE IF NOT EXISTS snapshots (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        hash TEXT NOT NULL,
        message TEXT,
        created_at TEXT NOT NULL,
        file_count INTEGER NOT NULL,
        total_size INTEGER NOT NULL,
        is_auto INTEGER NOT NULL DEFAULT 0,
        is_restore_backup INTEGER NOT NULL DEFAULT 0
    );

    CREATE TABLE IF NOT EXISTS snapshot_files (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        snapshot_id INTEGER NOT NULL,
        path TEXT NOT NULL,
        hash TEXT NOT NULL,
        size INTEGER NOT NULL,
        FOREIGN KEY (snapshot_id) REFERENCES snapshots(id) ON DELETE CASCADE
    );

    -- Rows with equal hashes share one content directory
    CREATE INDEX IF NOT EXISTS idx_snapshots_hash
        ON snapshots(hash);

    CREATE INDEX IF NOT EXISTS idx_snapshots_created_at
        ON snapshots(created_at DESC);

    CREATE INDEX IF NOT EXISTS idx_snapshot_files_snapshot_id
        ON snapshot_files(snapshot_id);
"""


def _row_to_snapshot(row: sqlite3.Row) -> Snapshot:
    return Snapshot(
        id=row["id"],
        aggregate_hash=row["hash"],
        message=row["message"],
        created_at=row["created_at"],
        file_count=row["file_count"],
        total_size_bytes=row["total_size"],
        is_auto=bool(row["is_auto"]),
        is_restore_backup=bool(row["is_restore_backup"]),
    )


def _row_to_file(row: sqlite3.Row) -> SnapshotFile:
    return SnapshotFile(
        id=row["id"],
        snapshot_id=row["snapshot_id"],
        path=row["path"],
        content_hash=row["hash"],
        size_bytes=row["size"],
    )


class MetadataStore:
    """Transactional store of snapshot rows and per-file rows.

    Holds a single connection for its lifetime. Every write runs inside one
    transaction, so a snapshot row is never visible without its complete
    file set.

    Integrity:
        ``PRAGMA integrity_check`` runs once when the store is opened. A
        corrupted database raises StoreCorruptedError and must not be used.
    """

    def __init__(self, db_path: Path):
        """Open (creating if needed) the database at db_path.

        Args:
            db_path: Path to SQLite database file

        Raises:
            StoreCorruptedError: If the file is not a healthy SQLite database
        """
        self.db_path = db_path
        self._conn = sqlite3.connect(str(db_path))
        self._conn.row_factory = sqlite3.Row
        try:
            self._conn.execute("PRAGMA journal_mode = WAL")
            self._conn.execute("PRAGMA synchronous = FULL")
            self._conn.execute("PRAGMA foreign_keys = ON")
            self._check_integrity()
            self._migrate()
        except sqlite3.DatabaseError as e:
            self._conn.close()
            raise StoreCorruptedError(db_path, str(e)) from e
        except StoreCorruptedError:
            self._conn.close()
            raise
        logger.debug("Opened metadata store %s", db_path)

    def _migrate(self) -> None:
        """Initialize SQLite schema."""
        with self._conn:
            self._conn.executescript(SCHEMA)

    def _check_integrity(self) -> None:
        row = self._conn.execute("PRAGMA integrity_check").fetchone()
        result = row[0] if row else "no result"
        if result != "ok":
            raise StoreCorruptedError(self.db_path, result)

    def close(self) -> None:
        """Close the underlying connection."""
        self._conn.close()

    # ---- Writes -------------------------------------------------------------

    def insert_snapshot(
        self,
        aggregate_hash: str,
        message: Optional[str],
        files: Iterable,
        is_auto: bool = False,
        is_restore_backup: bool = False,
        created_at: Optional[str] = None,
    ) -> int:
        """Insert a snapshot row and all of its file rows atomically.

        Args:
            aggregate_hash: Aggregate hash of the captured state
            message: Snapshot message
            files: Objects with ``relative_path``, ``content_hash`` and
                ``size_bytes`` (TrackedFile)
            is_auto: Created by an automated save
            is_restore_backup: Created as the pre-image of a restore
            created_at: Override timestamp (UTC ISO 8601)

        Returns:
            Generated snapshot id

        Raises:
            ConstraintViolationError: If a regular snapshot would repeat the
                state of the latest snapshot, itself a regular snapshot
        """
        files = list(files)
        with self._conn:
            if not is_restore_backup:
                latest = self._conn.execute(
                    "SELECT hash, is_restore_backup FROM snapshots"
                    " ORDER BY created_at DESC, id DESC LIMIT 1"
                ).fetchone()
                if latest and latest["hash"] == aggregate_hash and not latest["is_restore_backup"]:
                    raise ConstraintViolationError(aggregate_hash)

            cursor = self._conn.execute(
                """
                INSERT INTO snapshots
                    (hash, message, created_at, file_count, total_size, is_auto, is_restore_backup)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    aggregate_hash,
                    message,
                    created_at or get_iso_timestamp(),
                    len(files),
                    sum(f.size_bytes for f in files),
                    int(is_auto),
                    int(is_restore_backup),
                ),
            )
            snapshot_id = cursor.lastrowid
            self._insert_file_rows(snapshot_id, files)

        logger.debug("Inserted snapshot #%d (%s, %d files)", snapshot_id, aggregate_hash, len(files))
        return snapshot_id

    def insert_files(self, snapshot_id: int, files: Iterable) -> None:
        """Insert file rows for an existing snapshot in one transaction.

        Raises:
            SnapshotNotFoundError: If snapshot_id does not exist
        """
        if self.get_snapshot(snapshot_id) is None:
            raise SnapshotNotFoundError(snapshot_id)
        with self._conn:
            self._insert_file_rows(snapshot_id, list(files))

    def _insert_file_rows(self, snapshot_id: int, files: List) -> None:
        self._conn.executemany(
            "INSERT INTO snapshot_files (snapshot_id, path, hash, size) VALUES (?, ?, ?, ?)",
            [(snapshot_id, f.relative_path, f.content_hash, f.size_bytes) for f in files],
        )

    def delete_snapshot(self, snapshot_id: int) -> bool:
        """Delete a snapshot; its file rows go with it.

        Returns:
            True if a row was deleted
        """
        with self._conn:
            cursor = self._conn.execute("DELETE FROM snapshots WHERE id = ?", (snapshot_id,))
        return cursor.rowcount > 0

    # ---- Reads --------------------------------------------------------------

    def get_snapshot(self, snapshot_id: int) -> Optional[Snapshot]:
        row = self._conn.execute(
            "SELECT * FROM snapshots WHERE id = ?", (snapshot_id,)
        ).fetchone()
        return _row_to_snapshot(row) if row else None

    def get_snapshot_by_hash(self, aggregate_hash: str, include_backups: bool = False) -> Optional[Snapshot]:
        """Look up the newest snapshot with the given aggregate hash.

        Args:
            aggregate_hash: Hash to look for
            include_backups: Also consider restore backups
        """
        sql = "SELECT * FROM snapshots WHERE hash = ?"
        if not include_backups:
            sql += " AND is_restore_backup = 0"
        sql += " ORDER BY created_at DESC, id DESC LIMIT 1"
        row = self._conn.execute(sql, (aggregate_hash,)).fetchone()
        return _row_to_snapshot(row) if row else None

    def list_snapshots(self, limit: Optional[int] = None) -> List[Snapshot]:
        """List snapshots, newest first."""
        sql = "SELECT * FROM snapshots ORDER BY created_at DESC, id DESC"
        params: tuple = ()
        if limit is not None:
            sql += " LIMIT ?"
            params = (limit,)
        return [_row_to_snapshot(row) for row in self._conn.execute(sql, params)]

    def get_latest_snapshot(self) -> Optional[Snapshot]:
        snapshots = self.list_snapshots(limit=1)
        return snapshots[0] if snapshots else None

    def get_files_for_snapshot(self, snapshot_id: int) -> List[SnapshotFile]:
        """Get a snapshot's file rows in insertion order."""
        cursor = self._conn.execute(
            "SELECT * FROM snapshot_files WHERE snapshot_id = ? ORDER BY id", (snapshot_id,)
        )
        return [_row_to_file(row) for row in cursor]

    def count_snapshots(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM snapshots").fetchone()[0]

    def count_snapshots_with_hash(self, aggregate_hash: str) -> int:
        """Count rows sharing a content directory."""
        return self._conn.execute(
            "SELECT COUNT(*) FROM snapshots WHERE hash = ?", (aggregate_hash,)
        ).fetchone()[0]
