"""Custom exceptions for personahub.

This module defines typed exceptions for better error handling and clearer
error messages throughout the application.
"""


class PersonaHubError(RuntimeError):
    """Base class for all personahub errors."""
    pass


class NotInitializedError(PersonaHubError):
    """Operation requires an initialized store."""

    def __init__(self, root):
        self.root = root
        super().__init__(
            f"PersonaHub not initialized in {root}. Run 'personahub init' first."
        )


class SnapshotNotFoundError(PersonaHubError):
    """Referenced snapshot does not exist."""

    def __init__(self, snapshot_id):
        self.snapshot_id = snapshot_id
        super().__init__(f"Snapshot #{snapshot_id} not found")


class PathTraversalError(PersonaHubError, ValueError):
    """Resolved path escapes its base directory."""

    def __init__(self, base, rel_path):
        self.base = base
        self.rel_path = rel_path
        super().__init__(
            f"Invalid file path detected: {rel_path!r} escapes {base} (path traversal attempt)"
        )


# Integrity Errors
class IntegrityError(PersonaHubError):
    """Base class for data integrity errors."""
    pass


class StoreCorruptedError(IntegrityError):
    """Metadata store failed its integrity self-check."""

    def __init__(self, db_path, detail: str):
        self.db_path = db_path
        self.detail = detail
        super().__init__(
            f"Database integrity check failed for {db_path}: {detail}"
        )


class DigestMismatchError(IntegrityError):
    """File content hash doesn't match the recorded value."""

    def __init__(self, path: str, expected: str, actual: str):
        self.path = path
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Content hash verification failed for {path}\n"
            f"  Expected: {expected}\n"
            f"  Got:      {actual}\n"
            f"The snapshot copy may be corrupted or tampered with."
        )


class ConstraintViolationError(PersonaHubError):
    """Regular snapshot repeating the latest state, inserted outside the reuse path."""

    def __init__(self, aggregate_hash: str):
        self.aggregate_hash = aggregate_hash
        super().__init__(
            f"State {aggregate_hash} is already the latest snapshot"
        )


class SnapshotIOError(PersonaHubError):
    """File read, write or copy failed."""

    def __init__(self, action: str, path, reason: str):
        self.action = action
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to {action} {path}: {reason}")


class StagingError(SnapshotIOError):
    """A restore could not stage a file; the working directory is untouched."""

    def __init__(self, path: str):
        super().__init__("stage", path, "file missing from staging area")


class ConfigError(PersonaHubError):
    """Configuration file missing or invalid."""
    pass


class StoreLockedError(PersonaHubError):
    """Another process holds the store's writer lock."""

    def __init__(self, lock_path):
        self.lock_path = lock_path
        super().__init__(
            f"Store is locked by another personahub process ({lock_path})"
        )
