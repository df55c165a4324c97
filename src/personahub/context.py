"""Project context for managing store paths and project discovery."""

from pathlib import Path
from typing import Optional

from .constants import (
    CONFIG_FILE,
    DATABASE_FILE,
    LOCK_FILE,
    PERSONAHUB_DIR,
    SNAPSHOTS_DIR,
    STAGING_DIR,
)
from .errors import NotInitializedError


class ProjectContext:
    """Resolves the private store layout under a working directory."""

    def __init__(self, root: Path):
        self.root = Path(root).resolve()

    @classmethod
    def discover(cls, start_path: Optional[Path] = None) -> "ProjectContext":
        """Walk up from start_path to the nearest initialized working directory.

        Raises:
            NotInitializedError: If no ancestor holds a store
        """
        start = (start_path or Path.cwd()).resolve()
        current = start

        while True:
            if (current / PERSONAHUB_DIR / DATABASE_FILE).exists():
                return cls(current)
            if current == current.parent:
                raise NotInitializedError(start)
            current = current.parent

    @property
    def storage_dir(self) -> Path:
        """Get the private store directory."""
        return self.root / PERSONAHUB_DIR

    @property
    def config_path(self) -> Path:
        return self.storage_dir / CONFIG_FILE

    @property
    def db_path(self) -> Path:
        return self.storage_dir / DATABASE_FILE

    @property
    def snapshots_dir(self) -> Path:
        """Get the content store root (one subdirectory per aggregate hash)."""
        return self.storage_dir / SNAPSHOTS_DIR

    @property
    def staging_dir(self) -> Path:
        """Get the transient restore staging directory."""
        return self.storage_dir / STAGING_DIR

    @property
    def lock_path(self) -> Path:
        return self.storage_dir / LOCK_FILE

    def is_initialized(self) -> bool:
        """Check whether the store and its database exist."""
        return self.storage_dir.is_dir() and self.db_path.exists()
