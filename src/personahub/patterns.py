"""Gitignore-style include/exclude matching for tracked files."""

from typing import Iterable

from pathspec import GitIgnoreSpec

from .constants import PERSONAHUB_DIR


class TrackingSpec:
    """Decides which project-relative paths are tracked.

    A file is tracked when it matches at least one include pattern and no
    exclude pattern. Both lists use gitignore syntax.
    """

    def __init__(self, include: Iterable[str], exclude: Iterable[str] = (), include_hidden: bool = False):
        """Compile include and exclude patterns.

        Args:
            include: Patterns selecting tracked files (e.g. ``**/*.md``)
            exclude: Patterns removing files or whole directories
            include_hidden: Track dot-files and descend into dot-directories
        """
        self.include_hidden = include_hidden
        self.include_spec = GitIgnoreSpec.from_lines(list(include))
        self.exclude_spec = GitIgnoreSpec.from_lines(list(exclude))

    @classmethod
    def from_config(cls, config) -> "TrackingSpec":
        """Build a spec from a PersonaHubConfig."""
        return cls(config.include, config.exclude, config.include_hidden)

    def _is_hidden(self, relpath: str) -> bool:
        return any(part.startswith(".") for part in relpath.split("/") if part)

    def is_tracked(self, relpath: str) -> bool:
        """Check if a project-relative POSIX file path is tracked.

        Args:
            relpath: Project-relative path in POSIX format (forward slashes)

        Returns:
            True if the path is included and not excluded
        """
        if not self.include_hidden and self._is_hidden(relpath):
            return False
        if not self.include_spec.match_file(relpath):
            return False
        return not self.exclude_spec.match_file(relpath)

    def should_traverse(self, dirpath: str) -> bool:
        """Check if a directory should be traversed during scanning.

        Excluded directories are pruned so their contents are never read.

        Args:
            dirpath: Project-relative directory path in POSIX format

        Returns:
            True if the directory should be traversed
        """
        # Always skip the private store
        if dirpath == PERSONAHUB_DIR or dirpath.startswith(PERSONAHUB_DIR + "/"):
            return False

        if not self.include_hidden and self._is_hidden(dirpath):
            return False

        # Add trailing slash to match directory patterns
        if not dirpath.endswith("/"):
            dirpath = dirpath + "/"

        return not self.exclude_spec.match_file(dirpath)
