"""Working-directory scan producing the tracked file set."""

from pathlib import Path
from typing import List
import logging
import os

from .core import TrackedFile
from .errors import PathTraversalError, SnapshotIOError
from .hashing import compute_file_hash
from .patterns import TrackingSpec
from .utils import validate_path

logger = logging.getLogger(__name__)


def scan_tracked_files(root: Path, spec: TrackingSpec) -> List[TrackedFile]:
    """Scan the working directory and return its tracked files.

    This is the expensive operation - it hashes every tracked file. Nothing
    is cached between calls.

    Args:
        root: Working directory
        spec: Include/exclude rules

    Returns:
        Tracked files sorted by relative POSIX path (plain string order)

    Raises:
        SnapshotIOError: If a tracked file cannot be read
    """
    root = root.resolve()
    files = []

    for dirpath, dirnames, filenames in os.walk(root):
        rel_dir = Path(dirpath).relative_to(root).as_posix()
        if rel_dir == ".":
            rel_dir = ""

        # Prune in place so os.walk never descends into excluded directories
        dirnames[:] = sorted(
            d for d in dirnames
            if spec.should_traverse(f"{rel_dir}/{d}" if rel_dir else d)
        )

        for name in filenames:
            relpath = f"{rel_dir}/{name}" if rel_dir else name
            if not spec.is_tracked(relpath):
                continue

            try:
                abs_path = validate_path(root, relpath)
            except PathTraversalError:
                logger.warning("Skipping %s: symlink points outside %s", relpath, root)
                continue

            # Vanished since listing, or a symlink to a directory
            if not abs_path.is_file():
                continue

            try:
                files.append(TrackedFile(
                    absolute_path=abs_path,
                    relative_path=relpath,
                    size_bytes=abs_path.stat().st_size,
                    content_hash=compute_file_hash(abs_path),
                ))
            except OSError as e:
                raise SnapshotIOError("read", abs_path, str(e)) from e

    files.sort(key=lambda f: f.relative_path)
    logger.debug("Scanned %d tracked files under %s", len(files), root)
    return files
