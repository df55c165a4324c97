"""Local snapshot history for configured text files."""

from .constants import PERSONAHUB_VERSION as __version__
from .engine import SnapshotEngine

__all__ = ["SnapshotEngine", "__version__"]
