"""Diff computation logic - classification and unified diff rendering."""

from difflib import unified_diff
from typing import Dict, List, Tuple


def classify_changes(
    base: Dict[str, str],
    target: Dict[str, str],
) -> Tuple[List[str], List[str], List[str]]:
    """Classify paths between two path -> content hash maps.

    Args:
        base: Paths and hashes of the base snapshot.
        target: Paths and hashes of the target state.

    Returns:
        (added, removed, modified) path lists. Paths with equal hashes on
        both sides are omitted.

    Note:
        Order follows the maps' insertion order: added and modified in
        target order, removed in base order.
    """
    added = []
    modified = []
    for path, digest in target.items():
        base_digest = base.get(path)
        if base_digest is None:
            added.append(path)
        elif base_digest != digest:
            modified.append(path)

    removed = [path for path in base if path not in target]
    return added, removed, modified


def decode_text(content: bytes) -> str:
    """Decode file bytes for diffing; undecodable bytes become U+FFFD."""
    return content.decode("utf-8", errors="replace")


def render_diff(base_text: str, target_text: str, path: str = "file") -> Tuple[str, int]:
    """Render a unified diff between two texts.

    Args:
        base_text: Content on the snapshot side
        target_text: Content on the target side
        path: File path used in the ``---``/``+++`` headers

    Returns:
        (diff_text, changed_line_count) where the count is the number of
        ``+``/``-`` lines, not counting the two header lines
    """
    diff_lines = unified_diff(
        base_text.splitlines(keepends=True),
        target_text.splitlines(keepends=True),
        fromfile=f"a/{path}",
        tofile=f"b/{path}",
    )

    out = []
    changed = 0
    in_header = True
    for line in diff_lines:
        if in_header and line.startswith(("---", "+++")):
            out.append(line)
            continue
        in_header = False

        if line.startswith(("+", "-")):
            changed += 1
        if line.endswith("\n"):
            out.append(line)
        else:
            out.append(line + "\n\\ No newline at end of file\n")

    return "".join(out), changed
