"""Shared test fixtures and utilities."""

from pathlib import Path

import pytest

from personahub.engine import SnapshotEngine


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    """Create an empty working directory and chdir into it."""
    root = tmp_path / "persona"
    root.mkdir()
    monkeypatch.chdir(root)
    return root


@pytest.fixture
def write_file(workdir):
    """Factory fixture writing text files relative to the working directory."""
    def _write(rel_path: str, content: str = "test content") -> Path:
        path = workdir / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
        return path
    return _write


@pytest.fixture
def engine(workdir):
    """Initialized engine over the working directory."""
    eng = SnapshotEngine(workdir)
    eng.init()
    yield eng
    eng.close()


def read_tree(root: Path) -> dict:
    """Map every file under root (outside the store) to its text."""
    return {
        p.relative_to(root).as_posix(): p.read_text()
        for p in sorted(root.rglob("*"))
        if p.is_file() and ".personahub" not in p.relative_to(root).parts
    }
