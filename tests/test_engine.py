"""Tests for snapshot creation, queries and diffs."""

import portalocker
import pytest

from personahub.config import PersonaHubConfig, load_config, save_config
from personahub.engine import SnapshotEngine
from personahub.errors import (
    DigestMismatchError,
    NotInitializedError,
    PathTraversalError,
    SnapshotIOError,
    SnapshotNotFoundError,
    StoreLockedError,
)
from personahub.hashing import compute_aggregate_hash
from personahub.patterns import TrackingSpec
from personahub.scanner import scan_tracked_files


class TestInit:
    """Test store initialization."""

    def test_not_initialized(self, workdir):
        engine = SnapshotEngine(workdir)
        assert not engine.is_initialized()
        with pytest.raises(NotInitializedError):
            engine.create_snapshot("nope")
        with pytest.raises(NotInitializedError):
            engine.list_snapshots()

    def test_creates_layout(self, workdir, write_file):
        write_file("SOUL.md")
        write_file("script.py")

        with SnapshotEngine(workdir) as engine:
            result = engine.init()
            assert engine.is_initialized()

        assert result.file_count == 1
        store = workdir / ".personahub"
        assert (store / "config.yaml").is_file()
        assert (store / "history.db").is_file()
        assert (store / "snapshots").is_dir()

    def test_keeps_existing_config(self, workdir):
        with SnapshotEngine(workdir) as engine:
            engine.init()
        config_path = workdir / ".personahub" / "config.yaml"
        save_config(PersonaHubConfig(include=["*.txt"]), config_path)

        with SnapshotEngine(workdir) as engine:
            engine.init()
            assert engine.config.include == ["*.txt"]
        assert load_config(config_path).include == ["*.txt"]


class TestCreateSnapshot:
    """Test capturing the working directory."""

    def test_first_snapshot(self, engine, workdir, write_file):
        write_file("SOUL.md", "soul")
        write_file("memory/day1.md", "day one")

        result = engine.create_snapshot("Initial")

        assert result.id == 1
        assert result.reused is False
        assert result.file_count == 2
        assert result.total_size_bytes == len("soul") + len("day one")

        expected = compute_aggregate_hash(
            scan_tracked_files(workdir, TrackingSpec.from_config(engine.config))
        )
        assert result.aggregate_hash == expected

        content_dir = workdir / ".personahub" / "snapshots" / expected
        assert (content_dir / "SOUL.md").read_text() == "soul"
        assert (content_dir / "memory" / "day1.md").read_text() == "day one"

        files = engine.get_snapshot_files(1)
        assert [f.path for f in files] == ["SOUL.md", "memory/day1.md"]

    def test_empty_working_directory(self, engine):
        result = engine.create_snapshot("Empty")
        assert result.file_count == 0
        assert engine.get_snapshot(result.id).total_size_bytes == 0

    def test_unchanged_state_reuses_snapshot(self, engine, write_file):
        write_file("SOUL.md", "soul")
        first = engine.create_snapshot("Initial")

        second = engine.create_snapshot("Again")

        assert second.reused is True
        assert second.id == first.id
        assert second.message == "Initial"
        assert len(engine.list_snapshots()) == 1

    def test_new_state_new_snapshot(self, engine, write_file):
        write_file("SOUL.md", "v1")
        first = engine.create_snapshot("v1")
        write_file("SOUL.md", "v2")
        second = engine.create_snapshot("v2")

        assert second.id == first.id + 1
        assert second.aggregate_hash != first.aggregate_hash

    def test_auto_flag(self, engine, write_file):
        write_file("SOUL.md")
        result = engine.create_snapshot("cron", is_auto=True)
        assert engine.get_snapshot(result.id).is_auto is True

    def test_copy_failure_leaves_no_trace(self, engine, workdir, write_file, monkeypatch):
        write_file("a.md", "a")
        write_file("b.md", "b")
        calls = []

        def failing_copy(src, dest):
            calls.append(src)
            if len(calls) == 2:
                raise SnapshotIOError("copy", src, "disk full")
            dest.parent.mkdir(parents=True, exist_ok=True)
            dest.write_bytes(src.read_bytes())

        monkeypatch.setattr("personahub.engine.copy_file_safe", failing_copy)

        with pytest.raises(SnapshotIOError, match="disk full"):
            engine.create_snapshot("broken")

        assert engine.list_snapshots() == []
        assert list((workdir / ".personahub" / "snapshots").iterdir()) == []

    def test_metadata_failure_removes_content(self, engine, workdir, write_file, monkeypatch):
        write_file("a.md", "a")

        def failing_insert(**kwargs):
            raise RuntimeError("database is locked")

        monkeypatch.setattr(engine.store, "insert_snapshot", failing_insert)

        with pytest.raises(RuntimeError):
            engine.create_snapshot("broken")

        assert list((workdir / ".personahub" / "snapshots").iterdir()) == []

    def test_file_changed_during_copy(self, engine, workdir, write_file, monkeypatch):
        """A copy that no longer matches its scanned hash is never committed."""
        write_file("a.md", "scanned")

        def copy_after_edit(src, dest):
            dest.parent.mkdir(parents=True, exist_ok=True)
            dest.write_text("edited after scan")

        monkeypatch.setattr("personahub.engine.copy_file_safe", copy_after_edit)

        with pytest.raises(DigestMismatchError) as exc_info:
            engine.create_snapshot("racy")

        assert exc_info.value.path == "a.md"
        assert engine.list_snapshots() == []
        assert list((workdir / ".personahub" / "snapshots").iterdir()) == []

    def test_return_to_older_state_records_new_snapshot(self, engine, workdir, write_file):
        write_file("A.md", "x")
        first = engine.create_snapshot("x")
        write_file("A.md", "xy")
        engine.create_snapshot("xy")
        write_file("A.md", "x")

        third = engine.create_snapshot("x again")

        assert third.reused is False
        assert third.id == 3
        assert third.aggregate_hash == first.aggregate_hash
        assert engine.has_changes() is False
        assert [s.id for s in engine.list_snapshots()] == [3, 2, 1]

        # Saving again right away reuses the latest snapshot
        assert engine.create_snapshot("x once more").id == 3

    def test_shared_content_not_rewritten(self, engine, workdir, write_file, monkeypatch):
        write_file("A.md", "x")
        first = engine.create_snapshot("x")
        write_file("A.md", "xy")
        engine.create_snapshot("xy")
        write_file("A.md", "x")
        copies = []
        monkeypatch.setattr("personahub.engine.copy_file_safe", lambda src, dest: copies.append(dest))

        engine.create_snapshot("x again")

        assert copies == []
        content_dir = workdir / ".personahub" / "snapshots" / first.aggregate_hash
        assert (content_dir / "A.md").read_text() == "x"

    def test_stale_content_directory_replaced(self, engine, workdir, write_file):
        write_file("a.md", "a")
        aggregate_hash = compute_aggregate_hash(
            scan_tracked_files(workdir, TrackingSpec.from_config(engine.config))
        )
        stale = workdir / ".personahub" / "snapshots" / aggregate_hash
        stale.mkdir()
        (stale / "leftover.md").write_text("junk")

        engine.create_snapshot("fresh")

        assert not (stale / "leftover.md").exists()
        assert (stale / "a.md").read_text() == "a"


class TestHasChanges:
    """Test change detection against the latest snapshot."""

    def test_no_snapshots(self, engine):
        assert engine.has_changes() is True

    def test_lifecycle(self, engine, write_file, workdir):
        write_file("SOUL.md", "v1")
        engine.create_snapshot("v1")
        assert engine.has_changes() is False

        write_file("SOUL.md", "v2")
        assert engine.has_changes() is True

        write_file("SOUL.md", "v1")
        assert engine.has_changes() is False

        write_file("new.md", "new")
        assert engine.has_changes() is True

        (workdir / "new.md").unlink()
        (workdir / "SOUL.md").unlink()
        assert engine.has_changes() is True

    def test_untracked_files_ignored(self, engine, write_file):
        write_file("SOUL.md")
        engine.create_snapshot("v1")
        write_file("script.py", "print()")
        assert engine.has_changes() is False


class TestQueries:
    """Test listing and lookup."""

    def test_list_newest_first(self, engine, write_file):
        for i in range(3):
            write_file("SOUL.md", f"v{i}")
            engine.create_snapshot(f"v{i}")

        assert [s.message for s in engine.list_snapshots()] == ["v2", "v1", "v0"]
        assert [s.id for s in engine.list_snapshots(limit=1)] == [3]

    def test_get_missing(self, engine):
        assert engine.get_snapshot(5) is None
        with pytest.raises(SnapshotNotFoundError, match="#5"):
            engine.get_snapshot_files(5)


class TestDiff:
    """Test snapshot comparison."""

    def test_no_differences(self, engine, write_file):
        write_file("A.md", "x")
        engine.create_snapshot("one")
        assert engine.diff(1).is_empty

    def test_against_working_directory(self, engine, write_file):
        write_file("A.md", "x")
        engine.create_snapshot("one")

        write_file("A.md", "xy")
        write_file("B.md", "z")
        result = engine.diff(1)

        assert result.added == ["B.md"]
        assert result.removed == []
        assert [m.path for m in result.modified] == ["A.md"]
        assert result.modified[0].changed_line_count == 2
        assert "+xy" in result.modified[0].diff_text
        assert "--- a/A.md" in result.modified[0].diff_text

    def test_removed_file(self, engine, write_file, workdir):
        write_file("A.md", "x")
        write_file("B.md", "y")
        engine.create_snapshot("one")
        (workdir / "B.md").unlink()

        result = engine.diff(1)
        assert result.removed == ["B.md"]
        assert result.added == []
        assert result.modified == []

    def test_between_snapshots(self, engine, write_file):
        write_file("A.md", "x")
        engine.create_snapshot("one")
        write_file("A.md", "xy")
        write_file("B.md", "z")
        engine.create_snapshot("two")
        # Working directory changes are irrelevant to snapshot-to-snapshot diffs
        write_file("C.md", "live only")

        forward = engine.diff(1, 2)
        assert forward.added == ["B.md"]
        assert [m.path for m in forward.modified] == ["A.md"]

        backward = engine.diff(2, 1)
        assert backward.removed == ["B.md"]
        assert "-xy" in backward.modified[0].diff_text

    def test_missing_snapshots(self, engine, write_file):
        write_file("A.md", "x")
        engine.create_snapshot("one")

        with pytest.raises(SnapshotNotFoundError):
            engine.diff(9)
        with pytest.raises(SnapshotNotFoundError):
            engine.diff(1, 9)


class TestRestorePreview:
    """Test the side-effect-free restore description."""

    def test_preview(self, engine, write_file, workdir):
        write_file("A.md", "a")
        write_file("B.md", "b")
        engine.create_snapshot("one")

        write_file("A.md", "changed")
        (workdir / "B.md").unlink()
        write_file("C.md", "c")

        preview = engine.get_restore_preview(1)

        assert preview.overwrite == ["A.md"]
        assert preview.restore == ["B.md"]
        assert preview.remove == ["C.md"]
        # Nothing changed on disk
        assert not (workdir / "B.md").exists()
        assert len(engine.list_snapshots()) == 1

    def test_preview_missing(self, engine):
        with pytest.raises(SnapshotNotFoundError):
            engine.get_restore_preview(3)


class TestMaliciousMetadata:
    """Test that paths stored in metadata cannot escape the store."""

    def test_traversal_path_rejected(self, engine, workdir, tmp_path):
        class Row:
            relative_path = "../../../evil.md"
            content_hash = "0000000000000000"
            size_bytes = 4

        snapshot_id = engine.store.insert_snapshot("deadbeefdeadbeef", "evil", [Row()])
        (workdir / ".personahub" / "snapshots" / "deadbeefdeadbeef").mkdir()

        with pytest.raises(PathTraversalError):
            engine.restore(snapshot_id)

        assert not (tmp_path / "evil.md").exists()
        assert not (workdir / ".personahub" / "staging").exists()


class TestWriterLock:
    """Test that a second writer fails fast."""

    def test_locked_store(self, engine, workdir, write_file, monkeypatch):
        write_file("A.md", "x")
        monkeypatch.setattr("personahub.engine.LOCK_TIMEOUT", 0.1)
        lock_path = workdir / ".personahub" / "lock"

        with portalocker.Lock(str(lock_path), "a"):
            with pytest.raises(StoreLockedError, match="locked"):
                engine.create_snapshot("blocked")

        # Released once the other holder lets go
        assert engine.create_snapshot("free").id == 1

    def test_lock_released_after_failure(self, engine, write_file):
        write_file("A.md", "x")
        with pytest.raises(SnapshotNotFoundError):
            engine.restore(1)
        assert engine.create_snapshot("after").id == 1
