"""Tests for diff classification and rendering."""

from personahub.diffing import classify_changes, decode_text, render_diff


class TestClassifyChanges:
    """Test added/removed/modified classification."""

    def test_three_way_split(self):
        base = {"a.md": "1", "b.md": "2", "c.md": "3"}
        target = {"a.md": "1", "b.md": "9", "d.md": "4"}

        added, removed, modified = classify_changes(base, target)

        assert added == ["d.md"]
        assert removed == ["c.md"]
        assert modified == ["b.md"]

    def test_identical(self):
        state = {"a.md": "1"}
        assert classify_changes(state, dict(state)) == ([], [], [])

    def test_empty_base(self):
        assert classify_changes({}, {"a.md": "1"}) == (["a.md"], [], [])

    def test_order_follows_inputs(self):
        base = {"z.md": "1", "y.md": "2"}
        target = {"b.md": "3", "a.md": "4"}
        added, removed, _ = classify_changes(base, target)
        assert added == ["b.md", "a.md"]
        assert removed == ["z.md", "y.md"]


class TestRenderDiff:
    """Test unified diff output."""

    def test_single_line_change(self):
        text, changed = render_diff("x\n", "xy\n", "A.md")

        assert changed == 2
        lines = text.splitlines()
        assert lines[0] == "--- a/A.md"
        assert lines[1] == "+++ b/A.md"
        assert "-x" in lines
        assert "+xy" in lines

    def test_headers_not_counted(self):
        # A content line that itself looks like a header is still counted
        text, changed = render_diff("a\n", "++b\n", "f.md")
        assert changed == 2
        assert "+++b" in text.splitlines()

    def test_context_lines_not_counted(self):
        base = "one\ntwo\nthree\n"
        target = "one\nTWO\nthree\n"
        _, changed = render_diff(base, target)
        assert changed == 2

    def test_missing_trailing_newline(self):
        text, changed = render_diff("x", "xy", "A.md")
        assert changed == 2
        assert "\\ No newline at end of file" in text

    def test_identical_text(self):
        assert render_diff("same\n", "same\n") == ("", 0)

    def test_default_path(self):
        text, _ = render_diff("a\n", "b\n")
        assert text.startswith("--- a/file\n+++ b/file\n")


class TestDecodeText:
    def test_invalid_utf8_replaced(self):
        assert decode_text(b"ok\xff") == "ok�"
