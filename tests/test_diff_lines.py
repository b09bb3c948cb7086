"""Tests for changed-line extraction from unified diffs."""

from __future__ import annotations

import pytest

from bestreviewer.diff_lines import changed_line_set, core_lines, expand


class TestCoreLines:
    def test_added_lines(self) -> None:
        patch = "@@ -10,2 +10,4 @@\n ctx\n+a\n+b\n ctx"
        assert core_lines(patch) == {11, 12}

    def test_deleted_line_marks_position(self) -> None:
        patch = "@@ -5,3 +5,2 @@\n ctx\n-gone\n ctx"
        assert core_lines(patch) == {6}

    def test_replacement(self) -> None:
        patch = "@@ -1,3 +1,3 @@\n one\n-two\n+TWO\n three"
        assert core_lines(patch) == {2}

    def test_omitted_counts_default_to_one(self) -> None:
        patch = "@@ -7 +7 @@\n-old\n+new"
        assert core_lines(patch) == {7}

    def test_multiple_hunks(self) -> None:
        patch = (
            "@@ -1,2 +1,3 @@\n a\n+b\n c\n"
            "@@ -40,2 +41,3 @@\n x\n+y\n z"
        )
        assert core_lines(patch) == {2, 42}

    def test_file_headers_ignored(self) -> None:
        patch = (
            "diff --git a/f.py b/f.py\n"
            "--- a/f.py\n"
            "+++ b/f.py\n"
            "@@ -1,1 +1,2 @@\n a\n+b"
        )
        assert core_lines(patch) == {2}

    def test_no_newline_marker_ignored(self) -> None:
        patch = "@@ -1,1 +1,1 @@\n-a\n\\ No newline at end of file\n+b"
        assert core_lines(patch) == {1}

    def test_new_file(self) -> None:
        patch = "@@ -0,0 +1,3 @@\n+a\n+b\n+c"
        assert core_lines(patch) == {1, 2, 3}

    def test_deleted_file_yields_no_positive_lines(self) -> None:
        patch = "@@ -1,2 +0,0 @@\n-a\n-b"
        assert core_lines(patch) == set()

    @pytest.mark.parametrize("patch", ["", "not a diff", "@@ garbage @@\n+x", "+++ b/only-header"])
    def test_malformed_returns_empty(self, patch: str) -> None:
        assert core_lines(patch) == set()


class TestExpansion:
    def test_radius(self) -> None:
        assert expand({10}, 2) == {8, 9, 10, 11, 12}

    def test_never_below_one(self) -> None:
        assert expand({1}, 2) == {1, 2, 3}

    def test_line_set_default_radius(self) -> None:
        patch = "@@ -1,0 +1,1 @@\n+a"
        assert changed_line_set(patch).lines == {1, 2, 3}

    def test_line_set_keeps_core(self) -> None:
        patch = "@@ -20,1 +20,2 @@\n a\n+b"
        ls = changed_line_set(patch, radius=1)
        assert ls.core == {21}
        assert ls.lines == {20, 21, 22}
        assert ls

    def test_empty_line_set_is_falsy(self) -> None:
        assert not changed_line_set("")


class TestProperties:
    PATCH = "@@ -1,4 +1,5 @@\n a\n+b\n-c\n d\n+e\n f"

    def test_idempotent(self) -> None:
        assert changed_line_set(self.PATCH) == changed_line_set(self.PATCH)

    def test_all_positive(self) -> None:
        assert all(n > 0 for n in changed_line_set(self.PATCH, radius=5).lines)
