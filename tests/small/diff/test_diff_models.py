"""Tests for reverse-applying diffs and matching their old side."""

from __future__ import annotations

import pytest

from line_test.diff.models import FileDiff, split_lines
from line_test.diff.parser import parse_diff
from line_test.errors import DiffParseError


OLD = 'one\ntwo\nthree\nfour\n'
NEW = 'one\nTWO\nthree\nfour\nfive\n'
DIFF = '--- a/f.py\n+++ b/f.py\n@@ -1,4 +1,5 @@\n one\n-two\n+TWO\n three\n four\n+five\n'


class TestSplitLines:
    """Tests for split_lines."""

    def test_keeps_line_endings(self):
        assert split_lines('a\nb') == ['a\n', 'b']

    def test_bare_carriage_return_does_not_split(self):
        assert split_lines('a\rb\n') == ['a\rb\n']

    def test_empty_text_has_no_lines(self):
        assert split_lines('') == []


class TestFileDiffPath:
    """Tests for FileDiff.path."""

    def test_prefers_old_side(self):
        assert FileDiff('old.py', 'new.py').path == 'old.py'

    def test_new_file_uses_new_side(self):
        assert FileDiff(None, 'new.py').path == 'new.py'

    def test_no_side_raises_diff_parse_error(self):
        with pytest.raises(DiffParseError):
            FileDiff(None, None).path  # noqa: B018


class TestMatchesOld:
    """Tests for FileDiff.matches_old."""

    def test_old_content_matches(self):
        (file_diff,) = parse_diff(DIFF)

        assert file_diff.matches_old(split_lines(OLD))

    def test_new_content_does_not_match(self):
        (file_diff,) = parse_diff(DIFF)

        assert not file_diff.matches_old(split_lines(NEW))

    def test_shorter_file_does_not_match(self):
        (file_diff,) = parse_diff(DIFF)

        assert not file_diff.matches_old(['one\n'])


class TestReconstructOld:
    """Tests for FileDiff.reconstruct_old."""

    def test_reverse_applies_to_new_content(self):
        (file_diff,) = parse_diff(DIFF)

        assert ''.join(file_diff.reconstruct_old(split_lines(NEW))) == OLD

    def test_returns_none_when_diff_does_not_apply(self):
        (file_diff,) = parse_diff(DIFF)

        assert file_diff.reconstruct_old(split_lines('something\nelse\n')) is None

    def test_deleted_file_is_rebuilt_from_diff_alone(self):
        text = '--- a/g.py\n+++ /dev/null\n@@ -1,2 +0,0 @@\n-x\n-y\n'
        (file_diff,) = parse_diff(text)

        assert file_diff.reconstruct_old([]) == ['x\n', 'y\n']

    def test_missing_final_newline_is_restored(self):
        text = '--- a/h.py\n+++ b/h.py\n@@ -1 +1 @@\n-x\n\\ No newline at end of file\n+x\n'
        (file_diff,) = parse_diff(text)

        assert file_diff.reconstruct_old(['x\n']) == ['x']

    def test_unchanged_tail_is_kept(self):
        text = '--- a/f.py\n+++ b/f.py\n@@ -1 +1 @@\n-a\n+A\n'
        (file_diff,) = parse_diff(text)

        assert file_diff.reconstruct_old(['A\n', 'b\n', 'c\n']) == ['a\n', 'b\n', 'c\n']
