"""Data model for parsed unified diffs.

A FileDiff holds the hunks of one file. Every hunk line records its kind
and its line numbers on the old and new side, which is what the index needs
to translate a diff into line queries.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import re

from line_test.errors import DiffParseError


class LineKind(Enum):
    """Classification of one line inside a hunk."""

    CONTEXT = ' '
    ADDED = '+'
    REMOVED = '-'


@dataclass(frozen=True)
class DiffLine:
    """One line of a hunk.

    Attributes:
        kind: Context, added or removed.
        text: Line content without the marker and without the trailing
            newline (a carriage return is kept).
        old_lineno: Line number on the old side; None for added lines.
        new_lineno: Line number on the new side; None for removed lines.
        no_newline: The line is the last of its side and has no newline.
    """

    kind: LineKind
    text: str
    old_lineno: int | None
    new_lineno: int | None
    no_newline: bool = False


@dataclass
class Hunk:
    """One contiguous changed region.

    Attributes:
        old_start: First old-side line (or the line before an empty range).
        old_count: Number of old-side lines.
        new_start: First new-side line (or the line before an empty range).
        new_count: Number of new-side lines.
        section: Text after the closing ``@@``, if any.
        lines: The hunk's lines in order.
    """

    old_start: int
    old_count: int
    new_start: int
    new_count: int
    section: str = ''
    lines: list[DiffLine] = field(default_factory=list)

    def old_side_lines(self) -> list[int]:
        """Return the old-side line numbers of context and removed lines.

        Purely added lines have no old-side line and contribute nothing.
        """
        return [line.old_lineno for line in self.lines if line.old_lineno is not None]

    @property
    def old_index(self) -> int:
        """Zero-based index of the hunk's first old-side line."""
        return self.old_start - 1 if self.old_count else self.old_start

    @property
    def new_index(self) -> int:
        """Zero-based index of the hunk's first new-side line."""
        return self.new_start - 1 if self.new_count else self.new_start


_LINE_RE = re.compile(r'[^\n]*\n|[^\n]+')


def split_lines(text: str) -> list[str]:
    """Split ``text`` on newlines only, keeping the line endings.

    Unlike str.splitlines(), a bare carriage return does not end a line,
    which matches how diff tools count lines.
    """
    return _LINE_RE.findall(text)


def _same_line(on_disk: str, diff_line: DiffLine) -> bool:
    content = on_disk[:-1] if on_disk.endswith('\n') else on_disk
    return content == diff_line.text


@dataclass
class FileDiff:
    """All changes the diff makes to one file.

    Attributes:
        old_path: Path on the old side, None for a newly created file.
        new_path: Path on the new side, None for a deleted file.
        hunks: The file's hunks in order.
        is_binary: The diff only states that binary content differs.
        is_rename: The file was renamed or copied.
    """

    old_path: str | None
    new_path: str | None
    hunks: list[Hunk] = field(default_factory=list)
    is_binary: bool = False
    is_rename: bool = False

    @property
    def path(self) -> str:
        """The path queries use: the old side when there is one.

        Raises:
            DiffParseError: Neither side names a file.
        """
        path = self.old_path if self.old_path is not None else self.new_path
        if path is None:
            msg = 'file diff names neither an old nor a new path'
            raise DiffParseError(msg)
        return path

    @property
    def is_new_file(self) -> bool:
        """True when the file has no old side."""
        return self.old_path is None

    @property
    def is_deleted_file(self) -> bool:
        """True when the file has no new side."""
        return self.new_path is None

    def old_side_lines(self) -> list[int]:
        """Return the sorted, distinct old-side lines to query."""
        return sorted({line for hunk in self.hunks for line in hunk.old_side_lines()})

    def matches_old(self, old_lines: list[str]) -> bool:
        """Check that ``old_lines`` agrees with every old-side line of the diff.

        Args:
            old_lines: File content split with split_lines().

        Returns:
            True if each context and removed line matches the file.
        """
        for hunk in self.hunks:
            for line in hunk.lines:
                if line.old_lineno is None:
                    continue
                if line.old_lineno > len(old_lines) or not _same_line(old_lines[line.old_lineno - 1], line):
                    return False
        return True

    def reconstruct_old(self, new_lines: list[str]) -> list[str] | None:
        """Rebuild the old-side content by reverse-applying the diff.

        Args:
            new_lines: Current (new-side) content split with split_lines().
                Pass an empty list for a deleted file.

        Returns:
            The old-side lines with line endings, or None if the diff does
            not apply to ``new_lines``.
        """
        result: list[str] = []
        pos = 0
        for hunk in sorted(self.hunks, key=lambda h: h.new_start):
            start = hunk.new_index
            if start < pos or start > len(new_lines):
                return None
            result.extend(new_lines[pos:start])
            pos = start
            for line in hunk.lines:
                if line.kind is LineKind.REMOVED:
                    result.append(line.text if line.no_newline else f'{line.text}\n')
                    continue
                if pos >= len(new_lines) or not _same_line(new_lines[pos], line):
                    return None
                if line.kind is LineKind.CONTEXT:
                    result.append(new_lines[pos])
                pos += 1
        result.extend(new_lines[pos:])
        return result
