"""Strict unified-diff parser.

Accepts the output of ``git diff``, ``git format-patch`` and ``diff -u``.
The parser is a small state machine: every line is either a recognized
header, part of a hunk whose length the ``@@`` header announced, or an
error. Text before the first file header (a commit message) and after a
``-- `` signature is ignored.

Example:
    >>> files = parse_diff('--- a/x.py\\n+++ b/x.py\\n@@ -1 +1 @@\\n-old\\n+new\\n')
    >>> files[0].path, files[0].old_side_lines()
    ('x.py', [1])
"""

from __future__ import annotations

import re

from line_test.diff.models import DiffLine, FileDiff, Hunk, LineKind
from line_test.errors import DiffParseError


_HUNK_RE = re.compile(r'^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@(.*)$')
_DEV_NULL = '/dev/null'
_NO_NEWLINE_MARKER = '\\'
_EXTENDED_HEADERS = (
    'index ',
    'old mode ',
    'new mode ',
    'similarity index ',
    'dissimilarity index ',
)
_ESCAPES = {'a': 7, 'b': 8, 't': 9, 'n': 10, 'v': 11, 'f': 12, 'r': 13, '"': 34, '\\': 92}


def _unquote(path: str) -> str:
    """Decode a C-style quoted path as written by git."""
    body = path[1:-1]
    out = bytearray()
    i = 0
    while i < len(body):
        char = body[i]
        if char != '\\':
            out.extend(char.encode('utf-8', 'surrogateescape'))
            i += 1
            continue
        nxt = body[i + 1 : i + 2]
        if nxt in _ESCAPES:
            out.append(_ESCAPES[nxt])
            i += 2
        elif re.fullmatch(r'[0-7]{3}', body[i + 1 : i + 4]):
            out.append(int(body[i + 1 : i + 4], 8))
            i += 4
        else:
            msg = f'invalid escape in quoted path {path!r}'
            raise ValueError(msg)
    return out.decode('utf-8', 'surrogateescape')


class DiffParser:
    """Parses unified-diff text into FileDiff objects.

    Args:
        strip: Number of leading path components to remove from header
            paths, as ``patch -p``. Git's ``a/`` and ``b/`` prefixes are
            removed by the default of 1.
    """

    def __init__(self, strip: int = 1) -> None:
        self._strip = strip

    def parse(self, text: str) -> list[FileDiff]:
        """Parse ``text`` into per-file diffs, in input order.

        Raises:
            DiffParseError: If the text violates the diff grammar.
        """
        lines = text.split('\n')
        if lines and lines[-1] == '':
            lines.pop()

        files: list[FileDiff] = []
        current: FileDiff | None = None
        headers_done = False
        in_trailer = False
        i = 0

        while i < len(lines):
            line = lines[i]
            lineno = i + 1

            if line.startswith('diff '):
                current = self._start_git_file(line) if line.startswith('diff --git ') else self._start_plain_file(line)
                files.append(current)
                headers_done = False
                in_trailer = False
                i += 1
                continue

            if line.startswith('--- ') and i + 1 < len(lines) and lines[i + 1].startswith('+++ '):
                if current is None or headers_done or current.hunks:
                    current = FileDiff(None, None)
                    files.append(current)
                current.old_path = self._header_path(line[4:], lineno)
                current.new_path = self._header_path(lines[i + 1][4:], lineno + 1)
                headers_done = True
                in_trailer = False
                i += 2
                continue

            if current is None or in_trailer:
                # Preamble (commit message) or signature trailer.
                i += 1
                continue

            if line.startswith('@@'):
                if not headers_done:
                    msg = 'hunk before ---/+++ file headers'
                    raise DiffParseError(msg, line_number=lineno)
                i = self._parse_hunk(current, lines, i)
                continue

            if line.startswith(_NO_NEWLINE_MARKER) and current.hunks:
                self._mark_no_newline(current.hunks[-1], lineno)
                i += 1
                continue

            if not headers_done and self._apply_extended_header(current, line):
                i += 1
                continue

            if line.startswith('GIT binary patch'):
                current.is_binary = True
                i += 1
                while i < len(lines) and not lines[i].startswith('diff '):
                    i += 1
                continue

            if line.startswith('Only in '):
                i += 1
                continue

            if line == '-- ' or line == '--':
                in_trailer = True
                i += 1
                continue

            msg = f'unexpected line: {line!r}'
            raise DiffParseError(msg, line_number=lineno)

        if not files and text.strip():
            msg = 'input contains no file headers'
            raise DiffParseError(msg)

        for file_diff in files:
            if file_diff.old_path is None and file_diff.new_path is None:
                msg = 'file diff without any path'
                raise DiffParseError(msg)
        return files

    def _strip_components(self, path: str) -> str:
        parts = path.split('/')
        if len(parts) > self._strip:
            return '/'.join(parts[self._strip :])
        return path

    def _header_path(self, raw: str, lineno: int) -> str | None:
        raw = raw.rstrip('\r')
        if raw.startswith('"'):
            end = raw.find('"', 1)
            while end != -1 and raw[end - 1] == '\\':
                end = raw.find('"', end + 1)
            if end == -1:
                msg = f'unterminated quoted path: {raw!r}'
                raise DiffParseError(msg, line_number=lineno)
            try:
                path = _unquote(raw[: end + 1])
            except ValueError as exc:
                raise DiffParseError(str(exc), line_number=lineno) from None
        else:
            path = raw.split('\t', 1)[0]
        if not path:
            msg = 'empty path in file header'
            raise DiffParseError(msg, line_number=lineno)
        if path == _DEV_NULL:
            return None
        return self._strip_components(path)

    def _start_git_file(self, line: str) -> FileDiff:
        rest = line[len('diff --git ') :]
        old = new = None
        if rest.startswith('"'):
            end = rest.find('" ')
            if end != -1:
                old = self._header_path(rest[: end + 1], 0)
                new = self._header_path(rest[end + 2 :], 0)
        else:
            candidates = [m.start() for m in re.finditer(' ', rest)]
            for pos in candidates:
                left, right = rest[:pos], rest[pos + 1 :]
                if self._strip_components(left) == self._strip_components(right):
                    old = new = self._strip_components(left)
                    break
            else:
                if candidates:
                    pos = candidates[len(candidates) // 2]
                    old = self._strip_components(rest[:pos])
                    new = self._strip_components(rest[pos + 1 :])
        return FileDiff(old_path=old, new_path=new)

    def _start_plain_file(self, line: str) -> FileDiff:
        # ``diff -ruN old/x new/x``: the last two words are the paths.
        words = line.split()
        if len(words) < 3:  # noqa: PLR2004
            return FileDiff(None, None)
        return FileDiff(old_path=self._strip_components(words[-2]), new_path=self._strip_components(words[-1]))

    def _rename_path(self, raw: str) -> str:
        if raw.startswith('"'):
            try:
                return _unquote(raw)
            except ValueError as exc:
                raise DiffParseError(str(exc)) from None
        return raw

    def _apply_extended_header(self, current: FileDiff, line: str) -> bool:
        if line.startswith(_EXTENDED_HEADERS):
            return True
        if line.startswith('new file mode '):
            current.old_path = None
            return True
        if line.startswith('deleted file mode '):
            current.new_path = None
            return True
        for prefix in ('rename from ', 'copy from '):
            if line.startswith(prefix):
                current.old_path = self._rename_path(line[len(prefix) :])
                current.is_rename = True
                return True
        for prefix in ('rename to ', 'copy to '):
            if line.startswith(prefix):
                current.new_path = self._rename_path(line[len(prefix) :])
                current.is_rename = True
                return True
        if line.startswith('Binary files ') and line.endswith(' differ'):
            current.is_binary = True
            return True
        return False

    def _parse_hunk(self, current: FileDiff, lines: list[str], i: int) -> int:
        header_lineno = i + 1
        match = _HUNK_RE.match(lines[i].rstrip('\r'))
        if match is None:
            msg = f'malformed hunk header: {lines[i]!r}'
            raise DiffParseError(msg, line_number=header_lineno)
        old_start = int(match.group(1))
        old_count = int(match.group(2)) if match.group(2) is not None else 1
        new_start = int(match.group(3))
        new_count = int(match.group(4)) if match.group(4) is not None else 1
        hunk = Hunk(old_start, old_count, new_start, new_count, section=match.group(5).strip())
        if (old_count and old_start == 0) or (new_count and new_start == 0):
            msg = f'hunk range starts at line 0: {lines[i]!r}'
            raise DiffParseError(msg, line_number=header_lineno)

        old_line = hunk.old_index + 1
        new_line = hunk.new_index + 1
        old_left, new_left = old_count, new_count
        i += 1
        while old_left or new_left:
            if i >= len(lines):
                msg = f'truncated hunk: {old_left} old and {new_left} new lines missing'
                raise DiffParseError(msg, line_number=header_lineno)
            text = lines[i]
            marker, body = (text[:1], text[1:]) if text else (' ', '')
            if marker == ' ' and old_left and new_left:
                hunk.lines.append(DiffLine(LineKind.CONTEXT, body, old_line, new_line))
                old_line += 1
                new_line += 1
                old_left -= 1
                new_left -= 1
            elif marker == '-' and old_left:
                hunk.lines.append(DiffLine(LineKind.REMOVED, body, old_line, None))
                old_line += 1
                old_left -= 1
            elif marker == '+' and new_left:
                hunk.lines.append(DiffLine(LineKind.ADDED, body, None, new_line))
                new_line += 1
                new_left -= 1
            elif marker == _NO_NEWLINE_MARKER and hunk.lines:
                self._mark_no_newline(hunk, i + 1)
            else:
                msg = f'unexpected line in hunk: {text!r}'
                raise DiffParseError(msg, line_number=i + 1)
            i += 1

        current.hunks.append(hunk)
        return i

    @staticmethod
    def _mark_no_newline(hunk: Hunk, lineno: int) -> None:
        if not hunk.lines:
            msg = 'no-newline marker without a preceding line'
            raise DiffParseError(msg, line_number=lineno)
        last = hunk.lines[-1]
        hunk.lines[-1] = DiffLine(last.kind, last.text, last.old_lineno, last.new_lineno, no_newline=True)


def parse_diff(text: str, strip: int = 1) -> list[FileDiff]:
    """Parse unified-diff text.

    Args:
        text: The diff.
        strip: Leading path components to remove (``patch -p``).

    Returns:
        The file diffs in input order; binary and rename-only diffs have
        no hunks.

    Raises:
        DiffParseError: If the text is not a well-formed unified diff.
    """
    return DiffParser(strip=strip).parse(text)
