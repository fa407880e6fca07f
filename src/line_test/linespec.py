"""Parsing of ``--line`` arguments.

A line specification names a file and some of its lines::

    src/auth.py:42
    src/auth.py:10-12,40

The path is everything before the last colon, so paths containing colons
still work.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from line_test.errors import LineSpecError


if TYPE_CHECKING:
    from collections.abc import Iterable


_RANGE_RE = re.compile(r'^(\d+)(?:-(\d+))?$')


def parse_line_spec(spec: str) -> tuple[str, list[int]]:
    """Parse one specification into a path and its sorted, distinct lines.

    Example:
        >>> parse_line_spec('src/a.py:3-5,1')
        ('src/a.py', [1, 3, 4, 5])

    Raises:
        LineSpecError: If the specification is malformed.
    """
    path, sep, ranges = spec.strip().rpartition(':')
    if not sep or not path or not ranges:
        msg = f'invalid line specification {spec!r}; expected PATH:LINES such as src/a.py:10-12,40'
        raise LineSpecError(msg)

    lines: set[int] = set()
    for part in ranges.split(','):
        match = _RANGE_RE.match(part.strip())
        if match is None:
            msg = f'invalid line range {part!r} in {spec!r}'
            raise LineSpecError(msg)
        first = int(match.group(1))
        last = int(match.group(2)) if match.group(2) is not None else first
        if first < 1 or last < first:
            msg = f'invalid line range {part!r} in {spec!r}; lines start at 1'
            raise LineSpecError(msg)
        lines.update(range(first, last + 1))
    return path, sorted(lines)


def parse_line_specs(specs: Iterable[str]) -> dict[str, list[int]]:
    """Parse several specifications, merging lines of the same path.

    Blank specifications and lines starting with ``#`` are skipped, so a
    file of specifications can be piped in.
    """
    result: dict[str, set[int]] = {}
    for spec in specs:
        if not spec.strip() or spec.lstrip().startswith('#'):
            continue
        path, lines = parse_line_spec(spec)
        result.setdefault(path, set()).update(lines)
    return {path: sorted(lines) for path, lines in result.items()}
