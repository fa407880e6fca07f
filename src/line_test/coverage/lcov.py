"""Strict LCOV report parsing.

Each test run under coverage leaves one LCOV tracefile. This module turns a
tracefile into a CoverageReport: for every source file, the lines executed
at least once and the lines instrumented but never executed.

The grammar is enforced record by record. Anything the parser does not
recognize is an error, because a half-understood report must never reach
the index.

Example:
    >>> report = parse_lcov('SF:src/a.py\\nDA:1,3\\nDA:2,0\\nend_of_record\\n', report_name='t.lcov')
    >>> sorted(report.files['src/a.py'].covered)
    [1]
    >>> sorted(report.files['src/a.py'].uncovered)
    [2]
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import TYPE_CHECKING

from line_test.errors import CoverageParseError


if TYPE_CHECKING:
    from collections.abc import Callable


logger = logging.getLogger(__name__)

# Records carrying no line information; validated for shape only.
_IGNORED_TAGS = frozenset(('TN', 'VER', 'FN', 'FNL', 'FNA', 'FNDA', 'FNF', 'FNH', 'BRDA', 'BRF', 'BRH', 'LF', 'LH'))
# Records only valid between SF and end_of_record.
_FILE_TAGS = frozenset(('FN', 'FNL', 'FNA', 'FNDA', 'FNF', 'FNH', 'BRDA', 'BRF', 'BRH', 'LF', 'LH', 'DA'))
END_OF_RECORD = 'end_of_record'


@dataclass
class FileCoverage:
    """Line coverage of one source file within one report.

    Attributes:
        covered: Lines with a hit count greater than zero.
        uncovered: Lines listed in the report with zero hits.
    """

    covered: set[int] = field(default_factory=set)
    uncovered: set[int] = field(default_factory=set)

    def add(self, line: int, hits: int) -> None:
        """Record one DA entry, keeping a line covered once any entry hits it."""
        if hits > 0:
            self.covered.add(line)
            self.uncovered.discard(line)
        elif line not in self.covered:
            self.uncovered.add(line)


@dataclass
class CoverageReport:
    """Parsed contents of one LCOV tracefile.

    Attributes:
        name: Where the report came from (used in error messages).
        files: Mapping of project-relative source path to its coverage.
    """

    name: str
    files: dict[str, FileCoverage] = field(default_factory=dict)

    def covered_lines(self) -> dict[str, set[int]]:
        """Return the covered line sets keyed by path."""
        return {path: set(cov.covered) for path, cov in self.files.items()}


def _parse_int(value: str, what: str, report_name: str, source: str | None, line_number: int) -> int:
    try:
        return int(value)
    except ValueError:
        msg = f'invalid {what}: {value!r}'
        raise CoverageParseError(msg, report=report_name, source_file=source, line_number=line_number) from None


def parse_lcov(
    text: str,
    *,
    report_name: str,
    normalize_path: Callable[[str], str | None] | None = None,
) -> CoverageReport:
    """Parse LCOV text into a CoverageReport.

    Args:
        text: Full tracefile contents.
        report_name: Name used in error messages (usually the report path
            or the test id).
        normalize_path: Maps an SF path to a project-relative path, or None
            to drop the record (e.g. files outside the project). Defaults to
            keeping paths as written.

    Returns:
        The parsed report. An empty tracefile yields an empty report.

    Raises:
        CoverageParseError: On any deviation from the LCOV grammar,
            including a truncated final record.
    """
    report = CoverageReport(name=report_name)
    current_source: str | None = None
    current: FileCoverage | None = None
    keep_current = True

    for line_number, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line:
            continue

        if line == END_OF_RECORD:
            if current_source is None:
                msg = 'end_of_record without a preceding SF record'
                raise CoverageParseError(msg, report=report_name, line_number=line_number)
            if keep_current and current is not None:
                merged = report.files.setdefault(current_source, FileCoverage())
                for covered_line in current.covered:
                    merged.add(covered_line, 1)
                for uncovered_line in current.uncovered:
                    merged.add(uncovered_line, 0)
            current_source = None
            current = None
            keep_current = True
            continue

        tag, sep, payload = line.partition(':')
        if not sep:
            msg = f'unrecognized line: {line!r}'
            raise CoverageParseError(msg, report=report_name, source_file=current_source, line_number=line_number)

        if tag == 'SF':
            if current_source is not None:
                msg = f'SF record for {payload!r} before end_of_record'
                raise CoverageParseError(msg, report=report_name, source_file=current_source, line_number=line_number)
            if not payload:
                msg = 'empty SF record'
                raise CoverageParseError(msg, report=report_name, line_number=line_number)
            normalized = normalize_path(payload) if normalize_path is not None else payload
            current_source = payload if normalized is None else normalized
            keep_current = normalized is not None
            if not keep_current:
                logger.debug('%s: ignoring coverage of %s (outside project)', report_name, payload)
            current = FileCoverage()
            continue

        if tag not in _IGNORED_TAGS and tag != 'DA':
            msg = f'unknown record type {tag!r}'
            raise CoverageParseError(msg, report=report_name, source_file=current_source, line_number=line_number)

        if tag in _FILE_TAGS and current is None:
            msg = f'{tag} record outside of an SF record'
            raise CoverageParseError(msg, report=report_name, line_number=line_number)

        if tag != 'DA' or current is None:
            continue

        parts = payload.split(',')
        if len(parts) not in (2, 3):
            msg = f'malformed DA record: {line!r}'
            raise CoverageParseError(msg, report=report_name, source_file=current_source, line_number=line_number)
        lineno = _parse_int(parts[0], 'line number', report_name, current_source, line_number)
        hits = _parse_int(parts[1], 'hit count', report_name, current_source, line_number)
        if lineno <= 0:
            msg = f'line number must be positive, got {lineno}'
            raise CoverageParseError(msg, report=report_name, source_file=current_source, line_number=line_number)
        if hits < 0:
            msg = f'hit count must not be negative, got {hits}'
            raise CoverageParseError(msg, report=report_name, source_file=current_source, line_number=line_number)
        current.add(lineno, hits)

    if current_source is not None:
        msg = 'report is truncated: missing end_of_record'
        raise CoverageParseError(msg, report=report_name, source_file=current_source)

    return report
