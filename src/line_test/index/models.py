"""In-memory model of the line index.

A LineIndex is what a build or refresh stages before it is written to disk
in one piece. File records are immutable; replacing a file's coverage means
replacing its whole record.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from types import MappingProxyType
from typing import TYPE_CHECKING


if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping


SCHEMA_VERSION = '1'


def utc_timestamp() -> str:
    """Return the current UTC time in ISO 8601 form."""
    return datetime.now(UTC).isoformat(timespec='seconds')


def group_of(test_id: str) -> str:
    """Return the group ("binary") of a test: the part before the first ``::``.

    Example:
        >>> group_of('tests/test_auth.py::TestLogin::test_ok')
        'tests/test_auth.py'
    """
    return test_id.split('::', 1)[0]


@dataclass(frozen=True)
class TestRecord:
    """One test of the suite.

    Attributes:
        test_id: Opaque, stable identifier (a pytest node id by default).
        group: The batch the test is collected with.
    """

    __test__ = False  # not a pytest test class

    test_id: str
    group: str

    @classmethod
    def from_id(cls, test_id: str) -> TestRecord:
        """Build a record whose group is derived from ``test_id``."""
        return cls(test_id=test_id, group=group_of(test_id))


@dataclass(frozen=True)
class FileRecord:
    """Coverage of one source file at one content snapshot.

    Lines between 1 and line_count without an entry in ``lines`` are known
    to be covered by no test.

    Attributes:
        path: POSIX path relative to the project root.
        digest: SHA-256 hex digest of the bytes that were instrumented.
        line_count: Number of lines of that content.
        lines: Line number to the tests that executed it.
    """

    path: str
    digest: str
    line_count: int
    lines: Mapping[int, frozenset[str]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, 'lines', MappingProxyType(dict(self.lines)))

    def tests_for_line(self, line: int) -> frozenset[str]:
        """Return the tests covering ``line`` (empty if none)."""
        return self.lines.get(line, frozenset())

    def covering_tests(self) -> frozenset[str]:
        """Return every test that covered any line of the file."""
        result: set[str] = set()
        for tests in self.lines.values():
            result.update(tests)
        return frozenset(result)

    def with_tests(self, extra: Mapping[int, frozenset[str]]) -> FileRecord:
        """Return a copy whose lines also list the tests in ``extra``.

        Example:
            >>> record = FileRecord('a.py', 'd', 3, {1: frozenset({'t1'})})
            >>> merged = record.with_tests({1: frozenset({'t2'}), 2: frozenset({'t2'})})
            >>> sorted(merged.lines[1]), sorted(merged.lines[2])
            (['t1', 't2'], ['t2'])
        """
        lines = dict(self.lines)
        for line, tests in extra.items():
            lines[line] = lines.get(line, frozenset()) | tests
        return replace(self, lines=lines)


@dataclass(frozen=True)
class LineIndex:
    """The whole index: file records, the test suite and metadata.

    Attributes:
        files: File records keyed by path.
        tests: Test records keyed by test id.
        built_at: Timestamp of the last full build.
        refreshed_at: Timestamp of the last refresh that changed anything.
        schema_version: Persistence format version.
    """

    files: Mapping[str, FileRecord]
    tests: Mapping[str, TestRecord]
    built_at: str
    refreshed_at: str | None = None
    schema_version: str = SCHEMA_VERSION

    def with_files(
        self,
        updated: Iterable[FileRecord],
        removed: Iterable[str] = (),
        refreshed_at: str | None = None,
        added_tests: Iterable[TestRecord] = (),
    ) -> LineIndex:
        """Return a copy with whole file records replaced or removed.

        Args:
            updated: Records replacing (or adding) files, as units.
            removed: Paths whose records are dropped.
            refreshed_at: New refresh timestamp; defaults to now.
            added_tests: Tests joining the suite; known tests are kept as they are.

        Returns:
            A new LineIndex; this one is left untouched.
        """
        files = dict(self.files)
        for path in removed:
            files.pop(path, None)
        for record in updated:
            files[record.path] = record
        tests = dict(self.tests)
        for test in added_tests:
            tests.setdefault(test.test_id, test)
        return replace(self, files=files, tests=tests, refreshed_at=refreshed_at or utc_timestamp())
