"""TestSelector for choosing which tests to run for changed code.

The TestSelector turns line specifications and diffs into the set of tests
that executed those lines, using the persisted line index. Lines that no
test covers are reported so the caller can warn about them.

Example:
    >>> selector = TestSelector(database)  # doctest: +SKIP
    >>> selector.select_tests_for_lines({'src/auth.py': [42]}).tests  # doctest: +SKIP
    ['tests/test_auth.py::test_login']
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING


if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from line_test.diff.models import FileDiff
    from line_test.index.database import LineIndexDatabase


@dataclass
class Selection:
    """The outcome of a query.

    Attributes:
        tests: Selected test ids, sorted.
        uncovered: Queried lines no test covers, per path.
    """

    tests: list[str] = field(default_factory=list)
    uncovered: dict[str, list[int]] = field(default_factory=dict)


class TestSelector:
    """Selects tests for source locations and diffs.

    Attributes:
        database: The line index queries go to.
    """

    __test__ = False  # not a pytest test class

    def __init__(self, database: LineIndexDatabase) -> None:
        """Create a TestSelector over ``database``."""
        self.database = database

    def select_tests_for_lines(self, line_map: Mapping[str, Sequence[int]]) -> Selection:
        """Select the tests covering any of the given lines.

        Args:
            line_map: Path to the lines queried in it.

        Returns:
            The union of the per-line selections, with uncovered lines.
        """
        tests: set[str] = set()
        uncovered: dict[str, list[int]] = {}
        for path, lines in line_map.items():
            for line, covering in self.database.tests_by_line(path, lines).items():
                if not covering:
                    uncovered.setdefault(path, []).append(line)
                tests.update(covering)
        return Selection(tests=sorted(tests), uncovered=uncovered)

    def select_tests_for_diff(self, file_diffs: Sequence[FileDiff]) -> Selection:
        """Select the tests covering any old-side line the diff touches."""
        return Selection(tests=sorted(self.database.query_diff(file_diffs)))

    def select_zero_coverage_tests(self) -> Selection:
        """Select the tests that cover no indexed line."""
        return Selection(tests=self.database.zero_coverage_tests())
