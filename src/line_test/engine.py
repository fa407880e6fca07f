"""Selection engine: the operations the command line exposes.

The engine is the boundary between line-test's components and its callers.
It parses query input, checks that an index exists, and turns errors from
the file system and SQLite into LineTestError subclasses so callers only
ever handle one error taxonomy.
"""

from __future__ import annotations

from contextlib import contextmanager
import logging
import sqlite3
from typing import TYPE_CHECKING

from line_test.coverage.selector import Selection, TestSelector
from line_test.diff.parser import parse_diff
from line_test.errors import LineTestError
from line_test.index.database import LineIndexDatabase
from line_test.linespec import parse_line_specs
from line_test.parallel.driver import CoverageDriver


if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator, Sequence

    from line_test.context import RunContext
    from line_test.index.database import BuildSummary, RefreshSummary


logger = logging.getLogger(__name__)


class SelectionEngine:
    """Runs one line-test operation against the project in ``context``.

    Args:
        context: The invocation's context.
        database: The line index; created from the context if omitted.
        driver: Coverage driver shared with the database; created if omitted.
    """

    def __init__(
        self,
        context: RunContext,
        database: LineIndexDatabase | None = None,
        driver: CoverageDriver | None = None,
    ) -> None:
        self._context = context
        self._driver = driver if driver is not None else CoverageDriver(context)
        self._database = database if database is not None else LineIndexDatabase(context, driver=self._driver)
        self._selector = TestSelector(self._database)

    @contextmanager
    def _translate_errors(self) -> Iterator[None]:
        try:
            yield
        except sqlite3.Error as exc:
            msg = f'line index database error at {self._context.index_path}: {exc}'
            raise LineTestError(msg) from exc
        except OSError as exc:
            raise LineTestError(str(exc)) from exc

    def build(self, *, missing_only: bool = False) -> BuildSummary:
        """Build the index from scratch, or add only the tests it is missing."""
        with self._translate_errors():
            return self._database.build(missing_only=missing_only)

    def refresh(self) -> RefreshSummary:
        """Bring the index up to date."""
        with self._translate_errors():
            return self._database.refresh()

    def select_lines(self, specs: Iterable[str]) -> Selection:
        """Select the tests covering the lines named by ``specs``.

        Args:
            specs: Line specifications such as ``src/a.py:10-12,40``.

        Raises:
            LineSpecError: If a specification is malformed.
            DatabaseMissing: If no index has been built.
            LineOutOfRange: If a file is unindexed or stale, or a line is
                out of range.
        """
        line_map = parse_line_specs(specs)
        with self._translate_errors():
            self._database.ensure_exists()
            selection = self._selector.select_tests_for_lines(line_map)
        for path, lines in sorted(selection.uncovered.items()):
            logger.info('No test covers %s:%s', path, ','.join(str(line) for line in lines))
        return selection

    def select_diff(self, diff_text: str, strip: int = 1) -> Selection:
        """Select the tests covering the old-side lines touched by a diff.

        Raises:
            DiffParseError: If ``diff_text`` is not a unified diff.
            DatabaseMissing: If no index has been built.
        """
        file_diffs = parse_diff(diff_text, strip=strip)
        with self._translate_errors():
            self._database.ensure_exists()
            return self._selector.select_tests_for_diff(file_diffs)

    def select_zero_coverage(self) -> Selection:
        """Select the tests that cover no indexed line."""
        with self._translate_errors():
            self._database.ensure_exists()
            return self._selector.select_zero_coverage_tests()

    def run_tests(self, test_ids: Sequence[str]) -> int:
        """Run ``test_ids`` with the configured runner and return its exit status."""
        return self._driver.run_selected(test_ids)
