"""Console reporter for line-test results.

Selected test ids go to standard output, one per line, so they can be piped
into other tools. Build and refresh summaries are human-readable and go to
standard error.
"""

from __future__ import annotations

import sys
from typing import TYPE_CHECKING, TextIO


if TYPE_CHECKING:
    from line_test.coverage.selector import Selection
    from line_test.index.database import BuildSummary, RefreshSummary


class ConsoleReporter:
    """Reporter that writes results to the console.

    Produces summaries in the following format:

        ===================== line-test refresh =====================

        Changed files: 2
        New files: 1
        Deleted files: 0
        Tests run: 14

        =============================================================

    Attributes:
        output: Where selected test ids are written.
        summary_output: Where summaries are written.
    """

    BORDER_CHAR = '='
    BORDER_WIDTH = 61

    def __init__(self, output: TextIO | None = None, summary_output: TextIO | None = None) -> None:
        """Initialize the console reporter.

        Args:
            output: File-like object for test ids. Defaults to sys.stdout.
            summary_output: File-like object for summaries. Defaults to sys.stderr.
        """
        self.output = output or sys.stdout
        self.summary_output = summary_output or sys.stderr

    def write_selection(self, selection: Selection) -> None:
        """Write the selected test ids, one per line."""
        for test_id in selection.tests:
            self.output.write(f'{test_id}\n')

    def write_build_summary(self, summary: BuildSummary) -> None:
        """Write what a build did."""
        self._write_header('build')
        self._write_line(f'Files indexed: {summary.files}')
        self._write_line(f'Tests run: {summary.tests}')
        self._write_line(f'Covered lines: {summary.covered_lines}')
        self._write_skipped(summary.skipped_files)
        self._write_line(f'Duration: {summary.duration:.1f}s')
        self._write_footer()

    def write_refresh_summary(self, summary: RefreshSummary) -> None:
        """Write what a refresh did."""
        self._write_header('refresh')
        if summary.up_to_date:
            self._write_line('Line index is up to date.')
        else:
            self._write_line(f'Changed files: {len(summary.changed)}')
            self._write_line(f'New files: {len(summary.added)}')
            self._write_line(f'Deleted files: {len(summary.removed)}')
            self._write_line(f'Tests run: {summary.tests_run}')
            if summary.tests_added:
                self._write_line(f'New tests: {summary.tests_added}')
            self._write_skipped(summary.skipped_files)
        self._write_footer()

    def _write_skipped(self, skipped: list[str]) -> None:
        if not skipped:
            return
        self._write_line('')
        self._write_line('Not indexed (changed during collection):')
        for path in skipped:
            self._write_line(f'  {path}')

    def _write_header(self, operation: str) -> None:
        title = f' line-test {operation} '
        padding = (self.BORDER_WIDTH - len(title)) // 2
        line = self.BORDER_CHAR * padding + title + self.BORDER_CHAR * padding
        self._write_line(line.ljust(self.BORDER_WIDTH, self.BORDER_CHAR))
        self._write_line('')

    def _write_footer(self) -> None:
        self._write_line('')
        self._write_line(self.BORDER_CHAR * self.BORDER_WIDTH)

    def _write_line(self, text: str) -> None:
        self.summary_output.write(text + '\n')
