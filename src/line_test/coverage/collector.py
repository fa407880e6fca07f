"""CoverageCollector for gathering coverage data per test.

The CoverageCollector parses the LCOV report of each test and records which
source lines that test executed, building the CoverageMap a build or
refresh turns into file records. Parsing happens here, on the caller's
thread, one report at a time.

Example:
    >>> collector = CoverageCollector()
    >>> collector.record_test_coverage('test_login', {'src/auth.py': [10, 11]})
    >>> collector.coverage_map.lines_for_file('src/auth.py')[10]
    frozenset({'test_login'})
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from line_test.coverage.lcov import CoverageReport, parse_lcov
from line_test.coverage.mapper import CoverageMap


if TYPE_CHECKING:
    from collections.abc import Callable, Iterable


class CoverageCollector:
    """Collects coverage data per test.

    Attributes:
        coverage_map: The CoverageMap storing line-to-test mappings.
        recorded_tests: Set of test ids that have been recorded.
    """

    def __init__(self, normalize_path: Callable[[str], str | None] | None = None) -> None:
        """Create a new coverage collector.

        Args:
            normalize_path: Passed to the LCOV parser to map report paths to
                project-relative paths.
        """
        self.coverage_map = CoverageMap()
        self.recorded_tests: set[str] = set()
        self._normalize_path = normalize_path
        self._total_mappings = 0

    def record_test_coverage(
        self,
        test_id: str,
        coverage_data: dict[str, Iterable[int]],
    ) -> None:
        """Record coverage data for a single test.

        Args:
            test_id: Identifier of the test.
            coverage_data: Dict mapping file paths to covered line numbers.
        """
        self.recorded_tests.add(test_id)
        for file_path, lines in coverage_data.items():
            for line_number in lines:
                self.coverage_map.add(file_path, line_number, test_id)
                self._total_mappings += 1

    def parse_report(self, test_id: str, report_text: str) -> CoverageReport:
        """Parse one test's LCOV report without recording it.

        Raises:
            CoverageParseError: If the report is malformed.
        """
        return parse_lcov(report_text, report_name=test_id, normalize_path=self._normalize_path)

    def get_stats(self) -> dict[str, Any]:
        """Get statistics about collected coverage data.

        Returns:
            Dict with keys:
                - total_tests: Number of tests recorded
                - total_locations: Number of unique source locations
                - total_mappings: Total number of test-to-location mappings
        """
        return {
            'total_tests': len(self.recorded_tests),
            'total_locations': len(self.coverage_map),
            'total_mappings': self._total_mappings,
        }
