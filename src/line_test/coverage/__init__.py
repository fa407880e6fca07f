"""Per-test coverage collection and test selection.

Coverage is gathered one test at a time, so every covered line can be
attributed to exactly the tests that executed it:

    coverage_map = {
        "src/auth.py": {42: {"test_login_success", "test_login_failure"}},
        "src/shipping.py": {17: {"test_calculate_shipping"}},
    }

    # Change to auth.py:42 -> run 2 tests, not 500

Exports:
    CoverageMap: Maps source locations to tests
    CoverageCollector: Collects coverage data per test
    TestSelector: Selects tests for lines and diffs
"""

from __future__ import annotations

from line_test.coverage.collector import CoverageCollector
from line_test.coverage.mapper import CoverageMap
from line_test.coverage.selector import TestSelector


__all__ = ['CoverageCollector', 'CoverageMap', 'TestSelector']
