"""CoverageMap for mapping source lines to test identifiers.

The CoverageMap is the in-memory staging structure of a build or refresh:
per-test reports are folded into it, and it is turned into file records
once collection is complete.

Example:
    >>> coverage_map = CoverageMap()
    >>> coverage_map.add('src/auth.py', 42, 'tests/test_auth.py::test_login')
    >>> coverage_map.lines_for_file('src/auth.py')
    {42: frozenset({'tests/test_auth.py::test_login'})}
"""

from __future__ import annotations


class CoverageMap:
    """Maps source locations (file, line) to test identifiers.

    Attributes:
        _data: Internal dict mapping file path to a dict of line number to
            the set of tests covering it.
    """

    def __init__(self) -> None:
        """Create an empty coverage map."""
        self._data: dict[str, dict[int, set[str]]] = {}

    def __len__(self) -> int:
        """Return the number of source locations in the map."""
        return sum(len(lines) for lines in self._data.values())

    def add(self, file_path: str, line_number: int, test_id: str) -> None:
        """Add a coverage mapping from a source location to a test.

        Args:
            file_path: Project-relative path to the source file.
            line_number: Line number in the source file.
            test_id: Identifier of the test that covers this line.
        """
        self._data.setdefault(file_path, {}).setdefault(line_number, set()).add(test_id)

    def lines_for_file(self, file_path: str) -> dict[int, frozenset[str]]:
        """Return the line entries of one file, frozen for storage."""
        return {line: frozenset(tests) for line, tests in self._data.get(file_path, {}).items()}

