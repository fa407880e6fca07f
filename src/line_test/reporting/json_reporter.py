"""JSON reporter for line-test results.

Produces machine-readable output for editor integrations and CI scripts.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any


if TYPE_CHECKING:
    from line_test.coverage.selector import Selection


class JsonReporter:
    """Reporter that produces JSON output.

    JSON structure:
        {
            "tests": ["tests/test_auth.py::test_login", ...],
            "count": 1,
            "uncovered": {"src/auth.py": [12, 13]},
            "warnings": ["src/old.py is not in the line index; skipping"]
        }
    """

    def to_json(self, selection: Selection, warnings: list[str] | None = None) -> str:
        """Convert a selection to a JSON string.

        Args:
            selection: The query result.
            warnings: Warnings raised while answering the query.

        Returns:
            Pretty-printed JSON string.
        """
        return json.dumps(self._build_report_data(selection, warnings or []), indent=2)

    def _build_report_data(self, selection: Selection, warnings: list[str]) -> dict[str, Any]:
        return {
            'tests': list(selection.tests),
            'count': len(selection.tests),
            'uncovered': {path: lines for path, lines in sorted(selection.uncovered.items())},
            'warnings': list(warnings),
        }
