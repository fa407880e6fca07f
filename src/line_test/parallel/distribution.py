"""Test distribution for parallel coverage collection.

Tests are run in batches, one batch per test group (the test module for
pytest node ids). Tests of a batch run one after another on the same
worker; different batches run concurrently.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING


if TYPE_CHECKING:
    from collections.abc import Iterable

    from line_test.index.models import TestRecord


@dataclass
class Batch:
    """The tests of one group, in suite order."""

    group: str
    test_ids: list[str] = field(default_factory=list)

    def __len__(self) -> int:
        """Return the number of tests in the batch."""
        return len(self.test_ids)


class GroupDistribution:
    """Partitions tests into one batch per group.

    Batches are ordered largest first so long groups start early and the
    workers finish at about the same time. Ties keep suite order.

    Example:
        >>> from line_test.index.models import TestRecord
        >>> tests = [TestRecord.from_id(t) for t in ('a.py::x', 'b.py::y', 'b.py::z')]
        >>> [(b.group, b.test_ids) for b in GroupDistribution().distribute(tests)]
        [('b.py', ['b.py::y', 'b.py::z']), ('a.py', ['a.py::x'])]
    """

    def distribute(self, tests: Iterable[TestRecord]) -> list[Batch]:
        """Group ``tests`` into batches.

        Args:
            tests: Tests to run, in suite order. Duplicates are dropped.

        Returns:
            Non-empty batches, largest first.
        """
        batches: dict[str, Batch] = {}
        seen: set[str] = set()
        for record in tests:
            if record.test_id in seen:
                continue
            seen.add(record.test_id)
            batches.setdefault(record.group, Batch(record.group)).test_ids.append(record.test_id)

        return sorted(batches.values(), key=len, reverse=True)
