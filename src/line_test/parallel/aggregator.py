"""Result aggregation for parallel coverage collection.

This module provides the ResultAggregator class that collects results from
worker threads as batches finish.
"""

from __future__ import annotations

import threading

from line_test.parallel.pool import RunStatus, WorkerResult


class ResultAggregator:
    """Aggregates results from parallel coverage runs.

    Thread-safe collection of results with progress tracking and status counts.

    Attributes:
        total_tests: Total number of tests being run.
        completed: Number of tests that have a result.

    Example:
        >>> aggregator = ResultAggregator(total_tests=100)
        >>> aggregator.add_result(WorkerResult('t.py::a', RunStatus.COMPLETED, report=''))
        >>> aggregator.get_progress()
        (1, 100)
    """

    def __init__(self, total_tests: int) -> None:
        """Initialize the result aggregator.

        Args:
            total_tests: Total number of tests to be run.
        """
        self._total_tests = total_tests
        self._results: list[WorkerResult] = []
        self._lock = threading.Lock()
        self._counts = dict.fromkeys(RunStatus, 0)

    @property
    def total_tests(self) -> int:
        """Return the total number of tests."""
        return self._total_tests

    @property
    def completed(self) -> int:
        """Return the number of results received."""
        with self._lock:
            return len(self._results)

    def count(self, status: RunStatus) -> int:
        """Return how many results have ``status``."""
        with self._lock:
            return self._counts[status]

    def add_result(self, result: WorkerResult) -> None:
        """Add a result from a worker.

        Args:
            result: The worker result to add.
        """
        with self._lock:
            self._results.append(result)
            self._counts[result.status] += 1

    def first_failure(self) -> WorkerResult | None:
        """Return the earliest result that is neither completed nor cancelled."""
        with self._lock:
            for result in self._results:
                if result.status not in (RunStatus.COMPLETED, RunStatus.CANCELLED):
                    return result
        return None

    def get_results(self) -> list[WorkerResult]:
        """Get all results sorted by test ID.

        Returns:
            List of WorkerResult objects sorted by test_id.
        """
        with self._lock:
            return sorted(self._results, key=lambda r: r.test_id)

    def get_progress(self) -> tuple[int, int]:
        """Get progress as (completed, total).

        Returns:
            Tuple of (completed count, total count).
        """
        with self._lock:
            return (len(self._results), self._total_tests)
