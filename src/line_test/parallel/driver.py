"""Coverage driver: runs tests under the coverage runner and gathers reports.

The driver is the only place that launches the external runner. It keeps
at most ``max_workers`` batches in flight, checks the cancellation token
before every dispatch, and hands back the raw report text of every test
that completed. Parsing the reports is left to the caller.
"""

from __future__ import annotations

from collections import deque
from concurrent.futures import FIRST_COMPLETED, Future, wait
from dataclasses import dataclass, field
import logging
import shlex
import subprocess
import tempfile
import threading
from typing import TYPE_CHECKING

from line_test.errors import CoverageToolFailure
from line_test.parallel.aggregator import ResultAggregator
from line_test.parallel.distribution import Batch, GroupDistribution
from line_test.parallel.pool import RunStatus, TestTask, WorkerPool, WorkerResult, expand_command
from line_test.parallel.pool_config import PoolConfig


if TYPE_CHECKING:
    from collections.abc import Sequence

    from line_test.context import RunContext
    from line_test.index.models import TestRecord


logger = logging.getLogger(__name__)

_FAILURE_MESSAGES = {
    RunStatus.FAILED: 'coverage runner exited with an error',
    RunStatus.TIMEOUT: 'coverage runner timed out',
    RunStatus.ERROR: 'coverage runner produced no report',
}


@dataclass
class CollectionResult:
    """Reports gathered by one driver run.

    Attributes:
        reports: (test id, LCOV text) for every test that completed, in the
            order the tests were given.
        cancelled: Cancellation was requested before all tests completed.
    """

    reports: list[tuple[str, str]] = field(default_factory=list)
    cancelled: bool = False

    @property
    def completed_tests(self) -> set[str]:
        """Return the ids of the tests that produced a report."""
        return {test_id for test_id, _ in self.reports}


class CoverageDriver:
    """Runs tests under coverage, one child process per test.

    Args:
        context: The invocation's context (root, config, token, flags).
        pool_config: Worker settings; derived from the context's config
            when omitted.
    """

    def __init__(self, context: RunContext, pool_config: PoolConfig | None = None) -> None:
        self._context = context
        if pool_config is None:
            config = context.config
            if config.workers is not None:
                pool_config = PoolConfig(max_workers=config.workers, timeout=config.timeout)
            else:
                pool_config = PoolConfig(timeout=config.timeout)
        self._pool_config = pool_config
        self._distribution = GroupDistribution()

    @property
    def pool_config(self) -> PoolConfig:
        """Return the worker settings."""
        return self._pool_config

    def run(self, tests: Sequence[TestRecord]) -> CollectionResult:
        """Run every test in ``tests`` under coverage.

        Args:
            tests: Tests to run; their order decides the order of the
                returned reports.

        Returns:
            The completed reports and whether the run was cancelled.

        Raises:
            CoverageToolFailure: If any test's runner fails, times out or
                writes no report. Outstanding work is stopped first.
        """
        context = self._context
        if not tests:
            return CollectionResult()

        batches = self._distribution.distribute(tests)
        total = sum(len(batch) for batch in batches)
        logger.info('Collecting coverage for %d tests in %d groups', total, len(batches))

        context.index_dir.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(prefix='reports-', dir=context.index_dir) as tmpdir:
            pending = deque(self._make_tasks(batch, tmpdir, offset) for batch, offset in _offsets(batches))

            if context.dry_run:
                for tasks in pending:
                    for task in tasks:
                        logger.info('Would run: %s', shlex.join(task.command))
                return CollectionResult()

            aggregator = self._collect(pending, total)

        logger.debug(
            'Coverage runs finished: %d completed, %d cancelled',
            aggregator.count(RunStatus.COMPLETED),
            aggregator.count(RunStatus.CANCELLED),
        )

        failure = aggregator.first_failure()
        if failure is not None:
            raise CoverageToolFailure(
                _FAILURE_MESSAGES[failure.status],
                test_id=failure.test_id,
                command=failure.command,
                returncode=failure.returncode,
                stderr=failure.stderr,
            )

        position = {record.test_id: i for i, record in enumerate(tests)}
        completed = [r for r in aggregator.get_results() if r.status is RunStatus.COMPLETED]
        completed.sort(key=lambda r: position[r.test_id])
        reports = [(r.test_id, r.report or '') for r in completed]
        cancelled = context.token.cancelled and len(reports) < total
        return CollectionResult(reports=reports, cancelled=cancelled)

    def _make_tasks(self, batch: Batch, tmpdir: str, offset: int) -> list[TestTask]:
        config = self._context.config
        tasks = []
        for n, test_id in enumerate(batch.test_ids, start=offset):
            output = f'{tmpdir}/{n}.info'
            command = expand_command(
                config.coverage_command,
                root=self._context.root,
                test=test_id,
                output=output,
                extra_args=config.extra_args,
            )
            tasks.append(TestTask(test_id, tuple(command), output, f'{tmpdir}/{n}.coverage'))
        return tasks

    def _collect(self, pending: deque[list[TestTask]], total: int) -> ResultAggregator:
        context = self._context
        aggregator = ResultAggregator(total)
        failed = threading.Event()

        def should_stop() -> bool:
            return failed.is_set() or context.token.cancelled

        rootdir = str(context.root)
        ok_exit_codes = frozenset(context.config.ok_exit_codes)
        running: dict[Future[list[WorkerResult]], list[TestTask]] = {}

        with WorkerPool(self._pool_config) as pool:
            while pending or running:
                while pending and len(running) < pool.max_workers and not should_stop():
                    tasks = pending.popleft()
                    if context.show_commands:
                        for task in tasks:
                            logger.info('Running: %s', shlex.join(task.command))
                    running[pool.submit_batch(tasks, rootdir, ok_exit_codes, should_stop)] = tasks
                if not running:
                    break
                done, _ = wait(running, return_when=FIRST_COMPLETED)
                for future in done:
                    del running[future]
                    for result in future.result():
                        aggregator.add_result(result)
                        self._log_result(result, aggregator)
                        if result.status not in (RunStatus.COMPLETED, RunStatus.CANCELLED):
                            failed.set()
        return aggregator

    @staticmethod
    def _log_result(result: WorkerResult, aggregator: ResultAggregator) -> None:
        done, total = aggregator.get_progress()
        if result.status is RunStatus.COMPLETED:
            logger.info('[%d/%d] %s', done, total, result.test_id)
        else:
            logger.info('[%d/%d] %s (%s)', done, total, result.test_id, result.status.value)
        if result.execution_time_ms is not None:
            logger.debug('%s took %.0f ms', result.test_id, result.execution_time_ms)

    def run_selected(self, test_ids: Sequence[str]) -> int:
        """Run the selected tests with the plain runner, in the foreground.

        Args:
            test_ids: Tests to run; ``{tests}`` in run_command expands to them.

        Returns:
            The runner's exit status (0 when there is nothing to run).
        """
        context = self._context
        if not test_ids:
            logger.info('No tests selected; nothing to run')
            return 0
        command = expand_command(
            context.config.run_command,
            root=context.root,
            tests=test_ids,
            extra_args=context.config.extra_args,
        )
        if context.show_commands or context.dry_run:
            logger.info('%s: %s', 'Would run' if context.dry_run else 'Running', shlex.join(command))
        if context.dry_run:
            return 0
        try:
            return subprocess.run(command, cwd=context.root, check=False).returncode  # noqa: S603
        except OSError as exc:
            msg = 'could not start the test runner'
            raise CoverageToolFailure(msg, command=command, stderr=str(exc)) from exc


def _offsets(batches: list[Batch]) -> list[tuple[Batch, int]]:
    """Pair each batch with the index of its first test across all batches."""
    result = []
    offset = 0
    for batch in batches:
        result.append((batch, offset))
        offset += len(batch)
    return result
