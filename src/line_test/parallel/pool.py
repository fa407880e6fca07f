"""Worker pool running tests under coverage.

This module provides the WorkerPool class that runs batches of tests on a
pool of threads. Each test runs in its own child process so its coverage
report belongs to that test alone; the thread only supervises the child,
which lets it stop the child as soon as cancellation is requested.
"""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
import logging
import os
from pathlib import Path
import subprocess
import sys
import time
from typing import TYPE_CHECKING, Self

from line_test.parallel.pool_config import PoolConfig


if TYPE_CHECKING:
    from collections.abc import Callable, Sequence


logger = logging.getLogger(__name__)

_PLACEHOLDERS = ('{python}', '{root}', '{test}', '{output}')


class RunStatus(Enum):
    """Outcome of running one test under coverage."""

    COMPLETED = 'completed'
    FAILED = 'failed'
    TIMEOUT = 'timeout'
    ERROR = 'error'
    CANCELLED = 'cancelled'


@dataclass(frozen=True)
class TestTask:
    """One test to run, with its private output locations.

    Attributes:
        test_id: The test to run.
        command: Fully expanded runner command.
        output_path: Where the runner writes the LCOV report.
        data_file: Private coverage data file for the child.
    """

    __test__ = False  # not a pytest test class

    test_id: str
    command: tuple[str, ...]
    output_path: str
    data_file: str


@dataclass(frozen=True)
class WorkerResult:
    """Result of running one test.

    Attributes:
        test_id: The test that was run.
        status: The outcome.
        report: LCOV text, present only when status is COMPLETED.
        command: The command that ran.
        returncode: Exit status of the child, if it exited.
        stderr: Captured standard error of the child.
        execution_time_ms: Time taken to run the test.
    """

    test_id: str
    status: RunStatus
    report: str | None = None
    command: tuple[str, ...] = ()
    returncode: int | None = None
    stderr: str = ''
    execution_time_ms: float | None = None


def expand_command(
    template: Sequence[str],
    *,
    root: Path | str,
    test: str | None = None,
    output: str | None = None,
    tests: Sequence[str] = (),
    extra_args: Sequence[str] = (),
) -> list[str]:
    """Expand a runner command template.

    ``{tests}`` as a whole argument expands to one argument per test. The
    other placeholders are replaced inside arguments; any other braces are
    left alone.

    Example:
        >>> expand_command(['pytest', '{test}', '--out={output}'], root='/p', test='t.py::a', output='r.info')
        ['pytest', 't.py::a', '--out=r.info']
    """
    values = {
        '{python}': sys.executable,
        '{root}': str(root),
        '{test}': test or '',
        '{output}': output or '',
    }
    command: list[str] = []
    for arg in template:
        if arg == '{tests}':
            command.extend(tests)
            continue
        for placeholder in _PLACEHOLDERS:
            arg = arg.replace(placeholder, values[placeholder])
        command.append(arg)
    command.extend(extra_args)
    return command


def forward_output(label: str, stdout: str | None, stderr: str | None) -> None:
    """Log a child's output line by line at debug level."""
    if not logger.isEnabledFor(logging.DEBUG):
        return
    for text in (stdout, stderr):
        for line in (text or '').splitlines():
            logger.debug('%s: %s', label, line)


def _terminate(proc: subprocess.Popen[str], grace_period: float) -> str:
    """Terminate ``proc``, killing it after ``grace_period``; return its stderr."""
    proc.terminate()
    try:
        _, stderr = proc.communicate(timeout=grace_period)
    except subprocess.TimeoutExpired:
        proc.kill()
        _, stderr = proc.communicate()
    return stderr or ''


def _run_test_with_coverage(
    task: TestTask,
    rootdir: str,
    ok_exit_codes: frozenset[int],
    config: PoolConfig,
    should_stop: Callable[[], bool],
) -> WorkerResult:
    """Run one test under coverage in a child process.

    The child runs in its own session, so a terminal interrupt reaches only
    this process, which then stops the child through ``should_stop``. A
    child that exits unsuccessfully while ``should_stop`` is True counts as
    cancelled rather than failed.

    Args:
        task: The test and its output locations.
        rootdir: Working directory of the child.
        ok_exit_codes: Exit statuses that count as success.
        config: Timeout, grace period and poll interval.
        should_stop: Polled while the child runs; True stops it.

    Returns:
        WorkerResult with the outcome and, on success, the report text.
    """
    start_time = time.monotonic()

    env = os.environ.copy()
    env['COVERAGE_FILE'] = task.data_file

    def elapsed() -> float:
        return (time.monotonic() - start_time) * 1000

    try:
        proc = subprocess.Popen(  # noqa: S603
            task.command,
            cwd=rootdir,
            env=env,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            errors='replace',
            start_new_session=True,
        )
    except OSError as exc:
        return WorkerResult(
            test_id=task.test_id,
            status=RunStatus.ERROR,
            command=task.command,
            stderr=str(exc),
            execution_time_ms=elapsed(),
        )

    deadline = start_time + config.timeout
    while True:
        try:
            stdout, stderr = proc.communicate(timeout=config.poll_interval)
            break
        except subprocess.TimeoutExpired:
            if should_stop():
                stderr = _terminate(proc, config.grace_period)
                return WorkerResult(
                    test_id=task.test_id,
                    status=RunStatus.CANCELLED,
                    command=task.command,
                    stderr=stderr,
                    execution_time_ms=elapsed(),
                )
            if time.monotonic() >= deadline:
                stderr = _terminate(proc, config.grace_period)
                return WorkerResult(
                    test_id=task.test_id,
                    status=RunStatus.TIMEOUT,
                    command=task.command,
                    stderr=stderr,
                    execution_time_ms=elapsed(),
                )

    forward_output(task.test_id, stdout, stderr)

    if proc.returncode not in ok_exit_codes:
        return WorkerResult(
            test_id=task.test_id,
            status=RunStatus.CANCELLED if should_stop() else RunStatus.FAILED,
            command=task.command,
            returncode=proc.returncode,
            stderr=stderr,
            execution_time_ms=elapsed(),
        )

    try:
        report = Path(task.output_path).read_text(encoding='utf-8', errors='surrogateescape')
    except FileNotFoundError:
        return WorkerResult(
            test_id=task.test_id,
            status=RunStatus.ERROR,
            command=task.command,
            returncode=proc.returncode,
            stderr=stderr or f'no coverage report written to {task.output_path}',
            execution_time_ms=elapsed(),
        )
    return WorkerResult(
        test_id=task.test_id,
        status=RunStatus.COMPLETED,
        report=report,
        command=task.command,
        returncode=proc.returncode,
        stderr=stderr,
        execution_time_ms=elapsed(),
    )


def _run_batch(
    tasks: Sequence[TestTask],
    rootdir: str,
    ok_exit_codes: frozenset[int],
    config: PoolConfig,
    should_stop: Callable[[], bool],
) -> list[WorkerResult]:
    """Run the tests of one batch in order.

    Stops at the first test that does not complete, and before starting a
    test once ``should_stop`` returns True.
    """
    results: list[WorkerResult] = []
    for task in tasks:
        if should_stop():
            break
        result = _run_test_with_coverage(task, rootdir, ok_exit_codes, config, should_stop)
        results.append(result)
        if result.status is not RunStatus.COMPLETED:
            break
    return results


class WorkerPool:
    """Manages a pool of threads supervising coverage runs.

    Attributes:
        max_workers: Maximum number of batches running at once.

    Example:
        >>> with WorkerPool(PoolConfig(max_workers=4)) as pool:
        ...     # Submit batches to pool
        ...     pass
    """

    def __init__(self, config: PoolConfig | None = None) -> None:
        """Initialize the worker pool.

        Args:
            config: Pool settings. Defaults to PoolConfig().
        """
        self._config = config if config is not None else PoolConfig()
        self._executor: ThreadPoolExecutor | None = None
        self._shutdown_called = False

    @property
    def max_workers(self) -> int:
        """Return the maximum number of workers."""
        return self._config.max_workers

    def __enter__(self) -> Self:
        """Enter the context manager, starting the worker pool."""
        self._executor = ThreadPoolExecutor(max_workers=self._config.max_workers, thread_name_prefix='line-test')
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Exit the context manager, shutting down the pool."""
        self.shutdown()

    def shutdown(self) -> None:
        """Shutdown the worker pool, waiting for running batches to finish."""
        if self._shutdown_called:
            return

        self._shutdown_called = True
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def submit_batch(
        self,
        tasks: Sequence[TestTask],
        rootdir: str,
        ok_exit_codes: frozenset[int],
        should_stop: Callable[[], bool],
    ) -> Future[list[WorkerResult]]:
        """Submit a batch of tests for execution.

        Args:
            tasks: Tests of one batch, run in order on one thread.
            rootdir: Working directory for the children.
            ok_exit_codes: Exit statuses that count as success.
            should_stop: Polled between tests and while a child runs.

        Returns:
            Future that will contain the batch's WorkerResults when complete.

        Raises:
            RuntimeError: If the pool is not active (not in context).
        """
        if self._executor is None:
            msg = 'WorkerPool is not active. Use as context manager.'
            raise RuntimeError(msg)

        return self._executor.submit(
            _run_batch,
            tasks,
            rootdir,
            ok_exit_codes,
            self._config,
            should_stop,
        )
