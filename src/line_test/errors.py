"""Error taxonomy for line-test.

Every failure the tool reports to its caller is a subclass of
LineTestError. Each kind carries the context needed to diagnose it (file,
line, command, exit status) and the process exit code the CLI uses for it.
"""

from __future__ import annotations

from typing import TYPE_CHECKING


if TYPE_CHECKING:
    from collections.abc import Sequence


class LineTestError(Exception):
    """Base class for all errors surfaced by line-test."""

    exit_code = 1


class ConfigError(LineTestError):
    """Invalid [tool.line-test] configuration or command-line value."""

    exit_code = 2


class LineSpecError(ConfigError):
    """A --line argument is not of the form PATH:LINES."""


class WarningAsError(LineTestError):
    """A warning was raised while --deny-warnings is in effect."""


class DatabaseMissing(LineTestError):
    """A query was issued before any index was built."""

    exit_code = 3

    def __init__(self, index_path: object) -> None:
        self.index_path = index_path
        super().__init__(f'no line index at {index_path}; run `line-test --build` first')


class SchemaMismatch(LineTestError):
    """The on-disk index has an incompatible (or unreadable) format."""

    exit_code = 4

    def __init__(self, index_path: object, found: str | None, expected: str) -> None:
        self.index_path = index_path
        self.found = found
        self.expected = expected
        super().__init__(
            f'line index at {index_path} has schema version {found or "unknown"}, '
            f'expected {expected}; rebuild it with `line-test --build`'
        )


class CoverageToolFailure(LineTestError):
    """The external coverage runner failed or produced no usable report."""

    exit_code = 5

    def __init__(
        self,
        message: str,
        *,
        test_id: str | None = None,
        command: Sequence[str] | None = None,
        returncode: int | None = None,
        stderr: str = '',
    ) -> None:
        self.test_id = test_id
        self.command = list(command) if command is not None else None
        self.returncode = returncode
        self.stderr = stderr
        parts = [message]
        if test_id is not None:
            parts.append(f'test: {test_id}')
        if command is not None:
            parts.append(f'command: {" ".join(command)}')
        if returncode is not None:
            parts.append(f'exit status: {returncode}')
        if stderr:
            parts.append(f'stderr:\n{stderr}')
        super().__init__('\n'.join(parts))


class CoverageParseError(LineTestError):
    """A coverage report is malformed or truncated."""

    exit_code = 6

    def __init__(
        self,
        message: str,
        *,
        report: str,
        source_file: str | None = None,
        line_number: int | None = None,
    ) -> None:
        self.report = report
        self.source_file = source_file
        self.line_number = line_number
        location = report if line_number is None else f'{report}:{line_number}'
        detail = f' (source file {source_file})' if source_file else ''
        super().__init__(f'{location}: {message}{detail}')


class DiffParseError(LineTestError):
    """Unified-diff input does not follow the diff grammar."""

    exit_code = 7

    def __init__(self, message: str, *, line_number: int | None = None) -> None:
        self.line_number = line_number
        prefix = f'diff line {line_number}: ' if line_number is not None else ''
        super().__init__(f'{prefix}{message}')


class LineOutOfRange(LineTestError):
    """A queried line is beyond the file's recorded length, or the file is not indexed.

    Attributes:
        path: The queried file.
        line: The queried line number.
        reason: One of 'range', 'unindexed' or 'stale'.
    """

    exit_code = 8

    def __init__(self, path: str, line: int, reason: str, line_count: int | None = None) -> None:
        self.path = path
        self.line = line
        self.reason = reason
        self.line_count = line_count
        if reason == 'range':
            msg = f'{path}:{line}: line out of range (file has {line_count} lines)'
        elif reason == 'stale':
            msg = f'{path}:{line}: file changed since it was indexed; run `line-test --refresh`'
        else:
            msg = f'{path}:{line}: file is not in the line index'
        super().__init__(msg)


class Cancelled(LineTestError):
    """A build or refresh was interrupted by the user."""

    exit_code = 130

    def __init__(self, message: str = 'interrupted', *, completed_files: int = 0) -> None:
        self.completed_files = completed_files
        super().__init__(message)
