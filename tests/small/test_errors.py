"""Tests for the error taxonomy and its exit codes."""

from __future__ import annotations

import pytest

from line_test.errors import (
    Cancelled,
    ConfigError,
    CoverageParseError,
    CoverageToolFailure,
    DatabaseMissing,
    DiffParseError,
    LineOutOfRange,
    LineTestError,
    SchemaMismatch,
)


@pytest.mark.parametrize(
    ('error', 'exit_code'),
    [
        (ConfigError('bad'), 2),
        (DatabaseMissing('/p/index.db'), 3),
        (SchemaMismatch('/p/index.db', '0', '1'), 4),
        (CoverageToolFailure('failed'), 5),
        (CoverageParseError('bad', report='r'), 6),
        (DiffParseError('bad'), 7),
        (LineOutOfRange('a.py', 9, 'range', 3), 8),
        (Cancelled(), 130),
    ],
)
def test_each_error_kind_has_its_own_exit_code(error, exit_code):
    assert isinstance(error, LineTestError)
    assert error.exit_code == exit_code


def test_coverage_tool_failure_carries_diagnostics():
    error = CoverageToolFailure(
        'coverage runner exited with an error',
        test_id='t.py::a',
        command=['pytest', 't.py::a'],
        returncode=2,
        stderr='ImportError',
    )

    message = str(error)
    assert 't.py::a' in message
    assert 'pytest t.py::a' in message
    assert 'exit status: 2' in message
    assert 'ImportError' in message


def test_line_out_of_range_messages_distinguish_reasons():
    assert 'out of range (file has 3 lines)' in str(LineOutOfRange('a.py', 9, 'range', 3))
    assert '--refresh' in str(LineOutOfRange('a.py', 1, 'stale', 3))
    assert 'not in the line index' in str(LineOutOfRange('a.py', 1, 'unindexed'))


def test_schema_mismatch_suggests_rebuild():
    assert '--build' in str(SchemaMismatch('/p/index.db', None, '1'))
