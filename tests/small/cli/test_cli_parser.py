"""Tests for command-line parsing helpers."""

from __future__ import annotations

import signal
from typing import TYPE_CHECKING

import pytest

from line_test.cli import _split_extra_args, build_parser, cancel_on_interrupt, find_root
from line_test.context import CancellationToken


if TYPE_CHECKING:
    from pathlib import Path


class TestBuildParser:
    """Tests for the argument parser."""

    def test_defaults(self) -> None:
        args = build_parser().parse_args([])
        assert not args.build
        assert args.line is None
        assert args.strip == 1
        assert args.verbose == 0
        assert not args.missing_only

    def test_line_is_repeatable(self) -> None:
        args = build_parser().parse_args(['--line', 'a.py:1', '--line', 'b.py:2-3'])
        assert args.line == ['a.py:1', 'b.py:2-3']

    @pytest.mark.parametrize(
        'argv',
        [
            ['--build', '--refresh'],
            ['--build', '--line', 'a.py:1'],
            ['--diff', '--line', 'a.py:1'],
        ],
    )
    def test_modes_are_exclusive(self, argv: list[str]) -> None:
        with pytest.raises(SystemExit) as exc_info:
            build_parser().parse_args(argv)
        assert exc_info.value.code == 2

    def test_zero_coverage_combines_with_queries(self) -> None:
        args = build_parser().parse_args(['--diff', '--zero-coverage', '-p', '0'])
        assert args.diff
        assert args.zero_coverage
        assert args.strip == 0

    def test_missing_only_with_build(self) -> None:
        args = build_parser().parse_args(['--build', '--missing-only'])
        assert args.build
        assert args.missing_only

    def test_verbosity_counts(self) -> None:
        args = build_parser().parse_args(['-vv', '-q'])
        assert (args.verbose, args.quiet) == (2, 1)


class TestSplitExtraArgs:
    """Tests for separating runner arguments."""

    def test_without_separator(self) -> None:
        assert _split_extra_args(['--build']) == (['--build'], [])

    def test_after_separator(self) -> None:
        assert _split_extra_args(['--build', '--', '-x', '--', '-k', 'y']) == (['--build'], ['-x', '--', '-k', 'y'])


class TestFindRoot:
    """Tests for locating the project root."""

    def test_nearest_pyproject(self, tmp_path: Path) -> None:
        (tmp_path / 'pyproject.toml').write_text('')
        nested = tmp_path / 'src' / 'pkg'
        nested.mkdir(parents=True)
        assert find_root(nested) == tmp_path.resolve()

    def test_git_directory(self, tmp_path: Path) -> None:
        (tmp_path / '.git').mkdir()
        nested = tmp_path / 'src'
        nested.mkdir()
        assert find_root(nested) == tmp_path.resolve()


class TestCancelOnInterrupt:
    """Tests for Ctrl-C handling."""

    def test_first_interrupt_cancels_second_raises(self) -> None:
        token = CancellationToken()
        with cancel_on_interrupt(token):
            handler = signal.getsignal(signal.SIGINT)
            assert callable(handler)
            handler(signal.SIGINT, None)
            assert token.cancelled
            with pytest.raises(KeyboardInterrupt):
                handler(signal.SIGINT, None)

    def test_previous_handler_restored(self) -> None:
        previous = signal.getsignal(signal.SIGINT)
        with cancel_on_interrupt(CancellationToken()):
            assert signal.getsignal(signal.SIGINT) is not previous
        assert signal.getsignal(signal.SIGINT) is previous
