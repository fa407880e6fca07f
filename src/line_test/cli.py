"""Command-line interface for line-test.

Usage::

    line-test --build                 # index every tracked file
    line-test --refresh               # re-index what changed since
    line-test --line src/a.py:10-12   # tests covering those lines
    git diff | line-test --diff       # tests covering the diff's old side
    line-test --zero-coverage         # tests that cover nothing

Arguments after ``--`` are appended to every runner command. The process
exit status tells the error kind apart; see LineTestError.exit_code.
"""

from __future__ import annotations

import argparse
from contextlib import contextmanager
import logging
from pathlib import Path
import signal
import sys
import threading
from typing import TYPE_CHECKING

from line_test import __version__
from line_test.config import load_config, merge_configs
from line_test.context import RunContext
from line_test.coverage.selector import Selection
from line_test.engine import SelectionEngine
from line_test.errors import ConfigError, LineTestError
from line_test.reporting import ConsoleReporter, JsonReporter


if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence

    from line_test.context import CancellationToken


logger = logging.getLogger('line_test')

EXIT_INTERRUPTED = 130


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog='line-test',
        description='Select the tests that exercise given source lines.',
        epilog='Arguments after -- are passed to every test runner command.',
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument('--build', action='store_true', help='Build the line index from scratch')
    mode.add_argument('--refresh', action='store_true', help='Re-index files changed since the last build')
    mode.add_argument(
        '--line',
        action='append',
        metavar='PATH:LINES',
        help='Select tests covering lines, e.g. src/a.py:10-12,40 (repeatable; - reads specs from stdin)',
    )
    mode.add_argument('--diff', action='store_true', help='Select tests covering a unified diff read from stdin')
    parser.add_argument(
        '--zero-coverage',
        action='store_true',
        help='Select tests that cover no indexed line (alone, or added to --line/--diff)',
    )
    parser.add_argument(
        '--missing-only',
        action='store_true',
        help='With --build, keep the index and collect only tests it does not know yet',
    )
    parser.add_argument('--run', action='store_true', help='Run the selected tests instead of listing them')
    parser.add_argument('--json', action='store_true', help='Print the selection as JSON')
    parser.add_argument(
        '-p',
        '--strip',
        type=int,
        default=1,
        metavar='N',
        help='Leading path components to strip from diff paths (default: 1)',
    )
    parser.add_argument('--root', type=Path, help='Project root (default: nearest directory with pyproject.toml or .git)')
    parser.add_argument('--workers', type=int, help='Maximum test groups collected in parallel (default: CPU count)')
    parser.add_argument('--timeout', type=int, help='Seconds one test may run under coverage (default: 300)')
    parser.add_argument('--show-commands', action='store_true', help='Log every runner command before it runs')
    parser.add_argument('--dry-run', action='store_true', help='Log runner commands without running them')
    parser.add_argument('--deny-warnings', action='store_true', help='Treat warnings as errors')
    parser.add_argument(
        '-v', '--verbose', action='count', default=0, help='More logging; -v also shows test runner output'
    )
    parser.add_argument('-q', '--quiet', action='count', default=0, help='Less logging')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    return parser


def find_root(start: Path) -> Path:
    """Return the nearest ancestor of ``start`` holding pyproject.toml or .git.

    Falls back to ``start`` itself.
    """
    start = start.resolve()
    for candidate in (start, *start.parents):
        if (candidate / 'pyproject.toml').is_file() or (candidate / '.git').exists():
            return candidate
    return start


def configure_logging(verbosity: int) -> logging.Handler:
    """Send line-test's log records to stderr at a level chosen by -v/-q.

    Returns:
        The installed handler, for removal once the command is done.
    """
    level = logging.INFO - 10 * verbosity
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter('line-test: %(levelname)s: %(message)s'))
    logger.handlers[:] = [handler]
    logger.setLevel(max(logging.DEBUG, min(level, logging.CRITICAL)))
    logger.propagate = False
    return handler


@contextmanager
def cancel_on_interrupt(token: CancellationToken) -> Iterator[None]:
    """Turn the first Ctrl-C into a cancellation request.

    A second Ctrl-C raises KeyboardInterrupt as usual.
    """
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    previous = signal.getsignal(signal.SIGINT)

    def handler(signum: int, frame: object) -> None:
        if token.cancelled:
            raise KeyboardInterrupt
        logger.warning('Interrupted; stopping running tests (press Ctrl-C again to abort)')
        token.cancel()

    signal.signal(signal.SIGINT, handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def _read_stdin() -> str:
    stream = getattr(sys.stdin, 'buffer', None)
    if stream is not None:
        return stream.read().decode('utf-8', 'surrogateescape')
    return sys.stdin.read()


def _split_extra_args(argv: Sequence[str]) -> tuple[list[str], list[str]]:
    argv = list(argv)
    if '--' in argv:
        index = argv.index('--')
        return argv[:index], argv[index + 1 :]
    return argv, []


def _line_specs(values: list[str]) -> list[str]:
    specs: list[str] = []
    for value in values:
        if value == '-':
            specs.extend(_read_stdin().splitlines())
        else:
            specs.append(value)
    return specs


def _merge(first: Selection, second: Selection) -> Selection:
    return Selection(
        tests=sorted(set(first.tests) | set(second.tests)),
        uncovered={**first.uncovered, **second.uncovered},
    )


def _run(args: argparse.Namespace, extra_args: list[str]) -> int:
    root = args.root.resolve() if args.root is not None else find_root(Path.cwd())
    config = merge_configs(
        load_config(root),
        cli_workers=args.workers,
        cli_timeout=args.timeout,
        cli_extra_args=extra_args,
    )
    context = RunContext(
        root=root,
        config=config,
        deny_warnings=args.deny_warnings,
        show_commands=args.show_commands,
        dry_run=args.dry_run,
    )
    engine = SelectionEngine(context)
    reporter = ConsoleReporter()

    if args.build or args.refresh:
        with cancel_on_interrupt(context.token):
            if args.build:
                summary = engine.build(missing_only=args.missing_only)
                if args.quiet == 0:
                    reporter.write_build_summary(summary)
            else:
                refresh = engine.refresh()
                if args.quiet == 0:
                    reporter.write_refresh_summary(refresh)
        return 0

    selection: Selection | None = None
    if args.line:
        selection = engine.select_lines(_line_specs(args.line))
    elif args.diff:
        selection = engine.select_diff(_read_stdin(), strip=args.strip)
    if args.zero_coverage:
        zero = engine.select_zero_coverage()
        selection = zero if selection is None else _merge(selection, zero)
    if selection is None:
        msg = 'nothing to do; choose one of --build, --refresh, --line, --diff or --zero-coverage'
        raise ConfigError(msg)

    if args.run:
        return engine.run_tests(selection.tests)
    if args.json:
        sys.stdout.write(JsonReporter().to_json(selection, context.warnings) + '\n')
    else:
        reporter.write_selection(selection)
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Run line-test and return the process exit status."""
    own_args, extra_args = _split_extra_args(sys.argv[1:] if argv is None else argv)
    parser = build_parser()
    args = parser.parse_args(own_args)
    if args.zero_coverage and (args.build or args.refresh):
        parser.error('--zero-coverage cannot be combined with --build or --refresh')
    if args.strip < 0:
        parser.error('--strip must not be negative')
    if args.missing_only and not args.build:
        parser.error('--missing-only requires --build')
    handler = configure_logging(args.verbose - args.quiet)

    try:
        return _run(args, extra_args)
    except LineTestError as exc:
        logger.error('%s', exc)
        return exc.exit_code
    except KeyboardInterrupt:
        logger.error('interrupted')
        return EXIT_INTERRUPTED
    finally:
        logger.removeHandler(handler)
        logger.propagate = True


if __name__ == '__main__':
    sys.exit(main())
