"""Discovery of the test suite and the tracked source files.

Tests come from the configured collect command (``pytest --collect-only -q``
by default), which prints one node id per line. Source files come from
``git ls-files`` when the root is a git work tree, and from a directory
walk otherwise; both are filtered with the include and exclude globs.
"""

from __future__ import annotations

import fnmatch
import logging
import shlex
import subprocess
from typing import TYPE_CHECKING

from line_test.errors import Cancelled, CoverageToolFailure
from line_test.index.models import TestRecord
from line_test.parallel.pool import expand_command, forward_output


if TYPE_CHECKING:
    from collections.abc import Iterable

    from line_test.context import RunContext


logger = logging.getLogger(__name__)


def matches_any(path: str, patterns: Iterable[str]) -> bool:
    """Return True if the POSIX ``path`` matches one of the glob ``patterns``.

    ``*`` also matches ``/``; ``**/`` matches zero or more directories.

    Example:
        >>> matches_any('setup.py', ['**/*.py'])
        True
        >>> matches_any('docs/index.md', ['**/*.py'])
        False
    """
    for pattern in patterns:
        if fnmatch.fnmatchcase(path, pattern):
            return True
        if '**/' in pattern and fnmatch.fnmatchcase(path, pattern.replace('**/', '')):
            return True
    return False


def parse_collected_ids(output: str) -> list[str]:
    """Extract test ids from collect-only output.

    A test id is a line that starts without whitespace and whose part
    before the first ``::`` contains no space. Summary lines and blank
    lines are ignored; duplicates keep their first position.

    Example:
        >>> parse_collected_ids('t.py::a\\nt.py::b[x y]\\n\\n2 tests collected in 0.01s\\n')
        ['t.py::a', 't.py::b[x y]']
    """
    ids: dict[str, None] = {}
    for raw in output.splitlines():
        line = raw.rstrip()
        if not line or line[0].isspace() or '::' not in line:
            continue
        if ' ' in line.split('::', 1)[0]:
            continue
        ids.setdefault(line, None)
    return list(ids)


class Discoverer:
    """Finds the tests and the source files of the project under ``context.root``."""

    def __init__(self, context: RunContext) -> None:
        self._context = context

    def discover_tests(self) -> list[TestRecord]:
        """Run the collect command and return the suite in collection order.

        Raises:
            CoverageToolFailure: If the command cannot start or fails.
            Cancelled: If the command was stopped by an interrupt.
        """
        context = self._context
        command = expand_command(
            context.config.collect_command,
            root=context.root,
            extra_args=context.config.extra_args,
        )
        if context.show_commands:
            logger.info('Running: %s', shlex.join(command))
        try:
            result = subprocess.run(  # noqa: S603
                command,
                cwd=context.root,
                capture_output=True,
                text=True,
                errors='replace',
                check=False,
                timeout=context.config.timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            msg = 'could not collect the test suite'
            raise CoverageToolFailure(msg, command=command, stderr=str(exc)) from exc
        forward_output('collect', result.stdout, result.stderr)
        if result.returncode not in context.config.ok_exit_codes:
            if context.token.cancelled:
                raise Cancelled
            msg = 'test collection failed'
            raise CoverageToolFailure(msg, command=command, returncode=result.returncode, stderr=result.stderr)

        tests = [TestRecord.from_id(test_id) for test_id in parse_collected_ids(result.stdout)]
        logger.info('Discovered %d tests', len(tests))
        return tests

    def discover_source_files(self) -> list[str]:
        """Return the tracked source files as sorted root-relative POSIX paths."""
        candidates = self._git_files()
        if candidates is None:
            candidates = self._walk_files()
        config = self._context.config
        build_prefix = f'{config.build_dir.rstrip("/")}/'
        files = sorted(
            path
            for path in candidates
            if not path.startswith(build_prefix)
            and matches_any(path, config.include)
            and not matches_any(path, config.exclude)
        )
        logger.debug('Tracking %d source files', len(files))
        return files

    def _git_files(self) -> list[str] | None:
        try:
            result = subprocess.run(
                ['git', 'ls-files', '-z', '--cached', '--others', '--exclude-standard'],  # noqa: S607
                cwd=self._context.root,
                capture_output=True,
                check=False,
            )
        except OSError:
            return None
        if result.returncode != 0:
            return None
        root = self._context.root
        paths = result.stdout.decode('utf-8', 'surrogateescape').split('\0')
        return [path for path in paths if path and (root / path).is_file()]

    def _walk_files(self) -> list[str]:
        root = self._context.root
        return [
            path.relative_to(root).as_posix()
            for path in root.rglob('*')
            if path.is_file() and not any(part.startswith('.') for part in path.relative_to(root).parts[:-1])
        ]

    def warn_if_index_not_ignored(self) -> None:
        """Warn when git would track the index directory.

        The directory may not exist yet, so both the directory (with a
        trailing slash, to match directory-only patterns) and the index
        file are checked. Does nothing when the root is not a git work tree
        or git is missing.
        """
        context = self._context
        index_path = context.relative_path(context.index_path)
        if index_path is None:
            return
        build_dir = f'{context.config.build_dir.rstrip("/")}/'
        try:
            result = subprocess.run(
                ['git', 'check-ignore', '-q', build_dir, index_path],  # noqa: S607
                cwd=context.root,
                capture_output=True,
                check=False,
            )
        except OSError:
            return
        if result.returncode == 1:
            context.warn(f'{context.config.build_dir} is not ignored by git; add it to .gitignore')
