"""Configuration loading for line-test.

This module reads configuration from the [tool.line-test] section of the
project's pyproject.toml and provides sensible defaults when configuration
is absent. Command-line values are merged on top with merge_configs().
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
import tomllib
from typing import TYPE_CHECKING, Any

from line_test.errors import ConfigError


if TYPE_CHECKING:
    from pathlib import Path


DEFAULT_BUILD_DIR = '.line-test'
DEFAULT_INCLUDE = ('**/*.py',)
DEFAULT_EXCLUDE = ('.line-test/**', '.venv/**', 'venv/**', 'build/**', 'dist/**')
DEFAULT_COLLECT_COMMAND = ('{python}', '-m', 'pytest', '--collect-only', '-q')
DEFAULT_COVERAGE_COMMAND = (
    '{python}',
    '-m',
    'pytest',
    '{test}',
    '-q',
    '-p',
    'no:cacheprovider',
    '--cov={root}',
    '--cov-report=lcov:{output}',
)
DEFAULT_RUN_COMMAND = ('{python}', '-m', 'pytest', '{tests}')


@dataclass(frozen=True)
class LineTestConfig:
    """Configuration for line-test.

    Attributes:
        build_dir: Build output directory, relative to the project root. The
            index lives in ``<build_dir>/line-test/index.db``.
        include: Glob patterns selecting tracked source files.
        exclude: Glob patterns removing files from the tracked set.
        collect_command: Command printing one test id per line.
        coverage_command: Command running one test under coverage and writing
            an LCOV report to ``{output}``.
        run_command: Command running the selected tests (``{tests}`` expands
            to all of them).
        workers: Maximum number of test groups collected concurrently.
            None means CPU count.
        timeout: Seconds one test may run under coverage.
        ok_exit_codes: Runner exit statuses that still count as success.
        extra_args: Arguments appended to every runner command.
    """

    build_dir: str = DEFAULT_BUILD_DIR
    include: tuple[str, ...] = DEFAULT_INCLUDE
    exclude: tuple[str, ...] = DEFAULT_EXCLUDE
    collect_command: tuple[str, ...] = DEFAULT_COLLECT_COMMAND
    coverage_command: tuple[str, ...] = DEFAULT_COVERAGE_COMMAND
    run_command: tuple[str, ...] = DEFAULT_RUN_COMMAND
    workers: int | None = None
    timeout: int = 300
    ok_exit_codes: tuple[int, ...] = (0,)
    extra_args: tuple[str, ...] = field(default=())

    def __post_init__(self) -> None:
        """Validate configuration values.

        Raises:
            ConfigError: If any configuration value is invalid.
        """
        if self.workers is not None and self.workers <= 0:
            msg = f'workers must be positive, got {self.workers}'
            raise ConfigError(msg)
        if self.timeout <= 0:
            msg = f'timeout must be positive, got {self.timeout}'
            raise ConfigError(msg)
        if '{test}' not in ' '.join(self.coverage_command):
            msg = 'coverage_command must contain the {test} placeholder'
            raise ConfigError(msg)
        if '{output}' not in ' '.join(self.coverage_command):
            msg = 'coverage_command must contain the {output} placeholder'
            raise ConfigError(msg)
        if not self.collect_command:
            msg = 'collect_command must not be empty'
            raise ConfigError(msg)


def _as_str_tuple(key: str, value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        return (value,)
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        msg = f'[tool.line-test] {key} must be a list of strings'
        raise ConfigError(msg)
    return tuple(value)


def load_config(rootdir: Path) -> LineTestConfig:
    """Load configuration from pyproject.toml.

    Reads the [tool.line-test] section from pyproject.toml in the given
    directory. Returns default configuration if the file or section does
    not exist.

    Args:
        rootdir: Directory containing pyproject.toml.

    Returns:
        LineTestConfig with values from pyproject.toml or defaults.

    Raises:
        ConfigError: If the file cannot be parsed or holds invalid values.
    """
    pyproject_path = rootdir / 'pyproject.toml'

    if not pyproject_path.exists():
        return LineTestConfig()

    try:
        with pyproject_path.open('rb') as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as exc:
        msg = f'{pyproject_path}: {exc}'
        raise ConfigError(msg) from exc

    tool_config = data.get('tool', {}).get('line-test', {})
    known = {f.name for f in fields(LineTestConfig)} - {'extra_args'}
    unknown = sorted(set(tool_config) - known)
    if unknown:
        msg = f'unknown [tool.line-test] keys: {", ".join(unknown)}'
        raise ConfigError(msg)

    values: dict[str, Any] = {}
    for key in ('include', 'exclude', 'collect_command', 'coverage_command', 'run_command'):
        if key in tool_config:
            values[key] = _as_str_tuple(key, tool_config[key])
    if 'build_dir' in tool_config:
        values['build_dir'] = str(tool_config['build_dir'])
    for key in ('workers', 'timeout'):
        if key in tool_config:
            if not isinstance(tool_config[key], int):
                msg = f'[tool.line-test] {key} must be an integer'
                raise ConfigError(msg)
            values[key] = tool_config[key]
    if 'ok_exit_codes' in tool_config:
        codes = tool_config['ok_exit_codes']
        if not isinstance(codes, list) or not all(isinstance(code, int) for code in codes):
            msg = '[tool.line-test] ok_exit_codes must be a list of integers'
            raise ConfigError(msg)
        values['ok_exit_codes'] = tuple(codes)

    return LineTestConfig(**values)


def merge_configs(
    file_config: LineTestConfig,
    cli_workers: int | None = None,
    cli_timeout: int | None = None,
    cli_extra_args: list[str] | None = None,
) -> LineTestConfig:
    """Merge CLI arguments with file configuration.

    CLI arguments take precedence over pyproject.toml configuration.

    Args:
        file_config: Configuration loaded from pyproject.toml.
        cli_workers: Worker count from --workers.
        cli_timeout: Per-test timeout from --timeout.
        cli_extra_args: Arguments given after ``--``.

    Returns:
        LineTestConfig with CLI values overriding file config where provided.
    """
    overrides: dict[str, Any] = {}
    if cli_workers is not None:
        overrides['workers'] = cli_workers
    if cli_timeout is not None:
        overrides['timeout'] = cli_timeout
    if cli_extra_args:
        overrides['extra_args'] = tuple(cli_extra_args)
    return replace(file_config, **overrides)
