"""Shared pytest configuration and fixtures for line-test tests."""

from __future__ import annotations

from dataclasses import dataclass
import json
from pathlib import Path
import textwrap
from typing import Any

import pytest

from line_test.config import load_config
from line_test.context import RunContext
from line_test.index.database import LineIndexDatabase


# Register markers for test categories
def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers for test categorization."""
    config.addinivalue_line('markers', 'small: Fast, isolated unit tests (< 100ms)')
    config.addinivalue_line('markers', 'medium: Integration tests with real resources (< 10s)')
    config.addinivalue_line('markers', 'large: End-to-end system tests (< 60s)')


# Auto-mark tests based on directory
def pytest_collection_modifyitems(
    config: pytest.Config,  # noqa: ARG001
    items: list[pytest.Item],
) -> None:
    """Automatically apply markers based on test directory."""
    for item in items:
        # Get the path parts from the item's path
        item_path = Path(str(item.fspath))
        path_parts = item_path.parts

        if 'small' in path_parts:
            item.add_marker(pytest.mark.small)
        elif 'medium' in path_parts:
            item.add_marker(pytest.mark.medium)
        elif 'large' in path_parts:
            item.add_marker(pytest.mark.large)


# A stand-in for pytest + pytest-cov. It reads plan.json from the project
# root: the suite, the lines each test covers, tests that fail or hang, source
# edits a test makes while it runs, and tests that press Ctrl-C on the process
# group of whoever started them.
FAKE_RUNNER = textwrap.dedent(
    """\
    import json
    import os
    import signal
    import sys
    import time
    from pathlib import Path

    plan = json.loads(Path('plan.json').read_text())
    mode = sys.argv[1]

    if mode == 'collect':
        for test_id in plan['tests']:
            print(test_id)
        print()
        print(f"{len(plan['tests'])} tests collected")
        sys.exit(0)

    if mode == 'run':
        with open('runs.log', 'a') as log:
            log.write('RUN ' + ' '.join(sys.argv[2:]) + '\\n')
        sys.exit(0)

    test_id, output = sys.argv[2], sys.argv[3]
    with open('runs.log', 'a') as log:
        log.write(test_id + '\\n')
    print('ran ' + test_id)
    if test_id in plan.get('interrupt', []):
        os.killpg(os.getpgid(os.getppid()), signal.SIGINT)
        time.sleep(30)
    time.sleep(plan.get('sleep', {}).get(test_id, 0))
    for path, text in plan.get('edit', {}).get(test_id, {}).items():
        Path(path).write_text(text)
    if test_id in plan.get('fail', []):
        sys.stderr.write('boom\\n')
        sys.exit(1)
    if test_id in plan.get('no_report', []):
        sys.exit(0)
    if test_id in plan.get('raw', {}):
        Path(output).write_text(plan['raw'][test_id])
        sys.exit(0)
    records = []
    for path, lines in sorted(plan['coverage'].get(test_id, {}).items()):
        records.append(f'SF:{path}')
        records.extend(f'DA:{line},1' for line in lines)
        records.append('end_of_record')
    Path(output).write_text(''.join(record + '\\n' for record in records))
    """
)

PYPROJECT = textwrap.dedent(
    """\
    [tool.line-test]
    include = ["src/*.py"]
    collect_command = ["{python}", "fake_runner.py", "collect"]
    coverage_command = ["{python}", "fake_runner.py", "cover", "{test}", "{output}"]
    run_command = ["{python}", "fake_runner.py", "run", "{tests}"]
    workers = 1
    timeout = 20
    """
)


@dataclass
class FakeProject:
    """A throwaway project whose test runner is FAKE_RUNNER."""

    root: Path

    def write(self, path: str, text: str) -> Path:
        """Write a file under the root, creating directories."""
        target = self.root / path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(text)
        return target

    def set_plan(
        self,
        tests: list[str],
        coverage: dict[str, dict[str, list[int]]],
        **extra: Any,
    ) -> None:
        """Describe the suite the fake runner pretends to run."""
        plan = {'tests': tests, 'coverage': coverage, **extra}
        (self.root / 'plan.json').write_text(json.dumps(plan))

    def runs(self) -> list[str]:
        """Return the tests run under coverage since the last clear_runs()."""
        log = self.root / 'runs.log'
        if not log.exists():
            return []
        return log.read_text().splitlines()

    def clear_runs(self) -> None:
        """Forget recorded runs."""
        (self.root / 'runs.log').unlink(missing_ok=True)

    def context(self, **kwargs: Any) -> RunContext:
        """Build a RunContext using the project's pyproject.toml."""
        return RunContext(root=self.root, config=load_config(self.root), **kwargs)

    def database(self, **kwargs: Any) -> LineIndexDatabase:
        """Build a LineIndexDatabase over a fresh context."""
        return LineIndexDatabase(self.context(**kwargs))

    @property
    def index_path(self) -> Path:
        """Location of the project's line index."""
        return self.root / '.line-test' / 'line-test' / 'index.db'


@pytest.fixture
def fake_project(tmp_path: Path) -> FakeProject:
    """Create a project with two source files and three tests.

    ``src/a.py`` has five lines and ``src/b.py`` three. test_one covers
    a.py:1-3, test_two covers a.py:3-4 and b.py:1, test_three covers b.py:2.
    """
    project = FakeProject(tmp_path / 'project')
    project.write('pyproject.toml', PYPROJECT)
    project.write('fake_runner.py', FAKE_RUNNER)
    project.write('src/a.py', 'a1\na2\na3\na4\na5\n')
    project.write('src/b.py', 'b1\nb2\nb3\n')
    project.set_plan(
        tests=['tests/test_a.py::test_one', 'tests/test_a.py::test_two', 'tests/test_b.py::test_three'],
        coverage={
            'tests/test_a.py::test_one': {'src/a.py': [1, 2, 3]},
            'tests/test_a.py::test_two': {'src/a.py': [3, 4], 'src/b.py': [1]},
            'tests/test_b.py::test_three': {'src/b.py': [2]},
        },
    )
    return project
