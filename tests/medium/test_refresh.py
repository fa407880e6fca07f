"""Integration tests for refreshing the line index."""

from __future__ import annotations

import threading
import time
from typing import TYPE_CHECKING

import pytest

from line_test.errors import Cancelled, DatabaseMissing, LineOutOfRange
from line_test.index.database import LineIndexDatabase


if TYPE_CHECKING:
    from conftest import FakeProject

    from line_test.context import CancellationToken


ONE = 'tests/test_a.py::test_one'
TWO = 'tests/test_a.py::test_two'
THREE = 'tests/test_b.py::test_three'
FOUR = 'tests/test_c.py::test_four'


def cancel_when_started(project: FakeProject, token: CancellationToken, test_id: str) -> threading.Thread:
    """Cancel ``token`` as soon as the fake runner starts ``test_id``."""

    def watch() -> None:
        deadline = time.monotonic() + 30
        while time.monotonic() < deadline and not token.cancelled:
            if test_id in project.runs():
                token.cancel()
                return
            time.sleep(0.02)

    thread = threading.Thread(target=watch, daemon=True)
    thread.start()
    return thread


@pytest.fixture
def built(fake_project: FakeProject) -> FakeProject:
    """The fake project with a freshly built index and no recorded runs."""
    fake_project.database().build()
    fake_project.clear_runs()
    return fake_project


class TestRefreshUpToDate:
    """Tests for refreshing an index that has not drifted."""

    def test_no_changes_runs_nothing_and_writes_nothing(self, built: FakeProject) -> None:
        before = built.index_path.read_bytes()
        mtime = built.index_path.stat().st_mtime_ns

        summary = built.database().refresh()

        assert summary.up_to_date
        assert not summary.written
        assert summary.tests_run == 0
        assert built.runs() == []
        assert built.index_path.read_bytes() == before
        assert built.index_path.stat().st_mtime_ns == mtime

    def test_no_changes_skips_collection(self, built: FakeProject) -> None:
        """The runner is not even asked to collect the suite."""
        (built.root / 'plan.json').write_text('not json')
        assert built.database().refresh().up_to_date

    def test_requires_an_index(self, fake_project: FakeProject) -> None:
        with pytest.raises(DatabaseMissing):
            fake_project.database().refresh()


class TestRefreshChangedFiles:
    """Tests for files edited since the last build."""

    def test_reruns_only_previous_covering_tests(self, built: FakeProject) -> None:
        built.write('src/a.py', 'a1\na2\nA3\na4\na5\n')
        summary = built.database().refresh()
        assert summary.changed == ['src/a.py']
        assert summary.tests_run == 2
        assert sorted(built.runs()) == [ONE, TWO]

    def test_changed_file_becomes_queryable(self, built: FakeProject) -> None:
        built.write('src/a.py', 'a1\na2\nA3\na4\na5\nA6\n')
        built.set_plan(
            tests=[ONE, TWO, THREE],
            coverage={ONE: {'src/a.py': [1, 6]}, TWO: {'src/a.py': [3]}, THREE: {'src/b.py': [2]}},
        )
        database = built.database()
        database.refresh()
        assert database.query_line('src/a.py', 6) == {ONE}
        assert database.query_line('src/a.py', 2) == frozenset()
        assert database.query_line('src/a.py', 3) == {TWO}

    def test_unchanged_files_keep_their_records(self, built: FakeProject) -> None:
        """Coverage a rerun test reports for unchanged files is not applied."""
        built.write('src/a.py', 'a1\na2\nA3\na4\na5\n')
        built.set_plan(
            tests=[ONE, TWO, THREE],
            coverage={ONE: {'src/a.py': [1]}, TWO: {'src/a.py': [3], 'src/b.py': [3]}},
        )
        database = built.database()
        database.refresh()
        assert database.query_line('src/b.py', 1) == {TWO}
        assert database.query_line('src/b.py', 3) == frozenset()

    def test_file_no_test_covered_is_reindexed_without_runs(self, built: FakeProject) -> None:
        built.write('src/c.py', 'c1\n')
        built.database().refresh()
        built.clear_runs()

        built.write('src/c.py', 'c1\nc2\n')
        database = built.database()
        summary = database.refresh()

        assert summary.changed == ['src/c.py']
        assert built.runs() == []
        assert database.query_line('src/c.py', 2) == frozenset()

    def test_refresh_records_timestamp(self, built: FakeProject) -> None:
        built.write('src/b.py', 'b1\nb2\nb3 changed\n')
        database = built.database()
        database.refresh()
        assert database.store.load().refreshed_at is not None


class TestRefreshAddedAndRemovedFiles:
    """Tests for files created or deleted since the last build."""

    def test_new_file_runs_whole_suite(self, built: FakeProject) -> None:
        built.write('src/c.py', 'c1\nc2\n')
        built.set_plan(
            tests=[ONE, TWO, THREE],
            coverage={ONE: {'src/a.py': [1, 2, 3]}, TWO: {'src/a.py': [3, 4]}, THREE: {'src/c.py': [2]}},
        )
        database = built.database()
        summary = database.refresh()
        assert summary.added == ['src/c.py']
        assert sorted(built.runs()) == [ONE, TWO, THREE]
        assert database.query_line('src/c.py', 2) == {THREE}
        assert database.query_line('src/b.py', 1) == {TWO}

    def test_deleted_file_is_dropped(self, built: FakeProject) -> None:
        (built.root / 'src' / 'b.py').unlink()
        database = built.database()
        summary = database.refresh()

        assert summary.removed == ['src/b.py']
        assert summary.written
        assert built.runs() == []
        assert set(database.store.load().files) == {'src/a.py'}
        with pytest.raises(LineOutOfRange) as exc_info:
            database.query_line('src/b.py', 1)
        assert exc_info.value.reason == 'unindexed'


class TestRefreshSuiteChanges:
    """Tests for tests that joined or left the suite."""

    def test_vanished_test_warns_and_is_not_run(self, built: FakeProject) -> None:
        built.write('src/a.py', 'a1\na2\nA3\na4\na5\n')
        built.set_plan(tests=[ONE, THREE], coverage={ONE: {'src/a.py': [1, 3]}, THREE: {'src/b.py': [2]}})
        context = built.context()
        database = LineIndexDatabase(context)

        database.refresh()

        assert built.runs() == [ONE]
        assert any('1 indexed tests no longer exist' in warning for warning in context.warnings)
        assert database.query_line('src/a.py', 3) == {ONE}

    def test_vanished_tests_stay_indexed(self, built: FakeProject) -> None:
        built.write('src/a.py', 'a1\na2\nA3\na4\na5\n')
        built.set_plan(tests=[ONE], coverage={ONE: {'src/a.py': [1]}})
        database = built.database()
        database.refresh()
        assert set(database.store.load().tests) == {ONE, TWO, THREE}

    def test_new_idle_test_joins_the_index(self, built: FakeProject) -> None:
        built.write('src/c.py', 'c1\n')
        built.set_plan(
            tests=[ONE, TWO, THREE, FOUR],
            coverage={
                ONE: {'src/a.py': [1, 2, 3]},
                TWO: {'src/a.py': [3, 4], 'src/b.py': [1]},
                THREE: {'src/b.py': [2]},
            },
        )
        database = built.database()

        summary = database.refresh()

        assert summary.tests_added == 1
        assert FOUR in database.store.load().tests
        assert database.zero_coverage_tests() == [FOUR]

    def test_new_test_runs_with_changed_file(self, built: FakeProject) -> None:
        """A new test's coverage of unchanged files is added to their records."""
        built.write('src/a.py', 'a1\na2\nA3\na4\na5\n')
        built.set_plan(
            tests=[ONE, TWO, THREE, FOUR],
            coverage={
                ONE: {'src/a.py': [1, 2, 3]},
                TWO: {'src/a.py': [3, 4], 'src/b.py': [1]},
                THREE: {'src/b.py': [2]},
                FOUR: {'src/a.py': [5], 'src/b.py': [3]},
            },
        )
        database = built.database()

        database.refresh()

        assert sorted(built.runs()) == [ONE, TWO, FOUR]
        assert database.query_line('src/a.py', 5) == {FOUR}
        assert database.query_line('src/b.py', 3) == {FOUR}
        assert database.query_line('src/b.py', 1) == {TWO}
        assert database.query_line('src/b.py', 2) == {THREE}
        assert database.zero_coverage_tests() == []


class TestRefreshInterrupted:
    """Tests for cancellation during a refresh."""

    def test_cancel_before_start_keeps_old_records(self, built: FakeProject) -> None:
        built.write('src/a.py', 'a1\na2\nA3\na4\na5\n')
        context = built.context()
        context.token.cancel()

        with pytest.raises(Cancelled) as exc_info:
            LineIndexDatabase(context).refresh()

        assert exc_info.value.completed_files == 0
        assert built.runs() == []
        with pytest.raises(LineOutOfRange) as stale:
            built.database().query_line('src/a.py', 1)
        assert stale.value.reason == 'stale'

    def test_files_whose_tests_finished_are_written(self, built: FakeProject) -> None:
        built.write('src/a.py', 'a1\na2\nA3\na4\na5\n')
        built.write('src/b.py', 'b1\nB2\nb3\n')
        built.set_plan(
            tests=[ONE, TWO, THREE],
            coverage={ONE: {'src/a.py': [1]}, TWO: {'src/a.py': [2], 'src/b.py': [1]}, THREE: {'src/b.py': [2]}},
            sleep={THREE: 30},
        )
        context = built.context()
        watcher = cancel_when_started(built, context.token, THREE)

        started = time.monotonic()
        with pytest.raises(Cancelled) as exc_info:
            LineIndexDatabase(context).refresh()
        watcher.join()

        assert time.monotonic() - started < 20
        assert exc_info.value.completed_files == 1
        database = built.database()
        assert database.query_line('src/a.py', 2) == {TWO}
        with pytest.raises(LineOutOfRange) as stale:
            database.query_line('src/b.py', 1)
        assert stale.value.reason == 'stale'

    def test_dry_run_writes_nothing(self, built: FakeProject) -> None:
        built.write('src/a.py', 'a1\na2\nA3\na4\na5\n')
        before = built.index_path.read_bytes()
        summary = built.database(dry_run=True).refresh()
        assert summary.changed == ['src/a.py']
        assert not summary.written
        assert built.runs() == []
        assert built.index_path.read_bytes() == before
