"""The line index: build, refresh and queries.

LineIndexDatabase ties discovery, the coverage driver and the store
together. A build indexes every tracked file from scratch. A refresh
re-collects only files whose content changed, running only the tests that
covered them before. Queries never return coverage for content other than
what was indexed: a file whose bytes changed is reported as stale.

Each file record is replaced as a unit. Files whose content changed while
their coverage was being collected are not recorded, since the reports may
describe either version.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import time
from typing import TYPE_CHECKING

from line_test.coverage.collector import CoverageCollector
from line_test.diff.models import split_lines
from line_test.discovery import Discoverer
from line_test.errors import Cancelled, CoverageParseError, DatabaseMissing, LineOutOfRange
from line_test.index.hasher import ContentHasher, count_lines
from line_test.index.models import FileRecord, LineIndex, utc_timestamp
from line_test.index.store import IndexStore
from line_test.parallel.driver import CoverageDriver


if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from pathlib import Path

    from line_test.context import RunContext
    from line_test.diff.models import FileDiff
    from line_test.index.models import TestRecord
    from line_test.index.store import FileMeta, IndexReader
    from line_test.parallel.driver import CollectionResult


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Snapshot:
    """Digest and length of a file's bytes at one moment."""

    digest: str
    line_count: int


@dataclass
class BuildSummary:
    """What a build did."""

    files: int = 0
    tests: int = 0
    covered_lines: int = 0
    skipped_files: list[str] = field(default_factory=list)
    duration: float = 0.0
    written: bool = False


@dataclass
class RefreshSummary:
    """What a refresh did."""

    changed: list[str] = field(default_factory=list)
    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    tests_run: int = 0
    tests_added: int = 0
    skipped_files: list[str] = field(default_factory=list)
    duration: float = 0.0
    written: bool = False

    @property
    def up_to_date(self) -> bool:
        """Return True if nothing had drifted."""
        return not (self.changed or self.added or self.removed)


class LineIndexDatabase:
    """Builds, refreshes and queries the line index of one project.

    Args:
        context: The invocation's context.
        driver: Coverage driver; one is created from the context if omitted.
        discoverer: Test and file discovery; created from the context if omitted.
    """

    def __init__(
        self,
        context: RunContext,
        driver: CoverageDriver | None = None,
        discoverer: Discoverer | None = None,
    ) -> None:
        self._context = context
        self._driver = driver if driver is not None else CoverageDriver(context)
        self._discoverer = discoverer if discoverer is not None else Discoverer(context)
        self._store = IndexStore(context.index_path)
        self._hasher = ContentHasher()

    @property
    def store(self) -> IndexStore:
        """The store holding the persisted index."""
        return self._store

    def _snapshot(self, path: str) -> Snapshot | None:
        try:
            data = (self._context.root / path).read_bytes()
        except FileNotFoundError:
            return None
        return Snapshot(self._hasher.hash_bytes(data), count_lines(data))

    def _collect(
        self,
        result: CollectionResult,
        snapshots: dict[str, Snapshot],
    ) -> CoverageCollector:
        """Parse every report and fold the lines of snapshotted files into a collector.

        Raises:
            CoverageParseError: If a report is malformed or names a line
                beyond the end of its file.
        """
        collector = CoverageCollector(normalize_path=self._context.relative_path)
        for test_id, text in result.reports:
            report = collector.parse_report(test_id, text)
            covered = {}
            for path, lines in report.covered_lines().items():
                snapshot = snapshots.get(path)
                if snapshot is None:
                    logger.debug('Ignoring coverage of untracked file %s', path)
                    continue
                beyond = [line for line in lines if line > snapshot.line_count]
                if beyond:
                    msg = f'line {max(beyond)} is beyond the end of the file ({snapshot.line_count} lines)'
                    raise CoverageParseError(msg, report=test_id, source_file=path)
                covered[path] = lines
            collector.record_test_coverage(test_id, covered)
        stats = collector.get_stats()
        logger.debug('Collected %d line entries from %d reports', stats['total_mappings'], stats['total_tests'])
        return collector

    def _unchanged_since(self, snapshots: dict[str, Snapshot], paths: Iterable[str]) -> tuple[list[str], list[str]]:
        """Split ``paths`` into files still matching their snapshot and files that changed."""
        stable: list[str] = []
        changed: list[str] = []
        for path in paths:
            if self._snapshot(path) == snapshots[path]:
                stable.append(path)
            else:
                changed.append(path)
                self._context.warn(f'{path} changed while coverage was being collected; not indexed')
        return stable, changed

    def build(self, *, missing_only: bool = False) -> BuildSummary:
        """Index every tracked file by running the whole suite under coverage.

        The new index replaces the old one only when collection finished.

        Args:
            missing_only: Keep the existing index and run only the suite's
                tests it does not know yet, adding their coverage to the
                indexed files whose content is unchanged.

        Raises:
            DatabaseMissing: If ``missing_only`` is set and no index exists.
            Cancelled: If interrupted; the previous index is left in place.
            CoverageToolFailure: If the runner fails for any test.
            CoverageParseError: If any report is malformed.
        """
        start = time.monotonic()
        context = self._context
        self._discoverer.warn_if_index_not_ignored()
        if missing_only:
            return self._build_missing(start)

        tests = self._discoverer.discover_tests()
        files = self._discoverer.discover_source_files()
        snapshots = {path: snap for path in files if (snap := self._snapshot(path)) is not None}
        logger.info('Building line index for %d files and %d tests', len(snapshots), len(tests))

        result = self._driver.run(tests)
        if result.cancelled:
            msg = 'build interrupted; the previous index was left unchanged'
            raise Cancelled(msg)
        summary = BuildSummary(tests=len(tests))
        if context.dry_run:
            summary.duration = time.monotonic() - start
            return summary

        collector = self._collect(result, snapshots)
        stable, summary.skipped_files = self._unchanged_since(snapshots, sorted(snapshots))

        records = [self._record(path, snapshots[path], collector) for path in stable]
        index = LineIndex(
            files={record.path: record for record in records},
            tests={record.test_id: record for record in tests},
            built_at=utc_timestamp(),
        )
        context.token.raise_if_cancelled()
        self._store.save(index)

        summary.files = len(records)
        summary.covered_lines = sum(len(record.lines) for record in records)
        summary.duration = time.monotonic() - start
        summary.written = True
        logger.info(
            'Indexed %d files (%d covered lines) in %.1fs',
            summary.files,
            summary.covered_lines,
            summary.duration,
        )
        return summary

    def _build_missing(self, start: float) -> BuildSummary:
        context = self._context
        index = self._store.load()
        suite = self._discoverer.discover_tests()
        missing = [record for record in suite if record.test_id not in index.tests]
        summary = BuildSummary(tests=len(missing))
        if not missing:
            logger.info('No tests are missing from the line index')
            summary.duration = time.monotonic() - start
            return summary

        snapshots: dict[str, Snapshot] = {}
        for path, record in sorted(index.files.items()):
            snapshot = self._snapshot(path)
            if snapshot is not None and snapshot.digest == record.digest:
                snapshots[path] = snapshot
        outdated = len(index.files) - len(snapshots)
        if outdated:
            context.warn(
                f'{outdated} indexed files changed since they were indexed; '
                'run `line-test --refresh` to re-collect them'
            )
        logger.info('Collecting coverage for %d tests missing from the line index', len(missing))

        result = self._driver.run(missing)
        if result.cancelled:
            msg = 'build interrupted; the previous index was left unchanged'
            raise Cancelled(msg)
        if context.dry_run:
            summary.duration = time.monotonic() - start
            return summary

        collector = self._collect(result, snapshots)
        updated = self._merged_records(index, collector, snapshots)
        context.token.raise_if_cancelled()
        self._store.save(index.with_files(updated, added_tests=missing))

        summary.files = len(updated)
        summary.covered_lines = len(collector.coverage_map)
        summary.duration = time.monotonic() - start
        summary.written = True
        logger.info('Added %d tests to the line index in %.1fs', len(missing), summary.duration)
        return summary

    def _merged_records(
        self,
        index: LineIndex,
        collector: CoverageCollector,
        snapshots: dict[str, Snapshot],
        test_ids: set[str] | None = None,
    ) -> list[FileRecord]:
        """Add collected coverage to the records of files whose content is unchanged.

        Only the tests in ``test_ids`` (all collected tests when None) are
        added. Files whose content changed during collection keep their
        records.
        """
        extras: dict[str, dict[int, frozenset[str]]] = {}
        for path in sorted(snapshots):
            lines = collector.coverage_map.lines_for_file(path)
            if test_ids is not None:
                lines = {line: tests & test_ids for line, tests in lines.items() if tests & test_ids}
            if lines:
                extras[path] = lines
        stable, _ = self._unchanged_since(snapshots, extras)
        return [index.files[path].with_tests(extras[path]) for path in stable]

    @staticmethod
    def _record(path: str, snapshot: Snapshot, collector: CoverageCollector) -> FileRecord:
        return FileRecord(
            path=path,
            digest=snapshot.digest,
            line_count=snapshot.line_count,
            lines=collector.coverage_map.lines_for_file(path),
        )

    def refresh(self) -> RefreshSummary:
        """Bring the index up to date with the working tree.

        Changed files are re-collected with the tests that covered them
        before; new tracked files with the whole suite; deleted files are
        dropped. When nothing changed, nothing runs and nothing is written.

        Tests the index does not know yet are run as well once the suite
        is collected. Each one that finishes joins the index, with its
        coverage of unchanged files added to their records.

        Raises:
            DatabaseMissing: If no index has been built.
            Cancelled: If interrupted. Files whose tests all finished have
                been written; the rest keep their previous records.
            CoverageToolFailure: If the runner fails for any test.
            CoverageParseError: If any report is malformed.
        """
        start = time.monotonic()
        context = self._context
        index = self._store.load()
        summary = RefreshSummary()

        tracked = set(self._discoverer.discover_source_files())
        snapshots: dict[str, Snapshot] = {}
        unchanged: dict[str, Snapshot] = {}
        for path in sorted(tracked | set(index.files)):
            snapshot = self._snapshot(path)
            record = index.files.get(path)
            if snapshot is None:
                if record is not None:
                    summary.removed.append(path)
                continue
            if record is None:
                summary.added.append(path)
            elif snapshot.digest != record.digest:
                summary.changed.append(path)
            else:
                unchanged[path] = snapshot
                continue
            snapshots[path] = snapshot

        if summary.up_to_date:
            logger.info('Line index is up to date')
            summary.duration = time.monotonic() - start
            return summary

        logger.info(
            'Refreshing line index: %d changed, %d new, %d deleted files',
            len(summary.changed),
            len(summary.added),
            len(summary.removed),
        )
        required: dict[str, set[str]] = {}
        to_run: list[TestRecord] = []
        new_tests: list[TestRecord] = []
        if snapshots:
            suite = self._discoverer.discover_tests()
            suite_ids = {record.test_id for record in suite}
            vanished = sorted(set(index.tests) - suite_ids)
            if vanished:
                context.warn(
                    f'{len(vanished)} indexed tests no longer exist (e.g. {vanished[0]}); '
                    'run `line-test --build` to drop them from the index'
                )
            for path in summary.changed:
                required[path] = set(index.files[path].covering_tests()) & suite_ids
            for path in summary.added:
                required[path] = set(suite_ids)
            new_tests = [record for record in suite if record.test_id not in index.tests]
            wanted = set().union(*required.values(), (record.test_id for record in new_tests))
            to_run = [record for record in suite if record.test_id in wanted]
        summary.tests_run = len(to_run)

        result = self._driver.run(to_run)
        if context.dry_run:
            summary.duration = time.monotonic() - start
            return summary

        collector = self._collect(result, {**unchanged, **snapshots})
        completed = result.completed_tests
        finished = sorted(path for path, tests in required.items() if tests <= completed)
        stable, summary.skipped_files = self._unchanged_since(snapshots, finished)

        updated = [self._record(path, snapshots[path], collector) for path in stable]
        added = [record for record in new_tests if record.test_id in completed]
        if added:
            added_ids = {record.test_id for record in added}
            merged = self._merged_records(index, collector, unchanged, added_ids)
            logger.info('Adding %d new tests to the line index', len(added))
        else:
            merged = []
        summary.tests_added = len(added)
        self._store.save(index.with_files([*updated, *merged], removed=summary.removed, added_tests=added))
        summary.written = True
        summary.duration = time.monotonic() - start

        if result.cancelled:
            msg = f'refresh interrupted; {len(updated)} of {len(required)} files were updated'
            raise Cancelled(msg, completed_files=len(updated))
        logger.info('Updated %d files in %.1fs', len(updated), summary.duration)
        return summary

    def _check_fresh(self, reader: IndexReader, path: str, line: int) -> FileMeta:
        """Return the record of ``path`` if its content is the indexed content.

        Raises:
            LineOutOfRange: If the file is unindexed or has changed.
        """
        meta = reader.get_file(path)
        if meta is None:
            raise LineOutOfRange(path, line, 'unindexed')
        snapshot = self._snapshot(path)
        if snapshot is None or snapshot.digest != meta.digest:
            raise LineOutOfRange(path, line, 'stale', meta.line_count)
        return meta

    def _normalize(self, path: str | Path, line: int) -> str:
        relative = self._context.relative_path(path)
        if relative is None:
            raise LineOutOfRange(str(path), line, 'unindexed')
        return relative

    def query_line(self, path: str | Path, line: int) -> frozenset[str]:
        """Return the tests that executed ``line`` of ``path``.

        Raises:
            DatabaseMissing: If no index has been built.
            SchemaMismatch: If the index has another format.
            LineOutOfRange: If the file is unindexed or stale, or the line
                is outside 1..line_count.
        """
        return self.query_lines(path, [line])

    def query_lines(self, path: str | Path, lines: Iterable[int]) -> frozenset[str]:
        """Return the union of the tests covering each of ``lines`` of ``path``.

        Raises:
            LineOutOfRange: As query_line(), for the first offending line.
        """
        result: set[str] = set()
        for tests in self.tests_by_line(path, lines).values():
            result.update(tests)
        return frozenset(result)

    def tests_by_line(self, path: str | Path, lines: Iterable[int]) -> dict[int, frozenset[str]]:
        """Return the covering tests of each of ``lines`` of ``path``.

        The file is checked for freshness once for all lines.

        Raises:
            LineOutOfRange: As query_line(), for the first offending line.
        """
        lines = list(lines)
        if not lines:
            return {}
        relative = self._normalize(path, lines[0])
        with self._store.open_reader() as reader:
            meta = self._check_fresh(reader, relative, lines[0])
            return {line: self._line_tests(reader, meta, line) for line in lines}

    @staticmethod
    def _line_tests(reader: IndexReader, meta: FileMeta, line: int) -> frozenset[str]:
        if not 1 <= line <= meta.line_count:
            raise LineOutOfRange(meta.path, line, 'range', meta.line_count)
        return reader.tests_for_line(meta.path, line)

    def query_diff(self, file_diffs: Sequence[FileDiff]) -> frozenset[str]:
        """Return the tests covering any old-side line touched by the diff.

        Lines only added by the diff have no old-side line and select
        nothing. Files that are unindexed, or whose indexed content is not
        the diff's old side, are skipped with a warning.

        Raises:
            DatabaseMissing: If no index has been built.
            SchemaMismatch: If the index has another format.
        """
        result: set[str] = set()
        with self._store.open_reader() as reader:
            for file_diff in file_diffs:
                lines = file_diff.old_side_lines()
                if file_diff.is_new_file or not lines:
                    continue
                relative = self._context.relative_path(file_diff.path)
                meta = reader.get_file(relative) if relative is not None else None
                if meta is None:
                    self._context.warn(f'{file_diff.path} is not in the line index; skipping')
                    continue
                if not self._diff_matches_index(file_diff, meta):
                    self._context.warn(
                        f'{file_diff.path} has changed since it was indexed; skipping '
                        '(run `line-test --refresh`)'
                    )
                    continue
                for line in lines:
                    result.update(self._line_tests(reader, meta, line))
        return frozenset(result)

    def _diff_matches_index(self, file_diff: FileDiff, meta: FileMeta) -> bool:
        """Check that the diff's old side is the content the index describes.

        Either the old path still holds the indexed bytes and agrees with the
        diff's old side, or reverse-applying the diff to the current content
        of the new path reproduces the indexed bytes.
        """
        root = self._context.root
        try:
            old_data: bytes | None = (root / meta.path).read_bytes()
        except FileNotFoundError:
            old_data = None
        if old_data is not None and self._hasher.hash_bytes(old_data) == meta.digest:
            return file_diff.matches_old(split_lines(old_data.decode('utf-8', 'surrogateescape')))

        if file_diff.is_deleted_file:
            current: list[str] = []
        else:
            new_path = self._context.relative_path(file_diff.new_path or meta.path)
            if new_path is None:
                return False
            try:
                current = split_lines((root / new_path).read_bytes().decode('utf-8', 'surrogateescape'))
            except FileNotFoundError:
                return False
        old_lines = file_diff.reconstruct_old(current)
        if old_lines is None:
            return False
        return self._hasher.hash_string(''.join(old_lines)) == meta.digest

    def zero_coverage_tests(self) -> list[str]:
        """Return the suite's tests that cover no indexed line, sorted.

        Raises:
            DatabaseMissing: If no index has been built.
        """
        with self._store.open_reader() as reader:
            return reader.zero_coverage_tests()

    def ensure_exists(self) -> None:
        """Raise DatabaseMissing unless an index has been built."""
        if not self._store.exists():
            raise DatabaseMissing(self._store.index_path)
