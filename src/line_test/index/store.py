"""SQLite persistence for the line index.

The IndexStore writes a complete index to a staging file next to the live
one and renames it into place, so readers only ever see the previous or the
next index, never a partial one. Queries go through an IndexReader that
opens the live file read-only and looks lines up without loading the whole
index.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import os
import sqlite3
from typing import TYPE_CHECKING

from line_test.errors import DatabaseMissing, SchemaMismatch
from line_test.index.models import SCHEMA_VERSION, FileRecord, LineIndex, TestRecord


if TYPE_CHECKING:
    from pathlib import Path


logger = logging.getLogger(__name__)

_SCHEMA = """
    CREATE TABLE meta (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL
    );
    CREATE TABLE tests (
        test_id TEXT PRIMARY KEY,
        test_group TEXT NOT NULL
    );
    CREATE TABLE files (
        path TEXT PRIMARY KEY,
        digest TEXT NOT NULL,
        line_count INTEGER NOT NULL
    );
    CREATE TABLE coverage (
        path TEXT NOT NULL REFERENCES files (path),
        line INTEGER NOT NULL,
        test_id TEXT NOT NULL,
        PRIMARY KEY (path, line, test_id)
    ) WITHOUT ROWID;
"""

_README = """\
This directory is managed by line-test and holds the line-to-test index.
It can be deleted at any time and rebuilt with `line-test --build`.
It should not be committed to version control.
"""


@dataclass(frozen=True)
class FileMeta:
    """Digest and length of an indexed file, without its line entries."""

    path: str
    digest: str
    line_count: int


def _read_schema_version(conn: sqlite3.Connection, index_path: Path) -> None:
    try:
        row = conn.execute("SELECT value FROM meta WHERE key = 'schema_version'").fetchone()
    except sqlite3.DatabaseError:
        raise SchemaMismatch(index_path, None, SCHEMA_VERSION) from None
    found = row[0] if row is not None else None
    if found != SCHEMA_VERSION:
        raise SchemaMismatch(index_path, found, SCHEMA_VERSION)


class IndexReader:
    """Read-only view of a persisted index.

    Example:
        >>> with IndexReader(Path('.line-test/line-test/index.db')) as reader:  # doctest: +SKIP
        ...     reader.tests_for_line('src/auth.py', 10)
        frozenset({'tests/test_auth.py::test_login'})
    """

    def __init__(self, index_path: Path) -> None:
        """Open the index and check its schema version.

        Raises:
            DatabaseMissing: If no index exists at ``index_path``.
            SchemaMismatch: If the file is not an index of this version.
        """
        if not index_path.is_file():
            raise DatabaseMissing(index_path)
        self._index_path = index_path
        try:
            self._conn = sqlite3.connect(f'{index_path.resolve().as_uri()}?mode=ro', uri=True)
        except sqlite3.DatabaseError:
            raise SchemaMismatch(index_path, None, SCHEMA_VERSION) from None
        try:
            _read_schema_version(self._conn, index_path)
        except SchemaMismatch:
            self._conn.close()
            raise

    def get_file(self, path: str) -> FileMeta | None:
        """Return the digest and length recorded for ``path``, or None."""
        row = self._conn.execute(
            'SELECT digest, line_count FROM files WHERE path = ?',
            (path,),
        ).fetchone()
        if row is None:
            return None
        return FileMeta(path=path, digest=row[0], line_count=row[1])

    def tests_for_line(self, path: str, line: int) -> frozenset[str]:
        """Return the tests recorded as covering one line."""
        cursor = self._conn.execute(
            'SELECT test_id FROM coverage WHERE path = ? AND line = ?',
            (path, line),
        )
        return frozenset(row[0] for row in cursor.fetchall())

    def zero_coverage_tests(self) -> list[str]:
        """Return the suite's tests that cover no indexed line, sorted."""
        cursor = self._conn.execute(
            'SELECT test_id FROM tests WHERE test_id NOT IN (SELECT DISTINCT test_id FROM coverage) ORDER BY test_id'
        )
        return [row[0] for row in cursor.fetchall()]

    def read_all(self) -> LineIndex:
        """Load the whole index into memory.

        Raises:
            SchemaMismatch: If a table is missing or unreadable.
        """
        try:
            meta = self.meta()
            tests = {
                test_id: TestRecord(test_id=test_id, group=group)
                for test_id, group in self._conn.execute('SELECT test_id, test_group FROM tests')
            }
            lines: dict[str, dict[int, set[str]]] = {}
            for path, line, test_id in self._conn.execute('SELECT path, line, test_id FROM coverage'):
                lines.setdefault(path, {}).setdefault(line, set()).add(test_id)
            files = {
                path: FileRecord(
                    path=path,
                    digest=digest,
                    line_count=line_count,
                    lines={line: frozenset(ids) for line, ids in lines.get(path, {}).items()},
                )
                for path, digest, line_count in self._conn.execute('SELECT path, digest, line_count FROM files')
            }
        except sqlite3.DatabaseError:
            raise SchemaMismatch(self._index_path, None, SCHEMA_VERSION) from None
        return LineIndex(
            files=files,
            tests=tests,
            built_at=meta.get('built_at', ''),
            refreshed_at=meta.get('refreshed_at'),
            schema_version=meta['schema_version'],
        )

    def meta(self) -> dict[str, str]:
        """Return the metadata table as a dict."""
        return dict(self._conn.execute('SELECT key, value FROM meta').fetchall())

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    def __enter__(self) -> IndexReader:
        """Context manager entry."""
        return self

    def __exit__(
        self,
        _exc_type: type[BaseException] | None,
        _exc_val: BaseException | None,
        _exc_tb: object,
    ) -> None:
        """Context manager exit - closes the connection."""
        self.close()


class IndexStore:
    """Loads and atomically replaces the index file.

    Args:
        index_path: Location of the live index. Its parent directory is
            created on the first save.
    """

    def __init__(self, index_path: Path) -> None:
        self._index_path = index_path

    @property
    def index_path(self) -> Path:
        """Location of the live index."""
        return self._index_path

    def exists(self) -> bool:
        """Return True if an index has been written."""
        return self._index_path.is_file()

    def open_reader(self) -> IndexReader:
        """Open the live index for queries."""
        return IndexReader(self._index_path)

    def load(self) -> LineIndex:
        """Load the whole index into memory.

        Raises:
            DatabaseMissing: If no index has been built.
            SchemaMismatch: If the file is unreadable or of another version.
        """
        with self.open_reader() as reader:
            return reader.read_all()

    def save(self, index: LineIndex) -> None:
        """Write ``index`` to a staging file, then rename it over the live one.

        Rows are inserted in sorted order so equal indexes produce equal
        files. If writing fails the live index is left untouched.
        """
        directory = self._index_path.parent
        directory.mkdir(parents=True, exist_ok=True)
        readme = directory / 'README.txt'
        if not readme.exists():
            readme.write_text(_README, encoding='utf-8')

        staging = self._index_path.with_name(f'{self._index_path.name}.{os.getpid()}.staging')
        staging.unlink(missing_ok=True)
        try:
            conn = sqlite3.connect(str(staging))
            try:
                self._write(conn, index)
            finally:
                conn.close()
            os.replace(staging, self._index_path)
        except BaseException:
            staging.unlink(missing_ok=True)
            raise
        logger.debug('Wrote line index with %d files to %s', len(index.files), self._index_path)

    @staticmethod
    def _write(conn: sqlite3.Connection, index: LineIndex) -> None:
        conn.executescript(_SCHEMA)
        meta = {'schema_version': index.schema_version, 'built_at': index.built_at}
        if index.refreshed_at is not None:
            meta['refreshed_at'] = index.refreshed_at
        conn.executemany('INSERT INTO meta (key, value) VALUES (?, ?)', sorted(meta.items()))
        conn.executemany(
            'INSERT INTO tests (test_id, test_group) VALUES (?, ?)',
            sorted((record.test_id, record.group) for record in index.tests.values()),
        )
        conn.executemany(
            'INSERT INTO files (path, digest, line_count) VALUES (?, ?, ?)',
            sorted((record.path, record.digest, record.line_count) for record in index.files.values()),
        )
        conn.executemany(
            'INSERT INTO coverage (path, line, test_id) VALUES (?, ?, ?)',
            sorted(
                (path, line, test_id)
                for path, record in index.files.items()
                for line, tests in record.lines.items()
                for test_id in tests
            ),
        )
        conn.commit()

