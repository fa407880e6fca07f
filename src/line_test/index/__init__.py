"""Index module: the persisted line-to-test mapping.

Provides content hashing for staleness detection, the SQLite store, and the
database that builds, refreshes and queries the index.
"""

from line_test.index.database import LineIndexDatabase
from line_test.index.hasher import ContentHasher
from line_test.index.store import IndexStore


__all__ = ['ContentHasher', 'IndexStore', 'LineIndexDatabase']
