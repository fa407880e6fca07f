"""Content hashing for staleness detection.

Content hashing enables index invalidation based on file content rather than
timestamps. A file whose bytes are unchanged keeps its digest, so its line
entries stay trustworthy; any byte change produces a different digest.
"""

from __future__ import annotations

import hashlib


class ContentHasher:
    """Produces content hashes for bytes and strings.

    Uses SHA-256 to produce deterministic hashes that uniquely identify
    content. These hashes are stored next to each file record in the index.

    Example:
        >>> hasher = ContentHasher()
        >>> result = hasher.hash_string('def foo(): return 42')
        >>> len(result) == 64  # SHA-256 produces 64 hex characters
        True
    """

    def hash_bytes(self, data: bytes) -> str:
        """Hash raw bytes and return their hex digest.

        Args:
            data: The bytes to hash.

        Returns:
            A 64-character hexadecimal string (SHA-256 digest).
        """
        return hashlib.sha256(data).hexdigest()

    def hash_string(self, content: str) -> str:
        """Hash a string (UTF-8 encoded, lone surrogates as raw bytes) and return its hex digest.

        Args:
            content: The string content to hash.

        Returns:
            A 64-character hexadecimal string (SHA-256 digest).
        """
        return self.hash_bytes(content.encode('utf-8', 'surrogateescape'))


def count_lines(data: bytes) -> int:
    """Return the number of physical lines in ``data``.

    A trailing line without a final newline still counts; an empty file
    has zero lines.
    """
    return len(data.splitlines())
