"""Unified-diff parsing.

Exports:
    parse_diff: Parse diff text into FileDiff objects
    FileDiff, Hunk, DiffLine, LineKind: The parsed model
"""

from __future__ import annotations

from line_test.diff.models import DiffLine, FileDiff, Hunk, LineKind
from line_test.diff.parser import DiffParser, parse_diff


__all__ = ['DiffLine', 'DiffParser', 'FileDiff', 'Hunk', 'LineKind', 'parse_diff']
