"""line-test: Run tests by the lines they exercise.

line-test records, for every source line of a project, the set of tests
whose execution touched it. After a change, only the tests covering the
changed lines need to run.

Example:
    Build the index once (runs every test under coverage)::

        $ line-test --build

    Bring it up to date after editing some files::

        $ line-test --refresh

    Ask which tests cover a line, or a whole diff::

        $ line-test --line src/auth.py:42
        $ git diff | line-test --diff --run
"""

from __future__ import annotations


__version__ = '0.1.0'
__all__ = ['__version__']
