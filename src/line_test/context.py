"""Per-invocation context and cancellation.

A RunContext is built once per CLI invocation and handed to every
component, so no component reaches for process-wide state. It owns the
cancellation token that build and refresh observe.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from pathlib import Path
import threading

from line_test.config import LineTestConfig
from line_test.errors import Cancelled, WarningAsError


logger = logging.getLogger(__name__)

INDEX_SUBDIR = 'line-test'
INDEX_FILENAME = 'index.db'


class CancellationToken:
    """Observable, thread-safe cancellation flag.

    The CLI's interrupt handler calls cancel(); the coverage driver polls
    ``cancelled`` between dispatches and while waiting on children.

    Example:
        >>> token = CancellationToken()
        >>> token.cancelled
        False
        >>> token.cancel()
        >>> token.cancelled
        True
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    @property
    def cancelled(self) -> bool:
        """Return True once cancel() has been called."""
        return self._event.is_set()

    def cancel(self) -> None:
        """Request cancellation."""
        self._event.set()

    def raise_if_cancelled(self) -> None:
        """Raise Cancelled if cancellation was requested.

        Raises:
            Cancelled: If cancel() has been called.
        """
        if self.cancelled:
            raise Cancelled


@dataclass
class RunContext:
    """Everything one invocation of line-test needs.

    Attributes:
        root: Project root; all indexed paths are relative to it.
        config: Effective configuration.
        token: Cancellation token for build and refresh.
        deny_warnings: Turn warnings into WarningAsError.
        show_commands: Log every runner command before it runs.
        dry_run: Log runner commands without executing them.
        warnings: Messages warned about so far, in order.
    """

    root: Path
    config: LineTestConfig = field(default_factory=LineTestConfig)
    token: CancellationToken = field(default_factory=CancellationToken)
    deny_warnings: bool = False
    show_commands: bool = False
    dry_run: bool = False
    warnings: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.root = Path(self.root).resolve()

    @property
    def index_dir(self) -> Path:
        """Directory holding the index file."""
        return self.root / self.config.build_dir / INDEX_SUBDIR

    @property
    def index_path(self) -> Path:
        """Path of the persisted index."""
        return self.index_dir / INDEX_FILENAME

    def warn(self, message: str) -> None:
        """Report a warning, or fail under --deny-warnings.

        Args:
            message: Human-readable warning text.

        Raises:
            WarningAsError: If deny_warnings is set.
        """
        if self.deny_warnings:
            raise WarningAsError(message)
        self.warnings.append(message)
        logger.warning('%s', message)

    def relative_path(self, path: str | Path) -> str | None:
        """Normalize ``path`` to a POSIX path relative to the root.

        Returns:
            The relative path, or None if ``path`` lies outside the root.
        """
        candidate = Path(path)
        if not candidate.is_absolute():
            candidate = self.root / candidate
        try:
            return candidate.resolve().relative_to(self.root).as_posix()
        except ValueError:
            return None
