"""Configuration for the coverage worker pool.

- **Workers**: How many test groups are collected at the same time.

- **Timeout**: Wall-clock limit for a single test under coverage.

- **Grace period**: How long a child gets to exit after being asked to
  terminate (on cancellation or timeout) before it is killed.

Example:
    >>> config = PoolConfig(max_workers=4, timeout=60)
    >>> config.max_workers
    4
"""

from __future__ import annotations

from dataclasses import dataclass, field
import os


def _default_max_workers() -> int:
    """Return the default number of workers."""
    return os.cpu_count() or 4


@dataclass(frozen=True, eq=True)
class PoolConfig:
    """Configuration for the worker pool.

    Attributes:
        max_workers: Maximum number of batches in flight. Defaults to CPU count.
        timeout: Timeout in seconds for one test. Defaults to 300.
        grace_period: Seconds between terminate and kill. Defaults to 5.
        poll_interval: Seconds between cancellation checks while a child runs.
    """

    max_workers: int = field(default_factory=_default_max_workers)
    timeout: float = 300
    grace_period: float = 5.0
    poll_interval: float = 0.1

    def __post_init__(self) -> None:
        """Validate configuration values.

        Raises:
            ValueError: If any configuration value is invalid.
        """
        if self.max_workers <= 0:
            msg = f'max_workers must be positive, got {self.max_workers}'
            raise ValueError(msg)

        if self.timeout <= 0:
            msg = f'timeout must be positive, got {self.timeout}'
            raise ValueError(msg)

        if self.grace_period < 0:
            msg = f'grace_period must not be negative, got {self.grace_period}'
            raise ValueError(msg)

        if self.poll_interval <= 0:
            msg = f'poll_interval must be positive, got {self.poll_interval}'
            raise ValueError(msg)
