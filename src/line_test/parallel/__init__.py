"""Parallel coverage collection for line-test.

This package provides the components that run tests under coverage:

- CoverageDriver: Dispatches batches and gathers per-test reports
- WorkerPool: Supervises runner child processes on worker threads
- GroupDistribution: Partitions tests into per-group batches
- ResultAggregator: Collects results and progress from workers
"""

from __future__ import annotations

from line_test.parallel.driver import CollectionResult, CoverageDriver
from line_test.parallel.pool_config import PoolConfig


__all__ = ['CollectionResult', 'CoverageDriver', 'PoolConfig']
