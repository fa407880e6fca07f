"""Reporting module for line-test results.

This module provides reporters for presenting query results and
build/refresh summaries in various formats (console, JSON).
"""

from line_test.reporting.console import ConsoleReporter
from line_test.reporting.json_reporter import JsonReporter


__all__ = ['ConsoleReporter', 'JsonReporter']
