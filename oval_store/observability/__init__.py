"""
Observability layer for the OVAL advisory store.

This module provides refresh metrics, integrity checks, and reporting.

Main exports:
- RefreshMetrics: What a single refresh skipped, deleted and inserted
- QualityChecker: Runs integrity checks over the stored aggregate
- QualityCheckResult: Result of a quality check
- QueryReporter: Generates Markdown reports
"""
from .metrics import RefreshMetrics
from .quality_checks import QualityChecker, QualityCheckResult
from .reporter import QueryReporter

__all__ = [
    "RefreshMetrics",
    "QualityChecker",
    "QualityCheckResult",
    "QueryReporter",
]
