"""
Metrics collection for dataset refreshes.

This module provides RefreshMetrics, a dataclass that records what a single
refresh did:
- Which dataset (family, OS version) and source file it covered
- Whether it was skipped because the stored stamp was already current
- Whether an existing dataset was replaced
- Rows deleted and inserted per table

Design decisions:
- One metrics object per refresh call, returned to the caller
- Defaultdict used for automatic initialization of per-table counters
- Serializable to_dict() for logging and reporting
"""
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass
class RefreshMetrics:
    """
    Outcome of one refresh of a (family, os_version) dataset.
    """
    family: str
    os_version: str
    file_name: str
    started_at: datetime
    completed_at: Optional[datetime] = None

    skipped: bool = False
    replaced: bool = False

    # Key: table name, Value: row count
    rows_deleted: Dict[str, int] = field(default_factory=lambda: defaultdict(int))
    rows_inserted: Dict[str, int] = field(default_factory=lambda: defaultdict(int))

    def record_deleted(self, table: str, count: int):
        self.rows_deleted[table] += count

    def record_inserted(self, table: str, count: int):
        self.rows_inserted[table] += count

    @property
    def definitions_inserted(self) -> int:
        return self.rows_inserted.get("definitions", 0)

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert metrics to dictionary for JSON serialization.

        Returns:
            Dictionary with ISO timestamps and plain-dict counters
        """
        return {
            "family": self.family,
            "os_version": self.os_version,
            "file_name": self.file_name,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "skipped": self.skipped,
            "replaced": self.replaced,
            "rows_deleted": dict(self.rows_deleted),
            "rows_inserted": dict(self.rows_inserted),
        }
