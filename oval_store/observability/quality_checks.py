"""
Integrity checks for the stored advisory aggregate.

This module implements QualityChecker, which runs SQL-based validation checks
against the advisory tables, typically after a refresh.

Checks implemented:
- No orphans: every child row's parent id resolves to a live row
  (one check per child table)
- Unique roots: at most one root per (family, os_version)
- One advisory per definition
- Unique fetch meta: at most one stamp per source file

Design decisions:
- Each check returns a QualityCheckResult with pass/fail and details
- Checks are SQL-based (run against database, not Python)
- Orphan checks are driven by a table of (child, parent column, parent)
"""
from dataclasses import dataclass
from typing import Any, Dict, List

# (child table, parent id column, parent table)
PARENT_LINKS = (
    ("definitions", "root_id", "roots"),
    ("advisories", "definition_id", "definitions"),
    ("cves", "advisory_id", "advisories"),
    ("bugzillas", "advisory_id", "advisories"),
    ("cpes", "advisory_id", "advisories"),
    ("packages", "definition_id", "definitions"),
    ("refs", "definition_id", "definitions"),
)


@dataclass
class QualityCheckResult:
    """
    Result of a single quality check.

    Attributes:
        check_name: Unique identifier for the check
        passed: True if check passed, False otherwise
        message: Human-readable summary of the result
        details: Optional dict with additional context (e.g., counts)
    """
    check_name: str
    passed: bool
    message: str
    details: Dict[str, Any] = None


class QualityChecker:
    """
    Runs integrity checks against the advisory tables.

    Each check method executes a SQL query against the database and returns
    a QualityCheckResult indicating pass/fail status.
    """

    def __init__(self, database):
        """
        Initialize quality checker.

        Args:
            database: Database instance with an initialized schema
        """
        self.db = database

    def run_all_checks(self) -> List[QualityCheckResult]:
        """
        Run all quality checks.

        Returns:
            List of QualityCheckResult objects, one per check
        """
        results = [
            self.check_no_orphans(child, column, parent)
            for child, column, parent in PARENT_LINKS
        ]
        results.append(self.check_unique_roots())
        results.append(self.check_one_advisory_per_definition())
        results.append(self.check_unique_fetch_meta())
        return results

    def _scalar(self, sql: str) -> int:
        with self.db.cursor() as conn:
            return conn.execute(sql).fetchone()[0]

    def check_no_orphans(self, child: str, column: str, parent: str) -> QualityCheckResult:
        """
        Ensure every row of `child` points at an existing `parent` row.

        Orphans can only appear after a partial write.
        """
        result = self._scalar(f"""
            SELECT count(*) FROM {child} c
            WHERE NOT EXISTS (SELECT 1 FROM {parent} p WHERE p.id = c.{column})
        """)

        return QualityCheckResult(
            check_name=f"no_orphan_{child}",
            passed=result == 0,
            message=f"{result} {child} rows without {parent}" if result > 0 else f"All {child} rows have a parent",
            details={"orphan_count": result}
        )

    def check_unique_roots(self) -> QualityCheckResult:
        """
        Ensure at most one root exists per (family, os_version).
        """
        result = self._scalar("""
            SELECT count(*) FROM (
                SELECT family, os_version FROM roots
                GROUP BY family, os_version
                HAVING count(*) > 1
            )
        """)

        return QualityCheckResult(
            check_name="unique_roots",
            passed=result == 0,
            message=f"{result} datasets stored more than once" if result > 0 else "All datasets unique",
            details={"duplicate_count": result}
        )

    def check_one_advisory_per_definition(self) -> QualityCheckResult:
        """
        Ensure every definition has exactly one advisory.
        """
        result = self._scalar("""
            SELECT count(*) FROM definitions d
            WHERE (SELECT count(*) FROM advisories a WHERE a.definition_id = d.id) <> 1
        """)

        return QualityCheckResult(
            check_name="one_advisory_per_definition",
            passed=result == 0,
            message=f"{result} definitions without exactly one advisory" if result > 0 else "All definitions have one advisory",
            details={"invalid_count": result}
        )

    def check_unique_fetch_meta(self) -> QualityCheckResult:
        """
        Ensure each source file has a single freshness stamp.
        """
        result = self._scalar("""
            SELECT count(*) FROM (
                SELECT file_name FROM fetch_meta
                GROUP BY file_name
                HAVING count(*) > 1
            )
        """)

        return QualityCheckResult(
            check_name="unique_fetch_meta",
            passed=result == 0,
            message=f"{result} source files with several stamps" if result > 0 else "All fetch stamps unique",
            details={"duplicate_count": result}
        )
