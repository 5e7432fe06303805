"""
Lookup and hydration of stored advisory definitions.

Two entry points share one hydration step:
- by_package_name: packages -> definition -> root
- by_cve_id: cves -> advisory -> definition -> root

Matches are kept only when the owning root belongs to the queried family and
its OS major version equals the requested one. Kept definitions are then
hydrated into full aggregates (advisory with cves/bugzillas/cpes, affected
packages filtered to the requested major, references).

Design decisions:
- The parent walk is a single LEFT JOIN per lookup; a NULL parent means a
  broken chain and raises NotFoundDuringHydrationError
- Child collections are fetched in one query per table for the whole result
  set, keyed by parent id
- Lookup and hydration run in one transaction, on a cursor of their own, so
  they read one snapshot even while a refresh commits on another thread
- A definition matched by several rows is returned once per match, in the
  order the matches were found
"""
import logging
from collections import defaultdict
from typing import Any, Dict, List, Sequence

import duckdb

from models.dataset import (
    Advisory,
    Bugzilla,
    Cpe,
    Cve,
    Definition,
    Family,
    Package,
    Reference,
)
from models.version import filter_by_major, major
from .database import Database
from .errors import NotFoundDuringHydrationError, StorageError

logger = logging.getLogger(__name__)

_PACKAGE_WALK = """
    SELECT p.id, p.definition_id, d.id, d.root_id, r.id, r.family, r.os_version
    FROM packages p
    LEFT JOIN definitions d ON d.id = p.definition_id
    LEFT JOIN roots r ON r.id = d.root_id
    WHERE p.name = ?
    ORDER BY p.id
"""

_CVE_WALK = """
    SELECT c.id, c.advisory_id, a.id, a.definition_id, d.id, d.root_id, r.id, r.family, r.os_version
    FROM cves c
    LEFT JOIN advisories a ON a.id = c.advisory_id
    LEFT JOIN definitions d ON d.id = a.definition_id
    LEFT JOIN roots r ON r.id = d.root_id
    WHERE c.cve_id = ?
    ORDER BY c.id
"""


def _placeholders(values: Sequence[Any]) -> str:
    return ", ".join("?" for _ in values)


def _rows_as_dicts(conn, sql: str, params: List[Any]) -> List[Dict[str, Any]]:
    results = conn.execute(sql, params).fetchall()
    columns = [desc[0] for desc in conn.description]
    return [dict(zip(columns, row)) for row in results]


class AdvisoryQuery:
    """
    Answers package-name and CVE lookups for one OS family.
    """

    def __init__(self, database: Database, family: Family):
        """
        Initialize query engine.

        Args:
            database: Database instance holding the advisory tables
            family: OS family every lookup is restricted to
        """
        self.db = database
        self.family = family

    def by_package_name(self, os_version: str, package_name: str) -> List[Definition]:
        """
        Find definitions affecting a package on the requested OS major.

        Args:
            os_version: OS version, e.g. "7.2"; only its major is used
            package_name: Exact package name

        Returns:
            Fully hydrated definitions, in discovery order; empty if none

        Raises:
            NotFoundDuringHydrationError: If a matched row's parent is missing
            StorageError: If a DuckDB read fails
        """
        major_version = major(os_version)
        try:
            with self.db.transaction() as conn:
                definition_ids = []
                for row in conn.execute(_PACKAGE_WALK, [package_name]).fetchall():
                    _, definition_ref, definition_id, root_ref, root_id, family, root_version = row
                    if definition_id is None:
                        raise NotFoundDuringHydrationError("definitions", "id", definition_ref)
                    if root_id is None:
                        raise NotFoundDuringHydrationError("roots", "id", root_ref)
                    if self._in_scope(family, root_version, major_version):
                        definition_ids.append(definition_id)
                return self._hydrate(conn, definition_ids, major_version)
        except duckdb.Error as e:
            raise StorageError(f"Failed to look up package {package_name}: {e}") from e

    def by_cve_id(self, os_version: str, cve_id: str) -> List[Definition]:
        """
        Find definitions referencing a CVE on the requested OS major.

        Args:
            os_version: OS version, e.g. "7.2"; only its major is used
            cve_id: Exact CVE identifier, e.g. "CVE-2020-1234"

        Returns:
            Fully hydrated definitions, in discovery order; empty if none

        Raises:
            NotFoundDuringHydrationError: If a matched row's parent is missing
            StorageError: If a DuckDB read fails
        """
        major_version = major(os_version)
        try:
            with self.db.transaction() as conn:
                definition_ids = []
                for row in conn.execute(_CVE_WALK, [cve_id]).fetchall():
                    (_, advisory_ref, advisory_id, definition_ref, definition_id,
                     root_ref, root_id, family, root_version) = row
                    if advisory_id is None:
                        raise NotFoundDuringHydrationError("advisories", "id", advisory_ref)
                    if definition_id is None:
                        raise NotFoundDuringHydrationError("definitions", "id", definition_ref)
                    if root_id is None:
                        raise NotFoundDuringHydrationError("roots", "id", root_ref)
                    if self._in_scope(family, root_version, major_version):
                        definition_ids.append(definition_id)
                return self._hydrate(conn, definition_ids, major_version)
        except duckdb.Error as e:
            raise StorageError(f"Failed to look up {cve_id}: {e}") from e

    def count_definitions(self, os_version: str) -> int:
        """Count stored definitions for this family on the given OS major."""
        major_version = major(os_version)
        try:
            with self.db.transaction() as conn:
                rows = conn.execute("""
                    SELECT r.os_version, count(d.id)
                    FROM roots r
                    LEFT JOIN definitions d ON d.root_id = r.id
                    WHERE r.family = ?
                    GROUP BY r.os_version
                """, [self.family.value]).fetchall()
        except duckdb.Error as e:
            raise StorageError(f"Failed to count definitions: {e}") from e
        return sum(count for version, count in rows if major(version) == major_version)

    def _in_scope(self, family: str, root_version: str, major_version: str) -> bool:
        return family == self.family.value and major(root_version) == major_version

    def _hydrate(self, conn, definition_ids: List[int], major_version: str) -> List[Definition]:
        """
        Build full Definition aggregates for the given ids, preserving order.

        One aggregate is built per entry of `definition_ids`, so a definition
        matched by several rows appears once per match, each time as its own
        objects.
        """
        if not definition_ids:
            return []
        unique_ids = list(dict.fromkeys(definition_ids))

        definition_rows = {
            row["id"]: row for row in _rows_as_dicts(conn, f"""
                SELECT id, root_id, definition_id, title, description
                FROM definitions WHERE id IN ({_placeholders(unique_ids)})
            """, unique_ids)
        }

        advisory_rows: Dict[int, Dict[str, Any]] = {}
        for row in _rows_as_dicts(conn, f"""
            SELECT id, definition_id, severity, issued, updated
            FROM advisories WHERE definition_id IN ({_placeholders(unique_ids)})
            ORDER BY id
        """, unique_ids):
            advisory_rows.setdefault(row["definition_id"], row)

        missing = [i for i in unique_ids if i not in advisory_rows]
        if missing:
            raise NotFoundDuringHydrationError("advisories", "definition_id", missing[0])

        advisory_ids = [advisory_rows[i]["id"] for i in unique_ids]
        cves = self._children(conn, "cves", "advisory_id", advisory_ids)
        bugzillas = self._children(conn, "bugzillas", "advisory_id", advisory_ids)
        cpes = self._children(conn, "cpes", "advisory_id", advisory_ids)
        packages = self._children(conn, "packages", "definition_id", unique_ids)
        references = self._children(conn, "refs", "definition_id", unique_ids)

        definitions = []
        for definition_id in definition_ids:
            advisory = Advisory(**advisory_rows[definition_id])
            advisory.cves = [Cve(**row) for row in cves[advisory.id]]
            advisory.bugzillas = [Bugzilla(**row) for row in bugzillas[advisory.id]]
            advisory.affected_cpe_list = [Cpe(**row) for row in cpes[advisory.id]]

            definition = Definition(**definition_rows[definition_id])
            definition.advisory = advisory
            definition.affected_packs = filter_by_major(
                [Package(**row) for row in packages[definition_id]], major_version
            )
            definition.references = [Reference(**row) for row in references[definition_id]]
            definitions.append(definition)

        logger.debug(f"Hydrated {len(definitions)} definitions for {self.family.value} {major_version}")
        return definitions

    def _children(self, conn, table: str, parent_column: str, parent_ids: List[int]) -> Dict[int, List[Dict[str, Any]]]:
        """Fetch all rows of a child table for the given parents, grouped by parent id."""
        grouped = defaultdict(list)
        for row in _rows_as_dicts(conn, f"""
            SELECT * FROM {table}
            WHERE {parent_column} IN ({_placeholders(parent_ids)})
            ORDER BY id
        """, parent_ids):
            grouped[row[parent_column]].append(row)
        return grouped
