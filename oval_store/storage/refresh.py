"""
Transactional replacement of an advisory dataset.

A refresh supersedes the stored dataset for one (family, os_version) with a
new aggregate. Everything happens inside one DuckDB transaction:

1. Skip check: if the stored fetch_meta stamp for the source file has exactly
   the same timestamp, nothing is written.
2. Delete phase: the old root and its whole subtree are removed leaf-first,
   following DELETION_PLAN.
3. Insert phase: the new root and its subtree are written level by level.
4. The fetch_meta stamp for the source file is upserted.

Any failure rolls the transaction back, so readers only ever see the complete
old dataset or the complete new one.

Design decisions:
- Skip uses timestamp equality, not ordering: an older stamp still replaces
- Deletes are scoped by subquery on the old root id, one statement per table
- Surrogate ids are drawn from sequences in bulk and written back onto the
  in-memory aggregate
"""
import logging
from datetime import datetime
from typing import Any, List, Optional, Sequence, Tuple

import duckdb

from models.dataset import FetchMeta, Root
from observability.metrics import RefreshMetrics
from .database import Database, to_db_timestamp
from .errors import StorageError

logger = logging.getLogger(__name__)

_DEFINITIONS_OF_ROOT = "SELECT id FROM definitions WHERE root_id = ?"
_ADVISORIES_OF_ROOT = (
    "SELECT a.id FROM advisories a "
    "JOIN definitions d ON d.id = a.definition_id "
    "WHERE d.root_id = ?"
)

# Leaf-first: (table, predicate bound to the old root id)
DELETION_PLAN: Tuple[Tuple[str, str], ...] = (
    ("cves", f"advisory_id IN ({_ADVISORIES_OF_ROOT})"),
    ("bugzillas", f"advisory_id IN ({_ADVISORIES_OF_ROOT})"),
    ("cpes", f"advisory_id IN ({_ADVISORIES_OF_ROOT})"),
    ("advisories", f"definition_id IN ({_DEFINITIONS_OF_ROOT})"),
    ("packages", f"definition_id IN ({_DEFINITIONS_OF_ROOT})"),
    ("refs", f"definition_id IN ({_DEFINITIONS_OF_ROOT})"),
    ("definitions", "root_id = ?"),
    ("roots", "id = ?"),
)


class DatasetRefresher:
    """
    Replaces stored datasets with freshly fetched ones.

    Operations:
    1. refresh: skip-or-replace a dataset, atomically
    2. get_fetch_meta: read the stored stamp for a source file
    3. find_root_id: locate the live root of a (family, os_version)
    """

    def __init__(self, database: Database):
        """
        Initialize refresher.

        Args:
            database: Database instance holding the advisory tables
        """
        self.db = database

    def refresh(self, root: Root, meta: FetchMeta) -> RefreshMetrics:
        """
        Replace the stored dataset for root's (family, os_version) with root.

        Args:
            root: Fully populated aggregate to store
            meta: Freshness stamp of the source file root was built from

        Returns:
            RefreshMetrics describing what was skipped, deleted and inserted

        Raises:
            StorageError: If any DuckDB operation fails; the store is unchanged
        """
        family = root.family.value
        metrics = RefreshMetrics(
            family=family,
            os_version=root.os_version,
            file_name=meta.file_name,
            started_at=datetime.utcnow(),
        )

        try:
            with self.db.transaction() as conn:
                stored = self._get_fetch_meta(conn, meta.file_name)
                if stored is not None and stored.timestamp == to_db_timestamp(meta.timestamp):
                    logger.info(f"  Skip {family} {root.os_version} (same timestamp)")
                    metrics.skipped = True
                else:
                    logger.info(f"  Refreshing {family} {root.os_version}...")
                    for old_root_id in self._find_root_ids(conn, family, root.os_version):
                        self._delete_root(conn, old_root_id, metrics)
                        metrics.replaced = True
                    self._insert_root(conn, root, metrics)
                    self._save_fetch_meta(conn, meta, stored)
        except duckdb.Error as e:
            logger.error(f"Refresh of {family} {root.os_version} rolled back: {e}", exc_info=True)
            raise StorageError(f"Failed to refresh {family} {root.os_version}: {e}") from e

        metrics.completed_at = datetime.utcnow()
        return metrics

    def get_fetch_meta(self, file_name: str) -> Optional[FetchMeta]:
        """Return the stored stamp for a source file, or None."""
        try:
            with self.db.transaction() as conn:
                return self._get_fetch_meta(conn, file_name)
        except duckdb.Error as e:
            raise StorageError(f"Failed to read fetch meta for {file_name}: {e}") from e

    def find_root_id(self, family: str, os_version: str) -> Optional[int]:
        """Return the id of the live root for (family, os_version), or None."""
        try:
            with self.db.transaction() as conn:
                root_ids = self._find_root_ids(conn, family, os_version)
        except duckdb.Error as e:
            raise StorageError(f"Failed to look up root {family} {os_version}: {e}") from e
        return root_ids[0] if root_ids else None

    def _get_fetch_meta(self, conn, file_name: str) -> Optional[FetchMeta]:
        result = conn.execute("""
            SELECT id, file_name, file_timestamp FROM fetch_meta
            WHERE file_name = ?
            ORDER BY id
            LIMIT 1
        """, [file_name]).fetchone()

        if result is None:
            return None
        return FetchMeta(id=result[0], file_name=result[1], timestamp=result[2])

    def _save_fetch_meta(self, conn, meta: FetchMeta, stored: Optional[FetchMeta]):
        timestamp = to_db_timestamp(meta.timestamp)
        if stored is not None:
            conn.execute(
                "UPDATE fetch_meta SET file_timestamp = ? WHERE id = ?",
                [timestamp, stored.id],
            )
            meta.id = stored.id
            return

        meta.id = self.db.allocate_ids("fetch_meta", 1, conn)[0]
        conn.execute(
            "INSERT INTO fetch_meta (id, file_name, file_timestamp) VALUES (?, ?, ?)",
            [meta.id, meta.file_name, timestamp],
        )

    def _find_root_ids(self, conn, family: str, os_version: str) -> List[int]:
        # Normally at most one; more only after a write that bypassed refresh
        results = conn.execute("""
            SELECT id FROM roots
            WHERE family = ? AND os_version = ?
            ORDER BY id
        """, [family, os_version]).fetchall()
        return [row[0] for row in results]

    def _delete_root(self, conn, root_id: int, metrics: RefreshMetrics):
        """Delete a root and its subtree, children before parents."""
        for table, predicate in DELETION_PLAN:
            params = [root_id] * predicate.count("?")
            deleted = conn.execute(f"DELETE FROM {table} WHERE {predicate}", params).fetchone()
            metrics.record_deleted(table, deleted[0] if deleted else 0)

    def _insert_root(self, conn, root: Root, metrics: RefreshMetrics):
        """
        Insert root and its subtree, assigning surrogate and parent ids.
        """
        root.id = self.db.allocate_ids("roots", 1, conn)[0]
        conn.execute(
            "INSERT INTO roots (id, family, os_version, generated_at) VALUES (?, ?, ?, ?)",
            [root.id, root.family.value, root.os_version, to_db_timestamp(root.timestamp)],
        )
        metrics.record_inserted("roots", 1)

        definitions = root.definitions
        for definition, new_id in zip(definitions, self.db.allocate_ids("definitions", len(definitions), conn)):
            definition.id = new_id
            definition.root_id = root.id
        self._insert_rows(conn, "definitions", metrics, [
            (d.id, d.root_id, d.definition_id, d.title, d.description)
            for d in definitions
        ], ("id", "root_id", "definition_id", "title", "description"))

        advisories = [d.advisory for d in definitions]
        for definition, advisory, new_id in zip(
            definitions, advisories, self.db.allocate_ids("advisories", len(advisories), conn)
        ):
            advisory.id = new_id
            advisory.definition_id = definition.id
        self._insert_rows(conn, "advisories", metrics, [
            (a.id, a.definition_id, a.severity, to_db_timestamp(a.issued), to_db_timestamp(a.updated))
            for a in advisories
        ], ("id", "definition_id", "severity", "issued", "updated"))

        cves = self._adopt(conn, advisories, "cves", "advisory_id", lambda a: a.cves)
        self._insert_rows(conn, "cves", metrics, [
            (c.id, c.advisory_id, c.cve_id, c.cvss2, c.cvss3, c.cwe, c.impact, c.href, c.public)
            for c in cves
        ], ("id", "advisory_id", "cve_id", "cvss2", "cvss3", "cwe", "impact", "href", "public"))

        bugzillas = self._adopt(conn, advisories, "bugzillas", "advisory_id", lambda a: a.bugzillas)
        self._insert_rows(conn, "bugzillas", metrics, [
            (b.id, b.advisory_id, b.url, b.title) for b in bugzillas
        ], ("id", "advisory_id", "url", "title"))

        cpes = self._adopt(conn, advisories, "cpes", "advisory_id", lambda a: a.affected_cpe_list)
        self._insert_rows(conn, "cpes", metrics, [
            (c.id, c.advisory_id, c.name) for c in cpes
        ], ("id", "advisory_id", "name"))

        packages = self._adopt(conn, definitions, "packages", "definition_id", lambda d: d.affected_packs)
        self._insert_rows(conn, "packages", metrics, [
            (p.id, p.definition_id, p.name, p.version, p.not_fixed_yet) for p in packages
        ], ("id", "definition_id", "name", "version", "not_fixed_yet"))

        references = self._adopt(conn, definitions, "refs", "definition_id", lambda d: d.references)
        self._insert_rows(conn, "refs", metrics, [
            (r.id, r.definition_id, r.source, r.ref_id, r.ref_url) for r in references
        ], ("id", "definition_id", "source", "ref_id", "ref_url"))

    def _adopt(self, conn, parents: Sequence[Any], table: str, parent_field: str, children_of) -> List[Any]:
        """
        Collect the children of all parents, giving each a fresh id and its
        parent's id.
        """
        pairs = [(parent, child) for parent in parents for child in children_of(parent)]
        for (parent, child), new_id in zip(pairs, self.db.allocate_ids(table, len(pairs), conn)):
            child.id = new_id
            setattr(child, parent_field, parent.id)
        return [child for _, child in pairs]

    def _insert_rows(self, conn, table: str, metrics: RefreshMetrics, rows: List[tuple], columns: Tuple[str, ...]):
        if not rows:
            return
        placeholders = ", ".join("?" for _ in columns)
        conn.executemany(
            f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})",
            rows,
        )
        metrics.record_inserted(table, len(rows))
