"""
Database connection and schema management for the OVAL advisory store.

This module provides:
- DuckDB connection lifecycle management
- Normalized tables for the advisory aggregate (roots down to cves/packages)
- Freshness stamps (fetch_meta) per ingested source file
- A transaction context manager used by refresh and lookups; every
  transaction runs on its own cursor so threads can share one Database

Design decisions:
- Surrogate keys come from one DuckDB sequence per table
- No foreign-key constraints: parent/child consistency is maintained by the
  refresh deletion plan, which removes children before parents
- Indexed on every parent-id column plus packages.name and cves.cve_id,
  the two lookup entry points
- Timestamps are stored as naive UTC
"""
import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, List, Optional

import duckdb

logger = logging.getLogger(__name__)

# Table name -> sequence feeding its id column
SEQUENCES = {
    "fetch_meta": "fetch_meta_id_seq",
    "roots": "roots_id_seq",
    "definitions": "definitions_id_seq",
    "advisories": "advisories_id_seq",
    "cves": "cves_id_seq",
    "bugzillas": "bugzillas_id_seq",
    "cpes": "cpes_id_seq",
    "packages": "packages_id_seq",
    "refs": "refs_id_seq",
}


def to_db_timestamp(value: Optional[datetime]) -> Optional[datetime]:
    """Convert a datetime to the naive UTC form stored in TIMESTAMP columns."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class Database:
    """
    Manages DuckDB connection and schema initialization.

    This class is responsible for:
    - Creating and maintaining a single database connection
    - Creating the aggregate tables, their sequences and indexes
    - Running each unit of work in one transaction on its own cursor
    """

    def __init__(self, db_path: str = "oval_store.duckdb"):
        """
        Initialize database manager.

        Args:
            db_path: Path to DuckDB database file (created if doesn't exist),
                or ":memory:" for an in-process database
        """
        self.db_path = db_path
        self.conn: Optional[duckdb.DuckDBPyConnection] = None
        self._lock = threading.Lock()

    def connect(self) -> duckdb.DuckDBPyConnection:
        """
        Get or create database connection.

        Returns:
            Active DuckDB connection
        """
        if self.conn is None:
            self.conn = duckdb.connect(self.db_path)
        return self.conn

    def close(self):
        """Close database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None

    def initialize_schema(self):
        """
        Create all required sequences, tables and indexes if they don't exist.

        Tables created:
        - fetch_meta: Freshness stamp per source file
        - roots: One dataset per (family, os_version)
        - definitions: Vulnerability entries of a root
        - advisories: One advisory per definition
        - cves, bugzillas, cpes: Identifiers attached to an advisory
        - packages: Affected packages of a definition
        - refs: External references of a definition
        """
        conn = self.connect()

        for sequence in SEQUENCES.values():
            conn.execute(f"CREATE SEQUENCE IF NOT EXISTS {sequence} START 1")

        conn.execute("""
            CREATE TABLE IF NOT EXISTS fetch_meta (
                id BIGINT PRIMARY KEY,
                file_name VARCHAR NOT NULL,
                file_timestamp TIMESTAMP NOT NULL
            )
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS roots (
                id BIGINT PRIMARY KEY,
                family VARCHAR NOT NULL,
                os_version VARCHAR NOT NULL,
                generated_at TIMESTAMP
            )
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS definitions (
                id BIGINT PRIMARY KEY,
                root_id BIGINT NOT NULL,
                definition_id VARCHAR NOT NULL,
                title VARCHAR,
                description VARCHAR
            )
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS advisories (
                id BIGINT PRIMARY KEY,
                definition_id BIGINT NOT NULL,
                severity VARCHAR,
                issued TIMESTAMP,
                updated TIMESTAMP
            )
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS cves (
                id BIGINT PRIMARY KEY,
                advisory_id BIGINT NOT NULL,
                cve_id VARCHAR NOT NULL,
                cvss2 VARCHAR,
                cvss3 VARCHAR,
                cwe VARCHAR,
                impact VARCHAR,
                href VARCHAR,
                public VARCHAR
            )
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS bugzillas (
                id BIGINT PRIMARY KEY,
                advisory_id BIGINT NOT NULL,
                url VARCHAR NOT NULL,
                title VARCHAR
            )
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS cpes (
                id BIGINT PRIMARY KEY,
                advisory_id BIGINT NOT NULL,
                name VARCHAR NOT NULL
            )
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS packages (
                id BIGINT PRIMARY KEY,
                definition_id BIGINT NOT NULL,
                name VARCHAR NOT NULL,
                version VARCHAR NOT NULL,
                not_fixed_yet BOOLEAN NOT NULL DEFAULT FALSE
            )
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS refs (
                id BIGINT PRIMARY KEY,
                definition_id BIGINT NOT NULL,
                source VARCHAR,
                ref_id VARCHAR,
                ref_url VARCHAR
            )
        """)

        # Lookup entry points and parent-id scans
        conn.execute("CREATE INDEX IF NOT EXISTS idx_fetch_meta_file ON fetch_meta(file_name)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_roots_family ON roots(family, os_version)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_definitions_root ON definitions(root_id)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_advisories_definition ON advisories(definition_id)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_cves_advisory ON cves(advisory_id)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_cves_cve_id ON cves(cve_id)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_bugzillas_advisory ON bugzillas(advisory_id)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_cpes_advisory ON cpes(advisory_id)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_packages_definition ON packages(definition_id)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_packages_name ON packages(name)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_refs_definition ON refs(definition_id)")

    def allocate_ids(self, table: str, count: int, conn=None) -> List[int]:
        """
        Draw `count` fresh surrogate keys for a table from its sequence.

        Args:
            table: Table name (key of SEQUENCES)
            count: Number of ids needed
            conn: Cursor of the running transaction; a short-lived cursor is
                used when omitted

        Returns:
            List of new ids, in ascending order
        """
        if count <= 0:
            return []
        sql = f"SELECT nextval('{SEQUENCES[table]}') FROM range({int(count)})"
        if conn is not None:
            rows = conn.execute(sql).fetchall()
        else:
            with self.cursor() as cur:
                rows = cur.execute(sql).fetchall()
        return sorted(row[0] for row in rows)

    @contextmanager
    def cursor(self) -> Iterator[duckdb.DuckDBPyConnection]:
        """
        Open a cursor on the shared database for one unit of work.

        Each cursor has its own transaction context, so cursors may be used
        from different threads at the same time.

        Yields:
            A DuckDB cursor, closed on exit
        """
        with self._lock:
            cur = self.connect().cursor()
        try:
            yield cur
        finally:
            cur.close()

    @contextmanager
    def transaction(self) -> Iterator[duckdb.DuckDBPyConnection]:
        """
        Run a unit of work inside one transaction on its own cursor.

        Commits when the block exits normally. On any exception the
        transaction is rolled back and the exception re-raised. A failed
        COMMIT raises from here; closing the cursor discards whatever the
        transaction had written.

        Yields:
            The cursor running the transaction
        """
        with self.cursor() as cur:
            cur.execute("BEGIN TRANSACTION")
            try:
                yield cur
            except BaseException:
                logger.debug("Rolling back transaction")
                cur.execute("ROLLBACK")
                raise
            self._commit(cur)

    def _commit(self, cur: duckdb.DuckDBPyConnection):
        cur.execute("COMMIT")

    def __enter__(self):
        """Context manager entry."""
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
