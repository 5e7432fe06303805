"""
Shared pytest fixtures for advisory store tests.

This module provides reusable fixtures that simplify test setup
and reduce code duplication across test modules.
"""
import tempfile
from datetime import datetime
from pathlib import Path

import pytest

from models import (
    Advisory,
    Bugzilla,
    Cpe,
    Cve,
    Definition,
    Family,
    FetchMeta,
    Package,
    Reference,
    Root,
)
from storage import AdvisoryStore, Database

TABLES = (
    "fetch_meta", "roots", "definitions", "advisories",
    "cves", "bugzillas", "cpes", "packages", "refs",
)


@pytest.fixture
def temp_db():
    """
    Create a temporary on-disk database for testing.

    Yields:
        Database instance with schema initialized

    Cleanup:
        Automatically closes connection and removes files after test
    """
    # DuckDB creates the actual database file
    with tempfile.NamedTemporaryFile(suffix=".duckdb", delete=True) as f:
        db_path = f.name

    db = Database(db_path)
    db.initialize_schema()
    yield db
    db.close()

    # Cleanup
    Path(db_path).unlink(missing_ok=True)
    Path(db_path + ".wal").unlink(missing_ok=True)


@pytest.fixture
def store(temp_db):
    """RedHat-scoped store on the temporary database."""
    return AdvisoryStore(temp_db, Family.REDHAT)


@pytest.fixture
def make_root():
    """
    Factory for small single-definition datasets.

    Returns:
        Callable building a Root with one definition, one CVE and the given
        affected packages
    """
    def _make_root(
        family=Family.REDHAT,
        os_version="7.2",
        definition_id="oval:com.redhat.rhsa:def:20200001",
        cve_id="CVE-2020-1",
        packages=(("openssl", "1.1.1.el7"),),
    ):
        return Root(
            family=family,
            os_version=os_version,
            timestamp=datetime(2020, 1, 1, 12, 0, 0),
            definitions=[
                Definition(
                    definition_id=definition_id,
                    title=f"{cve_id} in {packages[0][0] if packages else 'nothing'}",
                    description="Example flaw",
                    advisory=Advisory(
                        severity="Important",
                        issued=datetime(2020, 1, 1),
                        updated=datetime(2020, 1, 2),
                        cves=[Cve(cve_id=cve_id, cvss3="7.5", cwe="CWE-120", impact="Important")],
                        bugzillas=[Bugzilla(url="https://bugzilla.redhat.com/1", title="bug 1")],
                        affected_cpe_list=[Cpe(name="cpe:/o:redhat:enterprise_linux:7")],
                    ),
                    affected_packs=[Package(name=n, version=v) for n, v in packages],
                    references=[
                        Reference(source="CVE", ref_id=cve_id, ref_url=f"https://access.redhat.com/security/cve/{cve_id}"),
                    ],
                ),
            ],
        )
    return _make_root


@pytest.fixture
def fetch_meta():
    """Freshness stamp for the RedHat 7 feed."""
    return FetchMeta(
        file_name="com.redhat.rhsa-RHEL7.xml",
        timestamp=datetime(2020, 1, 1, 12, 0, 0),
    )


@pytest.fixture
def snapshot(temp_db):
    """
    Returns a callable capturing every row of every advisory table.

    Used to compare the stored aggregate before and after an operation.
    """
    def _snapshot():
        conn = temp_db.connect()
        return {
            table: sorted(conn.execute(f"SELECT * FROM {table}").fetchall())
            for table in TABLES
        }
    return _snapshot
