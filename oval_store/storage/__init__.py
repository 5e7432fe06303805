"""
Storage layer for the OVAL advisory store.

This module provides data persistence using DuckDB with atomic dataset
replacement and version-scoped lookups.

Components:
- Database: Connection management, schema initialization and transactions
- DatasetRefresher: Skip-or-replace a (family, os_version) dataset atomically
- AdvisoryQuery: Package-name and CVE lookups with full hydration
- AdvisoryStore: Family-scoped handle combining the two
- StorageError, NotFoundDuringHydrationError: Failure kinds

Usage:
    from storage import Database, AdvisoryStore
    from models import Family

    # Initialize database
    db = Database("oval_store.duckdb")
    db.initialize_schema()

    # Replace a dataset, then query it
    store = AdvisoryStore(db, Family.REDHAT)
    store.refresh(root, fetch_meta)
    definitions = store.get_by_package_name("7.2", "openssl")
"""

from .database import Database
from .errors import AdvisoryStoreError, NotFoundDuringHydrationError, StorageError
from .query import AdvisoryQuery
from .refresh import DELETION_PLAN, DatasetRefresher
from .store import AdvisoryStore, open_store

__all__ = [
    "Database",
    "DatasetRefresher",
    "DELETION_PLAN",
    "AdvisoryQuery",
    "AdvisoryStore",
    "open_store",
    "AdvisoryStoreError",
    "StorageError",
    "NotFoundDuringHydrationError",
]
