"""
Family-scoped access to the advisory store.
"""
import logging
from typing import List, Optional, Union

from models.dataset import Definition, Family, FetchMeta, Root
from observability.metrics import RefreshMetrics
from .database import Database
from .query import AdvisoryQuery
from .refresh import DatasetRefresher

logger = logging.getLogger(__name__)


class AdvisoryStore:
    """
    Binds a database to one OS family.

    Refreshes accept any family's dataset; lookups are restricted to the
    handle's family.
    """

    def __init__(self, database: Database, family: Union[Family, str]):
        """
        Args:
            database: Database with an initialized schema
            family: OS family lookups are scoped to (Family or its name)
        """
        self.db = database
        self.family = family if isinstance(family, Family) else Family.parse(family)
        self.refresher = DatasetRefresher(database)
        self.query = AdvisoryQuery(database, self.family)

    def refresh(self, root: Root, meta: FetchMeta) -> RefreshMetrics:
        """Replace the stored dataset for root's (family, os_version)."""
        if root.family != self.family:
            logger.warning(
                f"Refreshing {root.family.value} {root.os_version} through a {self.family.value} store"
            )
        return self.refresher.refresh(root, meta)

    def get_by_package_name(self, os_version: str, package_name: str) -> List[Definition]:
        return self.query.by_package_name(os_version, package_name)

    def get_by_cve_id(self, os_version: str, cve_id: str) -> List[Definition]:
        return self.query.by_cve_id(os_version, cve_id)

    def get_fetch_meta(self, file_name: str) -> Optional[FetchMeta]:
        return self.refresher.get_fetch_meta(file_name)

    def count_definitions(self, os_version: str) -> int:
        return self.query.count_definitions(os_version)


def open_store(family: Union[Family, str], db_path: str = "oval_store.duckdb") -> AdvisoryStore:
    """
    Open a database file, make sure its schema exists, and return a store
    handle for one family.
    """
    database = Database(db_path)
    database.initialize_schema()
    return AdvisoryStore(database, family)
