"""
Exceptions raised by the advisory store.
"""


class AdvisoryStoreError(RuntimeError):
    """Base class for advisory store failures."""


class StorageError(AdvisoryStoreError):
    """Raised when an underlying DuckDB read, write or transaction fails."""


class NotFoundDuringHydrationError(AdvisoryStoreError):
    """
    Raised when a row that must exist is missing while resolving or hydrating
    a definition. This indicates a prior partial write.
    """

    def __init__(self, table: str, key_column: str, key: object):
        self.table = table
        self.key_column = key_column
        self.key = key
        super().__init__(f"No row in {table} with {key_column} = {key}")
