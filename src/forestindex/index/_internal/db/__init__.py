"""Database layer for the forest index."""

from forestindex.index._internal.db.database import Database
from forestindex.index._internal.db.indexes import (
    create_additional_indexes,
    drop_additional_indexes,
)
from forestindex.index._internal.db.integrity import (
    IndexRecovery,
    IntegrityChecker,
    IntegrityIssue,
    IntegrityReport,
)
from forestindex.index._internal.db.store import IndexStore

__all__ = [
    "Database",
    "IndexStore",
    "create_additional_indexes",
    "drop_additional_indexes",
    "IndexRecovery",
    "IntegrityChecker",
    "IntegrityIssue",
    "IntegrityReport",
]
