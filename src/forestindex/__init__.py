"""Nested-set forest index for hierarchical records."""

from forestindex.config import ForestIndexConfig, load_config
from forestindex.core import (
    ForestIndexError,
    NotFoundError,
    PreconditionError,
    UnsupportedOperationError,
    configure_logging,
)
from forestindex.index import (
    Database,
    ForestContent,
    ForestContentCoordinator,
    ForestIndexEngine,
    ForestIndexNode,
    Page,
    PageRequest,
    SqlContentStore,
)

__version__ = "0.1.0"

__all__ = [
    "ForestContentCoordinator",
    "ForestIndexEngine",
    "ForestIndexNode",
    "ForestContent",
    "SqlContentStore",
    "Database",
    "Page",
    "PageRequest",
    "ForestIndexConfig",
    "load_config",
    "configure_logging",
    "ForestIndexError",
    "PreconditionError",
    "NotFoundError",
    "UnsupportedOperationError",
]
