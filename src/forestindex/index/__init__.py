"""Index module - nested-set forest index over hierarchical content.

This module provides:
- ForestIndexNode: one interval-labelled row per indexed content record
- ForestIndexEngine: insert, move, delete, rebuild of nested-set intervals
- ForestContentCoordinator: content-keyed indexing and tree queries

Public API is in `forestindex.index.ops`.
Internal implementations are in `forestindex.index._internal/`.
"""

from forestindex.index._internal.db import (
    Database,
    IndexRecovery,
    IndexStore,
    IntegrityChecker,
    IntegrityIssue,
    IntegrityReport,
    create_additional_indexes,
)
from forestindex.index._internal.locks import TreeTypeLocks
from forestindex.index.content import ContentStore, SqlContentStore
from forestindex.index.engine import ForestIndexEngine, NodeFactory
from forestindex.index.models import ForestContent, ForestIndexNode, Page, PageRequest
from forestindex.index.ops import ForestContentCoordinator

__all__ = [
    # Public API (ops.py, engine.py)
    "ForestContentCoordinator",
    "ForestIndexEngine",
    "NodeFactory",
    # Content
    "ContentStore",
    "SqlContentStore",
    # Models
    "ForestContent",
    "ForestIndexNode",
    "Page",
    "PageRequest",
    # Database
    "Database",
    "IndexStore",
    "TreeTypeLocks",
    "create_additional_indexes",
    # Integrity
    "IndexRecovery",
    "IntegrityChecker",
    "IntegrityIssue",
    "IntegrityReport",
]
