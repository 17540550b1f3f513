"""High-level orchestration between content records and the forest index.

This module implements the ForestContentCoordinator - the entry point for
hosting applications. It maps content ids to index nodes and delegates the
interval work to the ForestIndexEngine.

Serialization: every mutation holds the tree type's write lock and runs in
one BEGIN IMMEDIATE transaction, including a whole rebuild from content.
Reads take no lock; nested-set predicates are self-consistent snapshots.

Two indexing entry points:
- index(): the parent content must already be indexed (or be absent, which
  attaches the record under the tree type's synthetic anchor).
- index_content(): indexes missing ancestors first, walking content parent
  links upwards.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Generic

import structlog

from forestindex.config.constants import PAGE_SIZE_MAX
from forestindex.core.errors import (
    NotFoundError,
    PreconditionError,
    UnsupportedOperationError,
)
from forestindex.index._internal.db import (
    Database,
    IndexRecovery,
    IntegrityChecker,
    IntegrityReport,
    create_additional_indexes,
)
from forestindex.index.content import C, ContentStore, SqlContentStore
from forestindex.index.engine import ForestIndexEngine, NodeFactory
from forestindex.index.models import ForestIndexNode, Page, PageRequest

if TYPE_CHECKING:
    from sqlmodel import Session

    from forestindex.config.models import ForestIndexConfig
    from forestindex.index._internal.db.store import IndexStore

logger = structlog.get_logger()


class ForestContentCoordinator(Generic[C]):
    """
    Content-keyed index maintenance and tree queries.

    Usage::

        coordinator = ForestContentCoordinator.from_config(config, Department)

        coordinator.index("org", root.id)
        coordinator.index("org", child.id, root.id)

        # Reads (no locks)
        children = coordinator.find_all_children(root.id)
        parents = coordinator.find_all_parents(child.id)

        # Repair
        coordinator.rebuild_indexes("org")
    """

    def __init__(
        self,
        engine: ForestIndexEngine,
        contents: ContentStore[C],
        *,
        page_size_default: int = 50,
    ) -> None:
        self.engine = engine
        self.contents = contents
        self._page_size_default = page_size_default

    @classmethod
    def from_config(
        cls,
        config: ForestIndexConfig,
        model: type[C],
        node_factory: NodeFactory = ForestIndexNode,
    ) -> ForestContentCoordinator[C]:
        """Open the configured database, create the schema, and wire the components."""
        db = Database.from_config(config.database)
        db.create_all()
        create_additional_indexes(db.engine)
        engine = ForestIndexEngine(
            db,
            node_factory,
            lock_timeout=config.index.lock_timeout_sec,
            default_tree_type=config.index.default_tree_type,
        )
        return cls(
            engine,
            SqlContentStore(db, model),
            page_size_default=config.limits.page_size_default,
        )

    @property
    def db(self) -> Database:
        return self.engine.db

    @property
    def default_tree_type(self) -> str:
        return self.engine.default_tree_type

    def page(self, offset: int = 0, limit: int | None = None) -> PageRequest:
        """Page request with the configured default size, capped at PAGE_SIZE_MAX."""
        size = self._page_size_default if limit is None else limit
        return PageRequest(offset=offset, limit=min(size, PAGE_SIZE_MAX))

    # ------------------------------------------------------------------
    # Index maintenance
    # ------------------------------------------------------------------

    def index(
        self,
        tree_type: str | None,
        content_id: int,
        parent_content_id: int | None = None,
        *,
        session: Session | None = None,
    ) -> ForestIndexNode:
        """Index one content record, reusing its node when it has one.

        Raises:
            UnsupportedOperationError: The parent content has no index node.
            PreconditionError: Tree type mismatch or parent not indexed.
        """
        tree_type = tree_type or self.default_tree_type
        with self.engine.unit_of_work(tree_type, session) as store:
            return self._index(store, tree_type, content_id, parent_content_id)

    def drop_index(self, content_id: int, *, session: Session | None = None) -> ForestIndexNode | None:
        """Delete the content's node and subtree, closing the gap.

        Returns:
            The removed node, or None when the content has no indexed row.
        """
        node = self.engine.get_by_content_id(content_id, session=session)
        if node is None:
            return None
        with self.engine.unit_of_work(node.forest_tree_type, session) as store:
            current = store.get_by_content_id(content_id)
            if current is None or not current.is_indexed:
                return None
            removed = ForestIndexNode(**current.model_dump())
            self.engine.delete_node(current, close_gap=True, session=store.session)
        return removed

    def rebuild_indexes(self, tree_type: str | None = None) -> int:
        """Drop the tree type's index and re-index it from content parent links.

        Content roots are visited by id, each followed by its descendants
        pre-order. Only content of the same tree type is followed.

        Returns:
            Number of content records indexed.
        """
        tree_type = tree_type or self.default_tree_type
        indexed = 0
        with self.engine.unit_of_work(tree_type) as store:
            session = store.session
            self.engine.drop_indexes(tree_type, session=session)
            root_ids = [root.id for root in self.contents.find_roots(tree_type, session=session)]
            stack: list[tuple[int, int | None]] = [(root_id, None) for root_id in reversed(root_ids)]
            while stack:
                content_id, parent_content_id = stack.pop()
                self._index(store, tree_type, content_id, parent_content_id)
                indexed += 1
                child_ids = [
                    child.id
                    for child in self.contents.find_direct_children(content_id, session=session)
                    if child.forest_tree_type == tree_type
                ]
                stack.extend((child_id, content_id) for child_id in reversed(child_ids))
        logger.info("forest_content_rebuilt", tree_type=tree_type, indexed=indexed)
        return indexed

    # ------------------------------------------------------------------
    # Content-level API
    # ------------------------------------------------------------------

    def create_index(self, content: C) -> ForestIndexNode:
        return self.index_content(content)

    def update_index(self, content: C) -> ForestIndexNode:
        return self.index_content(content)

    def delete_index(self, content: C) -> ForestIndexNode | None:
        if content.id is None:
            raise NotFoundError.content(None)
        return self.drop_index(content.id)

    def index_content(self, content: C, *, session: Session | None = None) -> ForestIndexNode:
        """Index a content record, indexing any unindexed ancestors first."""
        if content.id is None:
            raise NotFoundError.content(None)
        tree_type = content.forest_tree_type or self.default_tree_type
        with self.engine.unit_of_work(tree_type, session) as store:
            missing: list[tuple[int, int | None]] = []
            seen = {content.id}
            parent_content_id = content.parent_id
            while parent_content_id is not None:
                parent_node = store.get_by_content_id(parent_content_id)
                if parent_node is not None and parent_node.is_indexed:
                    break
                parent = self.contents.get(parent_content_id, session=store.session)
                if parent is None:
                    raise NotFoundError.content(parent_content_id)
                if parent.id in seen:
                    raise PreconditionError.invalid_move(content.id, parent_content_id)
                seen.add(parent.id)
                missing.append((parent.id, parent.parent_id))
                parent_content_id = parent.parent_id
            for ancestor_id, ancestor_parent_id in reversed(missing):
                self._index(store, tree_type, ancestor_id, ancestor_parent_id)
            return self._index(store, tree_type, content.id, content.parent_id)

    # ------------------------------------------------------------------
    # Reads (no lock)
    # ------------------------------------------------------------------

    def find_roots(self, tree_type: str | None = None, page: PageRequest | None = None) -> Page[C]:
        return self.contents.find_roots(tree_type or self.default_tree_type, page)

    def find_direct_children(self, content_id: int, page: PageRequest | None = None) -> Page[C]:
        self._require_content(content_id)
        return self.contents.find_direct_children(content_id, page)

    def find_all_children(self, content_id: int, page: PageRequest | None = None) -> Page[C]:
        tree_type, lft, rgt = self._require_interval(content_id)
        return self.contents.find_all_children(tree_type, lft, rgt, page)

    def find_all_parents(self, content_id: int, *, descending: bool = True) -> list[C]:
        """Ancestors by index lft: nearest first, content root last, unless ascending."""
        tree_type, lft, rgt = self._require_interval(content_id)
        return self.contents.find_all_parents(tree_type, lft, rgt, descending=descending)

    def get_index(self, content_id: int) -> ForestIndexNode | None:
        return self.engine.get_by_content_id(content_id)

    # ------------------------------------------------------------------
    # Integrity
    # ------------------------------------------------------------------

    def verify(self, tree_type: str | None = None) -> IntegrityReport:
        """Check the nested-set invariants of a tree type."""
        return IntegrityChecker(self.db).verify(tree_type or self.default_tree_type)

    def recover(self, tree_type: str | None = None) -> IntegrityReport:
        """Rebuild from content when verification fails."""
        recovery = IndexRecovery(IntegrityChecker(self.db), self.rebuild_indexes)
        return recovery.recover(tree_type or self.default_tree_type)

    def close(self) -> None:
        """Close all resources."""
        self.db.dispose()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _index(
        self,
        store: IndexStore,
        tree_type: str,
        content_id: int,
        parent_content_id: int | None,
    ) -> ForestIndexNode:
        existing = store.get_by_content_id(content_id)
        if existing is not None and existing.forest_tree_type != tree_type:
            raise PreconditionError.tree_type_mismatch(existing.id, tree_type, existing.forest_tree_type)

        if parent_content_id is not None:
            parent = store.get_by_content_id(parent_content_id)
            if parent is None:
                raise UnsupportedOperationError.recursive_indexing(content_id, parent_content_id)
            if parent.forest_tree_type != tree_type:
                raise PreconditionError.tree_type_mismatch(parent.id, tree_type, parent.forest_tree_type)
            parent_id = parent.id
        else:
            parent_id = self._ensure_anchor(store, tree_type).id

        if existing is None:
            node = self.engine.new_node(tree_type, content_id=content_id, parent_id=parent_id)
        else:
            # Re-read: creating the anchor expires every loaded row
            node = store.get_by_content_id(content_id)
            if node is None:
                raise NotFoundError.content(content_id)
            node.parent_id = parent_id
        return self.engine.save_node(node, session=store.session)

    def _ensure_anchor(self, store: IndexStore, tree_type: str) -> ForestIndexNode:
        """The structural root without content, created on first use."""
        root = store.get_root(tree_type)
        if root is not None and root.content_id is None:
            return root
        anchor = self.engine.new_node(tree_type)
        anchor = self.engine.insert_as_root(anchor, session=store.session)
        logger.debug("forest_anchor_created", tree_type=tree_type, node_id=anchor.id)
        return anchor

    def _require_content(self, content_id: int) -> C:
        content = self.contents.get(content_id)
        if content is None:
            raise NotFoundError.content(content_id)
        return content

    def _require_interval(self, content_id: int) -> tuple[str, int, int]:
        """Tree type and bounds of the content's index node."""
        self._require_content(content_id)
        node = self.engine.get_by_content_id(content_id)
        if node is None or node.lft is None or node.rgt is None:
            raise PreconditionError.node_not_indexed(None if node is None else node.id)
        return node.forest_tree_type, node.lft, node.rgt


__all__ = ["ForestContentCoordinator"]
