"""Forest index engine: nested-set maintenance for index rows.

The engine owns the ``lft``/``rgt``/``parent_id`` columns of every
``forest_index`` row and keeps them consistent under insert, move, delete
and rebuild. Each public mutation runs as one atomic unit:

- Without a session, the engine takes the tree type's write lock, opens a
  BEGIN IMMEDIATE transaction, and commits or rolls back the whole sequence.
- With a caller session, the caller owns both the transaction and the lock.

Labelling rules:
- A new root takes ``lft = 1`` after every indexed interval moved one step
  right; its ``rgt`` is the new upper bound, so it encloses the previous
  forest, and the previous root is chained beneath it.
- A new child becomes the right-most child of its parent: it takes the
  parent's current ``rgt`` as ``lft`` after a two-slot gap is opened there.
- A move unindexes the subtree interior, closes the hole it leaves, and
  re-inserts the node and its descendants under the new parent by walking
  parent links in ascending id order.
"""

from __future__ import annotations

from collections.abc import Callable, Generator
from contextlib import contextmanager
from typing import TYPE_CHECKING

import structlog

from forestindex.config.constants import DEFAULT_TREE_TYPE, ROOT_LFT
from forestindex.core.errors import InternalError, NotFoundError, PreconditionError
from forestindex.core.logging import clear_operation_id, get_operation_id, set_operation_id
from forestindex.index._internal.db.store import IndexStore
from forestindex.index._internal.locks import TreeTypeLocks
from forestindex.index.models import ForestIndexNode, Page, PageRequest

if TYPE_CHECKING:
    from sqlmodel import Session

    from forestindex.index._internal.db.database import Database

logger = structlog.get_logger()

NodeFactory = Callable[[], ForestIndexNode]


class ForestIndexEngine:
    """Insert, move, delete and rebuild nested-set intervals per tree type.

    Usage::

        engine = ForestIndexEngine(db)
        root = engine.save_node(engine.new_node("org"))
        child = engine.save_node(engine.new_node("org", parent_id=root.id))

        # Move: pass the node as loaded, with the new parent set
        child.parent_id = other.id
        engine.save_node(child)

    Nodes returned by the engine are fully loaded and stay readable after
    the transaction that produced them has closed.
    """

    def __init__(
        self,
        db: Database,
        node_factory: NodeFactory = ForestIndexNode,
        *,
        locks: TreeTypeLocks | None = None,
        lock_timeout: float | None = None,
        default_tree_type: str = DEFAULT_TREE_TYPE,
    ) -> None:
        self.db = db
        self._node_factory = node_factory
        self.locks = locks or TreeTypeLocks()
        self._lock_timeout = lock_timeout
        self.default_tree_type = default_tree_type

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    def new_node(
        self,
        tree_type: str | None = None,
        *,
        content_id: int | None = None,
        parent_id: int | None = None,
    ) -> ForestIndexNode:
        """Create an unsaved, unindexed node through the configured factory."""
        node = self._node_factory()
        if not isinstance(node, ForestIndexNode):
            raise PreconditionError.node_factory_invalid(node)
        node.forest_tree_type = tree_type or self.default_tree_type
        node.content_id = content_id
        node.parent_id = parent_id
        node.lft = None
        node.rgt = None
        return node

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @contextmanager
    def unit_of_work(
        self, tree_type: str, session: Session | None = None
    ) -> Generator[IndexStore, None, None]:
        """Store bound to the caller's session, or to a locked write transaction.

        An operation id is bound for the transaction unless one is already set.
        """
        if session is not None:
            yield IndexStore(session)
            return
        owns_operation = get_operation_id() is None
        if owns_operation:
            set_operation_id()
        try:
            with (
                self.locks.hold(tree_type, self._lock_timeout),
                self.db.immediate_transaction() as own,
            ):
                yield IndexStore(own)
        finally:
            if owns_operation:
                clear_operation_id()

    @contextmanager
    def _reader(self, session: Session | None) -> Generator[IndexStore, None, None]:
        if session is not None:
            yield IndexStore(session)
            return
        with self.db.session() as own:
            yield IndexStore(own)

    # ------------------------------------------------------------------
    # Public mutations
    # ------------------------------------------------------------------

    def save_node(self, node: ForestIndexNode, *, session: Session | None = None) -> ForestIndexNode:
        """Persist a node and keep its interval consistent with its parent.

        - New node (no id) or unindexed row: persist, then insert as root
          or as the parent's right-most child.
        - Parent unchanged on an indexed row: only ``content_id`` is
          written; stored ranges win over whatever the caller holds.
        - Parent changed on an indexed row: move the node with its whole
          subtree. The caller must hold the node's pre-move ``lft``/``rgt``.

        Returns:
            The persisted node, fully indexed.

        Raises:
            PreconditionError: Parent not indexed, pre-move ranges missing,
                move into the node's own subtree, or tree type mismatch.
            NotFoundError: The requested parent does not exist.
        """
        tree_type = node.forest_tree_type or self.default_tree_type
        with self.unit_of_work(tree_type, session) as store:
            return self._save(store, node, tree_type)

    def insert_as_root(self, node: ForestIndexNode, *, session: Session | None = None) -> ForestIndexNode:
        """Index an unindexed node as the structural root of its tree type.

        Any previous root is chained beneath the new one.
        """
        tree_type = node.forest_tree_type or self.default_tree_type
        with self.unit_of_work(tree_type, session) as store:
            node_id = self._persist_unindexed(store, node, tree_type, parent_id=None)
            self._insert_as_root(store, node_id, tree_type)
            return self._reload(store, node_id)

    def insert_as_child_last(
        self,
        node: ForestIndexNode,
        parent: ForestIndexNode,
        *,
        session: Session | None = None,
    ) -> ForestIndexNode:
        """Index an unindexed node as the right-most child of ``parent``."""
        tree_type = node.forest_tree_type or self.default_tree_type
        if parent.id is None:
            raise PreconditionError.parent_not_indexed(None)
        with self.unit_of_work(tree_type, session) as store:
            node_id = self._persist_unindexed(store, node, tree_type, parent_id=parent.id)
            self._insert_as_child_last(store, node_id, tree_type, parent.id)
            return self._reload(store, node_id)

    def delete_node(
        self,
        node: ForestIndexNode,
        close_gap: bool = True,
        *,
        session: Session | None = None,
    ) -> int:
        """Delete a node and its whole subtree.

        With ``close_gap=False`` the hole is left in place: ancestors keep
        their old width, so their descendant counts and range predicates
        overstate the subtree until the next rebuild. That is the price of
        a delete that touches no other row.

        Returns:
            Number of rows removed.

        Raises:
            NotFoundError: No row with the node's id.
            PreconditionError: The row has no ranges to locate its subtree by.
        """
        if node.id is None:
            raise PreconditionError.node_not_indexed(None)
        node_id = node.id
        tree_type = node.forest_tree_type or self.default_tree_type
        with self.unit_of_work(tree_type, session) as store:
            stored = store.get_stored(node_id)
            if stored is None:
                raise NotFoundError.node(node_id)
            if stored.forest_tree_type != tree_type:
                raise PreconditionError.tree_type_mismatch(node_id, tree_type, stored.forest_tree_type)
            if stored.lft is None or stored.rgt is None:
                raise PreconditionError.node_not_indexed(node_id)
            removed = store.delete_range(tree_type, stored.lft, stored.rgt)
            if close_gap:
                store.close_gap(tree_type, stored.lft, stored.rgt)
        logger.info(
            "forest_subtree_deleted",
            node_id=node_id,
            tree_type=tree_type,
            removed=removed,
            gap_closed=close_gap,
        )
        return removed

    def rebuild(self, tree_type: str | None = None, *, session: Session | None = None) -> int:
        """Relabel every row of the tree type from its parent links.

        Clears all ranges, then indexes the structural root and walks its
        descendants pre-order, children in ascending id order. Extra
        parentless rows are chained under the first root. Rows whose parent
        link leads nowhere stay unindexed.

        Returns:
            Number of rows indexed. Zero for an empty tree type.
        """
        tree_type = tree_type or self.default_tree_type
        with self.unit_of_work(tree_type, session) as store:
            store.clear_ranges(tree_type)
            roots = store.list_roots(tree_type)
            if not roots:
                logger.info("forest_rebuilt", tree_type=tree_type, indexed=0)
                return 0
            root_id = _row_id(roots[0])
            extra_root_ids = [_row_id(r) for r in roots[1:]]
            for extra_id in extra_root_ids:
                store.set_parent(extra_id, root_id)
            self._insert_as_root(store, root_id, tree_type)
            indexed = 1 + self._relayout_children(store, root_id, tree_type)
        logger.info(
            "forest_rebuilt",
            tree_type=tree_type,
            indexed=indexed,
            roots_chained=len(extra_root_ids),
        )
        return indexed

    def clear_indexes(self, tree_type: str | None = None, *, session: Session | None = None) -> int:
        """Unset every interval, keeping rows and parent links for a rebuild."""
        tree_type = tree_type or self.default_tree_type
        with self.unit_of_work(tree_type, session) as store:
            cleared = store.clear_ranges(tree_type)
        logger.info("forest_ranges_cleared", tree_type=tree_type, rows=cleared)
        return cleared

    def drop_indexes(self, tree_type: str | None = None, *, session: Session | None = None) -> int:
        """Delete every row of the tree type."""
        tree_type = tree_type or self.default_tree_type
        with self.unit_of_work(tree_type, session) as store:
            dropped = store.delete_all(tree_type)
        logger.info("forest_dropped", tree_type=tree_type, rows=dropped)
        return dropped

    # ------------------------------------------------------------------
    # Reads (no lock)
    # ------------------------------------------------------------------

    def get_node(self, node_id: int, *, session: Session | None = None) -> ForestIndexNode | None:
        with self._reader(session) as store:
            return store.get_by_id(node_id)

    def get_by_content_id(
        self, content_id: int, *, session: Session | None = None
    ) -> ForestIndexNode | None:
        with self._reader(session) as store:
            return store.get_by_content_id(content_id)

    def get_root(
        self, tree_type: str | None = None, *, session: Session | None = None
    ) -> ForestIndexNode | None:
        with self._reader(session) as store:
            return store.get_root(tree_type or self.default_tree_type)

    def list_direct_children(
        self, node: ForestIndexNode, *, session: Session | None = None
    ) -> list[ForestIndexNode]:
        with self._reader(session) as store:
            return store.list_direct_children(node)

    def list_descendants(
        self,
        node: ForestIndexNode,
        page: PageRequest | None = None,
        *,
        session: Session | None = None,
    ) -> Page[ForestIndexNode]:
        with self._reader(session) as store:
            return store.list_descendants(node, page)

    def list_ancestors(
        self,
        node: ForestIndexNode,
        *,
        descending: bool = True,
        session: Session | None = None,
    ) -> list[ForestIndexNode]:
        with self._reader(session) as store:
            return store.list_ancestors(node, descending=descending)

    def count(self, tree_type: str | None = None, *, session: Session | None = None) -> int:
        with self._reader(session) as store:
            return store.count(tree_type)

    # ------------------------------------------------------------------
    # Algorithms (run inside an open unit of work)
    # ------------------------------------------------------------------

    def _save(self, store: IndexStore, node: ForestIndexNode, tree_type: str) -> ForestIndexNode:
        with store.session.no_autoflush:
            node_id = node.id
            requested_parent = node.parent_id
            content_id = node.content_id
            lft, rgt = node.lft, node.rgt

        if requested_parent is not None and requested_parent == node_id:
            raise PreconditionError.invalid_move(node_id, requested_parent)

        stored = store.get_stored(node_id) if node_id is not None else None

        if stored is None or node_id is None:
            if node_id is not None and requested_parent is None and lft is not None and rgt is not None:
                # Caller-supplied id and labels for a row the store has never seen
                node.forest_tree_type = tree_type
                store.insert(node)
                logger.debug("forest_node_imported", node_id=node_id, lft=lft, rgt=rgt)
                return self._reload(store, node_id)
            node.forest_tree_type = tree_type
            node.lft = None
            node.rgt = None
            store.insert(node)
            return self._index(store, _row_id(node), tree_type, requested_parent)

        if stored.forest_tree_type != tree_type:
            raise PreconditionError.tree_type_mismatch(node_id, tree_type, stored.forest_tree_type)

        if not stored.is_indexed:
            store.set_content_id(node_id, content_id)
            return self._index(store, node_id, tree_type, requested_parent)

        if stored.parent_id == requested_parent:
            store.set_content_id(node_id, content_id)
            return self._reload(store, node_id)

        if lft is None or rgt is None:
            raise PreconditionError.move_ranges_missing(node_id)
        store.set_content_id(node_id, content_id)
        return self._move(store, node_id, tree_type, stored.parent_id, requested_parent)

    def _index(
        self, store: IndexStore, node_id: int, tree_type: str, parent_id: int | None
    ) -> ForestIndexNode:
        if parent_id is None:
            self._insert_as_root(store, node_id, tree_type)
        else:
            self._insert_as_child_last(store, node_id, tree_type, parent_id)
        self._relayout_children(store, node_id, tree_type)
        node = self._reload(store, node_id)
        logger.debug(
            "forest_node_indexed",
            node_id=node_id,
            tree_type=tree_type,
            parent_id=parent_id,
            lft=node.lft,
            rgt=node.rgt,
        )
        return node

    def _move(
        self,
        store: IndexStore,
        node_id: int,
        tree_type: str,
        from_parent: int | None,
        to_parent: int | None,
    ) -> ForestIndexNode:
        stored = store.get_stored(node_id)
        if stored is None:
            raise NotFoundError.node(node_id)
        if stored.lft is None or stored.rgt is None:
            raise PreconditionError.node_not_indexed(node_id)
        old_lft, old_rgt = stored.lft, stored.rgt

        if to_parent is not None:
            parent = self._require_parent(store, to_parent, tree_type)
            if parent.lft is None or parent.rgt is None:
                raise PreconditionError.parent_not_indexed(to_parent)
            if old_lft <= parent.lft <= old_rgt:
                raise PreconditionError.invalid_move(node_id, to_parent)

        store.set_range_and_parent(node_id, None, None, to_parent)
        store.clear_interior(tree_type, old_lft, old_rgt)
        store.close_gap(tree_type, old_lft, old_rgt)

        if to_parent is None:
            self._insert_as_root(store, node_id, tree_type)
        else:
            self._insert_as_child_last(store, node_id, tree_type, to_parent)
        moved = 1 + self._relayout_children(store, node_id, tree_type)

        node = self._reload(store, node_id)
        logger.info(
            "forest_node_moved",
            node_id=node_id,
            tree_type=tree_type,
            from_parent=from_parent,
            to_parent=to_parent,
            subtree_size=moved,
        )
        return node

    def _insert_as_root(self, store: IndexStore, node_id: int, tree_type: str) -> None:
        store.shift_for_root_insert(tree_type)
        upper = store.upper_bound(tree_type)
        store.set_range_and_parent(node_id, ROOT_LFT, upper, None)
        previous = store.get_other_root(tree_type, node_id)
        if previous is not None:
            store.set_parent(_row_id(previous), node_id)

    def _insert_as_child_last(
        self, store: IndexStore, node_id: int, tree_type: str, parent_id: int
    ) -> None:
        parent = self._require_parent(store, parent_id, tree_type)
        if parent.rgt is None or parent.lft is None:
            raise PreconditionError.parent_not_indexed(parent_id)
        parent_rgt = parent.rgt
        store.shift_for_child_insert(tree_type, parent_rgt)
        store.set_range_and_parent(node_id, parent_rgt, parent_rgt + 1, parent_id)

    def _relayout_children(self, store: IndexStore, node_id: int, tree_type: str) -> int:
        """Insert every unindexed descendant reachable by parent links.

        Already-indexed children (a previous root chained beneath this one)
        keep their ranges. Returns the number of rows indexed.
        """
        indexed = 0
        stack = [node_id]
        while stack:
            current_id = stack.pop()
            current = store.get_by_id(current_id)
            if current is None:
                continue
            child_ids = [
                child.id
                for child in store.list_direct_children(current, unindexed_only=True)
                if child.id is not None
            ]
            for child_id in child_ids:
                self._insert_as_child_last(store, child_id, tree_type, current_id)
            indexed += len(child_ids)
            stack.extend(reversed(child_ids))
        return indexed

    def _require_parent(self, store: IndexStore, parent_id: int, tree_type: str) -> ForestIndexNode:
        parent = store.get_by_id(parent_id)
        if parent is None:
            raise NotFoundError.node(parent_id)
        if parent.forest_tree_type != tree_type:
            raise PreconditionError.tree_type_mismatch(parent_id, tree_type, parent.forest_tree_type)
        return parent

    def _persist_unindexed(
        self, store: IndexStore, node: ForestIndexNode, tree_type: str, parent_id: int | None
    ) -> int:
        node_id = node.id
        stored = store.get_stored(node_id) if node_id is not None else None
        if stored is None or node_id is None:
            node.forest_tree_type = tree_type
            node.parent_id = parent_id
            node.lft = None
            node.rgt = None
            store.insert(node)
            return _row_id(node)
        if stored.forest_tree_type != tree_type:
            raise PreconditionError.tree_type_mismatch(node_id, tree_type, stored.forest_tree_type)
        if stored.is_indexed:
            raise PreconditionError.node_already_indexed(node_id)
        store.set_parent(node_id, parent_id)
        return node_id

    def _reload(self, store: IndexStore, node_id: int) -> ForestIndexNode:
        node = store.get_by_id(node_id)
        if node is None:
            raise NotFoundError.node(node_id)
        store.session.refresh(node)
        return node


def _row_id(node: ForestIndexNode) -> int:
    """Id of a row the store has already assigned one to."""
    if node.id is None:
        raise InternalError.unexpected("index row has no id", content_id=node.content_id)
    return node.id


__all__ = ["ForestIndexEngine", "NodeFactory"]
