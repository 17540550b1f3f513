"""Index store: nested-set primitives over one transaction.

IndexStore wraps an open Session and exposes the reads and bulk writes the
engine composes into structural operations. Every primitive is scoped to a
single tree type.

Visibility contract inside one transaction:
- Pending ORM changes are flushed before every bulk statement.
- Bulk statements run on the session's connection (Core, no ORM sync) and
  expire every cached row afterwards, so the next attribute access reloads
  the shifted values.
- Rows removed by a bulk delete are detached with their last stored values
  loaded, so callers holding them can still read them.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, NamedTuple

from sqlalchemy import case, delete, func, inspect, update
from sqlalchemy import select as sa_select
from sqlalchemy.orm import make_transient
from sqlmodel import col, select

from forestindex.config.constants import EMPTY_UPPER_BOUND
from forestindex.index.models import ForestIndexNode, Page, PageRequest

if TYPE_CHECKING:
    from sqlmodel import Session

_LFT = col(ForestIndexNode.lft)
_RGT = col(ForestIndexNode.rgt)
_TYPE = col(ForestIndexNode.forest_tree_type)
_PARENT = col(ForestIndexNode.parent_id)
_ID = col(ForestIndexNode.id)

# Core table for bulk DML executed on the session connection
_TABLE = ForestIndexNode.__table__  # type: ignore[attr-defined]
_C = _TABLE.c


class StoredNode(NamedTuple):
    """Persisted structural columns of one row."""

    parent_id: int | None
    lft: int | None
    rgt: int | None
    forest_tree_type: str

    @property
    def is_indexed(self) -> bool:
        return self.lft is not None and self.rgt is not None


class IndexStore:
    """Range-scan and bulk-update primitives for ``forest_index`` rows."""

    def __init__(self, session: Session) -> None:
        self._session = session

    @property
    def session(self) -> Session:
        return self._session

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_by_id(self, node_id: int) -> ForestIndexNode | None:
        return self._session.get(ForestIndexNode, node_id)

    def get_by_content_id(self, content_id: Any) -> ForestIndexNode | None:
        stmt = select(ForestIndexNode).where(col(ForestIndexNode.content_id) == content_id)
        return self._session.exec(stmt).first()

    def get_stored(self, node_id: int) -> StoredNode | None:
        """Structural columns as persisted, ignoring unflushed edits to the row."""
        stmt = sa_select(_C.parent_id, _C.lft, _C.rgt, _C.forest_tree_type).where(_C.id == node_id)
        with self._session.no_autoflush:
            row = self._session.execute(stmt).first()
        return None if row is None else StoredNode(*row)

    def get_parent_id(self, node_id: int) -> int | None:
        stored = self.get_stored(node_id)
        return None if stored is None else stored.parent_id

    def get_root(self, tree_type: str) -> ForestIndexNode | None:
        """The structural root: the node of the type without a parent."""
        stmt = (
            select(ForestIndexNode)
            .where(_TYPE == tree_type, _PARENT.is_(None))
            .order_by(_ID)
        )
        return self._session.exec(stmt).first()

    def get_other_root(self, tree_type: str, exclude_id: int) -> ForestIndexNode | None:
        """A second parentless node; only exists transiently while chaining roots."""
        stmt = (
            select(ForestIndexNode)
            .where(_TYPE == tree_type, _PARENT.is_(None), _ID != exclude_id)
            .order_by(_ID)
        )
        return self._session.exec(stmt).first()

    def list_roots(self, tree_type: str) -> list[ForestIndexNode]:
        """Every parentless row. More than one means a broken root chain."""
        stmt = select(ForestIndexNode).where(_TYPE == tree_type, _PARENT.is_(None)).order_by(_ID)
        return list(self._session.exec(stmt).all())

    def list_direct_children(
        self, node: ForestIndexNode, *, unindexed_only: bool = False
    ) -> list[ForestIndexNode]:
        """Children by parent link, ordered by id so relayout is repeatable."""
        stmt = select(ForestIndexNode).where(
            _PARENT == node.id, _TYPE == node.forest_tree_type
        )
        if unindexed_only:
            stmt = stmt.where(_LFT.is_(None))
        return list(self._session.exec(stmt.order_by(_ID)).all())

    def list_descendants(
        self, node: ForestIndexNode, page: PageRequest | None = None
    ) -> Page[ForestIndexNode]:
        """Rows whose lft lies strictly inside the node's interval, by lft."""
        page = page or PageRequest()
        if node.lft is None or node.rgt is None:
            return Page(items=[], total=0, offset=page.offset, limit=page.limit)
        condition = (_TYPE == node.forest_tree_type, _LFT > node.lft, _LFT < node.rgt)
        total = self._session.exec(
            select(func.count()).select_from(ForestIndexNode).where(*condition)
        ).one()
        stmt = select(ForestIndexNode).where(*condition).order_by(_LFT).offset(page.offset)
        if page.limit is not None:
            stmt = stmt.limit(page.limit)
        items = list(self._session.exec(stmt).all())
        return Page(items=items, total=total, offset=page.offset, limit=page.limit)

    def list_ancestors(self, node: ForestIndexNode, *, descending: bool = True) -> list[ForestIndexNode]:
        """Rows whose interval strictly encloses the node's interval."""
        if node.lft is None or node.rgt is None:
            return []
        stmt = select(ForestIndexNode).where(
            _TYPE == node.forest_tree_type, _LFT < node.lft, _RGT > node.rgt
        )
        stmt = stmt.order_by(_LFT.desc() if descending else _LFT)
        return list(self._session.exec(stmt).all())

    def list_all(self, tree_type: str) -> list[ForestIndexNode]:
        stmt = select(ForestIndexNode).where(_TYPE == tree_type).order_by(_ID)
        return list(self._session.exec(stmt).all())

    def upper_bound(self, tree_type: str) -> int:
        """``coalesce(max(rgt), 1) + 1`` over the type's indexed rows."""
        stmt = select(func.coalesce(func.max(_RGT), EMPTY_UPPER_BOUND) + 1).where(
            _TYPE == tree_type
        )
        return int(self._session.exec(stmt).one())

    def count(self, tree_type: str | None = None) -> int:
        stmt = select(func.count()).select_from(ForestIndexNode)
        if tree_type is not None:
            stmt = stmt.where(_TYPE == tree_type)
        return int(self._session.exec(stmt).one())

    def tree_types(self) -> list[str]:
        stmt = select(ForestIndexNode.forest_tree_type).distinct().order_by(_TYPE)
        return list(self._session.exec(stmt).all())

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def save(self, node: ForestIndexNode) -> ForestIndexNode:
        """Insert or update by id and flush so the id is assigned."""
        self._session.add(node)
        self._session.flush()
        return node

    def insert(self, node: ForestIndexNode) -> ForestIndexNode:
        """Add a row that is not in the store yet, keeping a caller-supplied id."""
        if inspect(node).detached:
            make_transient(node)
        return self.save(node)

    def set_range_and_parent(
        self, node_id: int, lft: int | None, rgt: int | None, parent_id: int | None
    ) -> None:
        self._execute_bulk(
            update(_TABLE).where(_C.id == node_id).values(lft=lft, rgt=rgt, parent_id=parent_id)
        )

    def set_parent(self, node_id: int, parent_id: int | None) -> None:
        self._execute_bulk(update(_TABLE).where(_C.id == node_id).values(parent_id=parent_id))

    def set_content_id(self, node_id: int, content_id: int | None) -> None:
        self._execute_bulk(update(_TABLE).where(_C.id == node_id).values(content_id=content_id))

    def shift_for_root_insert(self, tree_type: str) -> int:
        """Move every indexed interval one step right to free ``lft = 1``."""
        return self._execute_bulk(
            update(_TABLE)
            .where(_C.forest_tree_type == tree_type, _C.lft.is_not(None), _C.rgt.is_not(None))
            .values(lft=_C.lft + 1, rgt=_C.rgt + 1)
        )

    def shift_for_child_insert(self, tree_type: str, threshold_rgt: int) -> int:
        """Open a two-slot gap at ``threshold_rgt`` (the parent's current rgt)."""
        return self._execute_bulk(
            update(_TABLE)
            .where(_C.forest_tree_type == tree_type, _C.rgt >= threshold_rgt)
            .values(
                lft=case((_C.lft > threshold_rgt, _C.lft + 2), else_=_C.lft),
                rgt=_C.rgt + 2,
            )
        )

    def delete_range(self, tree_type: str, lft: int, rgt: int) -> int:
        """Remove every row whose lft falls in ``[lft, rgt]``."""
        return self._delete_where(_C.forest_tree_type == tree_type, _C.lft.between(lft, rgt))

    def close_gap(self, tree_type: str, lft: int, rgt: int) -> int:
        """Pull every bound right of ``lft`` back by the removed width."""
        width = rgt - lft + 1
        return self._execute_bulk(
            update(_TABLE)
            .where(_C.forest_tree_type == tree_type, (_C.lft > lft) | (_C.rgt > lft))
            .values(
                lft=case((_C.lft > lft, _C.lft - width), else_=_C.lft),
                rgt=case((_C.rgt > lft, _C.rgt - width), else_=_C.rgt),
            )
        )

    def clear_ranges(self, tree_type: str) -> int:
        return self._execute_bulk(
            update(_TABLE).where(_C.forest_tree_type == tree_type).values(lft=None, rgt=None)
        )

    def clear_interior(self, tree_type: str, lft: int, rgt: int) -> int:
        """Unindex the descendants of the interval ``[lft, rgt]``, not its owner."""
        return self._execute_bulk(
            update(_TABLE)
            .where(_C.forest_tree_type == tree_type, _C.lft.between(lft + 1, rgt - 1))
            .values(lft=None, rgt=None)
        )

    def delete_all(self, tree_type: str) -> int:
        return self._delete_where(_C.forest_tree_type == tree_type)

    def _execute_bulk(self, stmt: Any) -> int:
        self._session.flush()
        result = self._session.connection().execute(stmt)
        self._session.expire_all()
        return int(result.rowcount)

    def _delete_where(self, *condition: Any) -> int:
        self._session.flush()
        connection = self._session.connection()
        ids = set(connection.execute(sa_select(_C.id).where(*condition)).scalars())
        removed = self._loaded(ids)
        result = connection.execute(delete(_TABLE).where(*condition))
        for obj in removed:
            self._session.expunge(obj)
        self._session.expire_all()
        return int(result.rowcount)

    def _loaded(self, ids: set[int]) -> list[ForestIndexNode]:
        """Identity-map rows among ``ids``, refreshed so they stay readable once detached."""
        rows = []
        for obj in list(self._session.identity_map.values()):
            if not isinstance(obj, ForestIndexNode):
                continue
            state = inspect(obj)
            if state.identity and state.identity[0] in ids:
                if state.expired_attributes:
                    self._session.refresh(obj)
                rows.append(obj)
        return rows
