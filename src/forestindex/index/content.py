"""Content store: the hosting application's records, read through the index.

Content records carry their own ``id``, ``parent_id`` (another content id,
or None for a content-level root) and ``forest_tree_type``. The index never
writes them; it joins on ``forest_index.content_id == content.id`` to turn
interval predicates into subtree and ancestor queries.

Two kinds of reads:
- Parent-pointer reads (roots, direct children) use only content columns
  and work while every interval is unset, e.g. during a rebuild.
- Range reads (all children, all parents) join the index and use the
  anchor node's interval.
"""

from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Generic, Protocol, TypeVar

from sqlalchemy import func
from sqlmodel import col, select

from forestindex.index.models import ForestContent, ForestIndexNode, Page, PageRequest

if TYPE_CHECKING:
    from sqlmodel import Session

    from forestindex.index._internal.db.database import Database

C = TypeVar("C", bound=ForestContent)


class ContentStore(Protocol[C]):
    """What the coordinator needs from the hosting application's records."""

    def get(self, content_id: int, *, session: Session | None = None) -> C | None: ...

    def find_roots(
        self, tree_type: str, page: PageRequest | None = None, *, session: Session | None = None
    ) -> Page[C]: ...

    def find_direct_children(
        self, content_id: int, page: PageRequest | None = None, *, session: Session | None = None
    ) -> Page[C]: ...

    def find_all_children(
        self,
        tree_type: str,
        lft: int,
        rgt: int,
        page: PageRequest | None = None,
        *,
        session: Session | None = None,
    ) -> Page[C]: ...

    def find_all_parents(
        self,
        tree_type: str,
        lft: int,
        rgt: int,
        *,
        descending: bool = True,
        session: Session | None = None,
    ) -> list[C]: ...


class SqlContentStore(Generic[C]):
    """ContentStore over a SQLModel table that lives in the index database.

    Usage::

        class Department(ForestContent, table=True):
            name: str

        contents = SqlContentStore(db, Department)
        roots = contents.find_roots("org")
    """

    def __init__(self, db: Database, model: type[C]) -> None:
        self.db = db
        self.model = model

    @contextmanager
    def _session(self, session: Session | None) -> Generator[Session, None, None]:
        if session is not None:
            yield session
            return
        with self.db.session() as own:
            yield own

    def get(self, content_id: int, *, session: Session | None = None) -> C | None:
        with self._session(session) as s:
            return s.get(self.model, content_id)

    def find_roots(
        self, tree_type: str, page: PageRequest | None = None, *, session: Session | None = None
    ) -> Page[C]:
        """Content records without a parent, by id."""
        model = self.model
        conditions = (col(model.parent_id).is_(None), col(model.forest_tree_type) == tree_type)
        with self._session(session) as s:
            return _paginate(s, select(model).where(*conditions).order_by(col(model.id)), page)

    def find_direct_children(
        self, content_id: int, page: PageRequest | None = None, *, session: Session | None = None
    ) -> Page[C]:
        """Content records whose parent is ``content_id``, by id."""
        model = self.model
        stmt = select(model).where(col(model.parent_id) == content_id).order_by(col(model.id))
        with self._session(session) as s:
            return _paginate(s, stmt, page)

    def find_all_children(
        self,
        tree_type: str,
        lft: int,
        rgt: int,
        page: PageRequest | None = None,
        *,
        session: Session | None = None,
    ) -> Page[C]:
        """Content whose index lft lies in ``[lft + 1, rgt - 1]``, by lft."""
        node_lft = col(ForestIndexNode.lft)
        stmt = (
            select(self.model)
            .join(ForestIndexNode, col(ForestIndexNode.content_id) == col(self.model.id))
            .where(
                col(ForestIndexNode.forest_tree_type) == tree_type,
                node_lft.between(lft + 1, rgt - 1),
            )
            .order_by(node_lft)
        )
        with self._session(session) as s:
            return _paginate(s, stmt, page)

    def find_all_parents(
        self,
        tree_type: str,
        lft: int,
        rgt: int,
        *,
        descending: bool = True,
        session: Session | None = None,
    ) -> list[C]:
        """Content whose interval encloses ``[lft, rgt]``; nearest first when descending."""
        node_lft = col(ForestIndexNode.lft)
        stmt = (
            select(self.model)
            .join(ForestIndexNode, col(ForestIndexNode.content_id) == col(self.model.id))
            .where(
                col(ForestIndexNode.forest_tree_type) == tree_type,
                node_lft < lft,
                col(ForestIndexNode.rgt) > rgt,
            )
            .order_by(node_lft.desc() if descending else node_lft)
        )
        with self._session(session) as s:
            return list(s.exec(stmt).all())


def _paginate(session: Session, stmt: Any, page: PageRequest | None) -> Page[Any]:
    page = page or PageRequest()
    total = session.exec(select(func.count()).select_from(stmt.order_by(None).subquery())).one()
    paged = stmt.offset(page.offset)
    if page.limit is not None:
        paged = paged.limit(page.limit)
    items = list(session.exec(paged).all())
    return Page(items=items, total=int(total), offset=page.offset, limit=page.limit)


__all__ = ["ContentStore", "SqlContentStore"]
