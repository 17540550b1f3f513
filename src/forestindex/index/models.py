"""SQLModel definitions for the forest index.

Single source of truth for the index table schema.

Architecture:
- forest_index: one row per indexed content record plus synthetic anchors.
  Each row carries a nested-set interval (lft, rgt) scoped to its tree type,
  so subtree membership and ancestor chains reduce to range comparisons.
- ForestContent: base for hosting content tables. The index never writes
  content rows; it joins on content.id == forest_index.content_id.
"""

from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Generic, TypeVar

from sqlmodel import Field, SQLModel

from forestindex.config.constants import DEFAULT_TREE_TYPE

T = TypeVar("T")


# ============================================================================
# TABLE MODELS
# ============================================================================


class ForestIndexNode(SQLModel, table=True):
    """Nested-set index row.

    ``parent_id`` is a plain id reference (no FK constraint, no ORM
    relationship): nodes live in a flat table and parents are resolved by
    lookup. ``lft``/``rgt`` are both None while the node is unindexed.
    """

    __tablename__ = "forest_index"

    id: int | None = Field(default=None, primary_key=True)
    content_id: int | None = Field(default=None, unique=True, index=True)  # None for anchors
    parent_id: int | None = Field(default=None, index=True)
    forest_tree_type: str = Field(default=DEFAULT_TREE_TYPE, index=True)
    lft: int | None = None
    rgt: int | None = None

    @property
    def is_indexed(self) -> bool:
        return self.lft is not None and self.rgt is not None

    @property
    def is_anchor(self) -> bool:
        """True for a synthetic structural root with no content."""
        return self.content_id is None and self.parent_id is None

    @property
    def children_count(self) -> int:
        """All descendants (recursively), derived from the interval width."""
        if self.lft is None or self.rgt is None:
            return 0
        return (self.rgt - self.lft) // 2

    def __str__(self) -> str:
        return (
            f"Forest index [{self.forest_tree_type}:{self.id}] "
            f"[{self.lft}-{self.rgt}] content [{self.content_id}]"
        )


class ForestContent(SQLModel):
    """Base for content tables indexed by the forest index.

    Subclass with ``table=True`` to get a concrete content table::

        class Department(ForestContent, table=True):
            __tablename__ = "departments"
            name: str
    """

    id: int | None = Field(default=None, primary_key=True)
    parent_id: int | None = Field(default=None, index=True)
    forest_tree_type: str = Field(default=DEFAULT_TREE_TYPE, index=True)


# ============================================================================
# DATA TRANSFER TYPES
# ============================================================================


@dataclass(frozen=True)
class PageRequest:
    """Slice of a listing query. ``limit=None`` returns everything."""

    offset: int = 0
    limit: int | None = None

    def __post_init__(self) -> None:
        if self.offset < 0:
            raise ValueError(f"offset must be >= 0, got {self.offset}")
        if self.limit is not None and self.limit < 1:
            raise ValueError(f"limit must be >= 1, got {self.limit}")


@dataclass
class Page(Generic[T]):
    """One page of a listing query plus the unpaged total."""

    items: list[T] = field(default_factory=list)
    total: int = 0
    offset: int = 0
    limit: int | None = None

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.items) < self.total

    def __iter__(self) -> Iterator[T]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)
