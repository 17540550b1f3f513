"""Unit tests for the index store primitives (store.py).

Tests cover:
- Upper bound on empty and populated tree types
- Root and child shifts
- Range deletion, gap closing, clearing
- Visibility of bulk writes inside one transaction
- Paged descendant and ordered ancestor listing
"""

from __future__ import annotations

from collections.abc import Generator

import pytest
from sqlalchemy import inspect
from sqlmodel import Session

from forestindex.index._internal.db import Database, IndexStore
from forestindex.index.models import ForestIndexNode, PageRequest


@pytest.fixture
def session(temp_db: Database) -> Generator[Session, None, None]:
    with temp_db.immediate_transaction() as session:
        yield session


@pytest.fixture
def store(session: Session) -> IndexStore:
    return IndexStore(session)


def _row(
    store: IndexStore,
    lft: int | None,
    rgt: int | None,
    parent: ForestIndexNode | None = None,
    tree_type: str = "default",
) -> ForestIndexNode:
    node = ForestIndexNode(
        forest_tree_type=tree_type,
        lft=lft,
        rgt=rgt,
        parent_id=parent.id if parent is not None else None,
    )
    return store.save(node)


@pytest.fixture
def labelled(store: IndexStore) -> dict[str, ForestIndexNode]:
    """root[1,10] -> {a[2,5] -> {a1[3,4]}, b[6,9] -> {b1[7,8]}}"""
    root = _row(store, 1, 10)
    a = _row(store, 2, 5, root)
    a1 = _row(store, 3, 4, a)
    b = _row(store, 6, 9, root)
    b1 = _row(store, 7, 8, b)
    return {"root": root, "a": a, "a1": a1, "b": b, "b1": b1}


def _bounds(store: IndexStore, node: ForestIndexNode) -> tuple[int | None, int | None]:
    stored = store.get_stored(node.id)  # type: ignore[arg-type]
    assert stored is not None
    return stored.lft, stored.rgt


class TestReads:
    """Tests for lookup and listing primitives."""

    def test_upper_bound_empty_type(self, store: IndexStore) -> None:
        """An empty tree type yields 2 so a lone root spans [1, 2]."""
        assert store.upper_bound("default") == 2

    def test_upper_bound_ignores_unindexed(self, store: IndexStore) -> None:
        _row(store, None, None)
        assert store.upper_bound("default") == 2

    def test_upper_bound_populated(self, store: IndexStore, labelled: dict[str, ForestIndexNode]) -> None:
        assert store.upper_bound("default") == 11
        assert store.upper_bound("other") == 2

    def test_root_lookup(self, store: IndexStore, labelled: dict[str, ForestIndexNode]) -> None:
        root = store.get_root("default")
        assert root is not None
        assert root.id == labelled["root"].id
        assert store.get_other_root("default", root.id) is None  # type: ignore[arg-type]

    def test_get_by_content_id(self, store: IndexStore) -> None:
        node = ForestIndexNode(content_id=42, lft=1, rgt=2)
        store.save(node)

        found = store.get_by_content_id(42)

        assert found is not None
        assert found.id == node.id
        assert store.get_by_content_id(43) is None

    def test_get_stored_ignores_unflushed_edits(
        self, store: IndexStore, labelled: dict[str, ForestIndexNode]
    ) -> None:
        """Stored state reflects the database, not pending attribute changes."""
        a = labelled["a"]
        a.parent_id = labelled["b"].id

        stored = store.get_stored(a.id)  # type: ignore[arg-type]

        assert stored is not None
        assert stored.parent_id == labelled["root"].id
        assert store.get_parent_id(a.id) == labelled["root"].id  # type: ignore[arg-type]

    def test_direct_children_ordered_by_id(
        self, store: IndexStore, labelled: dict[str, ForestIndexNode]
    ) -> None:
        children = store.list_direct_children(labelled["root"])
        assert [c.id for c in children] == [labelled["a"].id, labelled["b"].id]

    def test_direct_children_unindexed_only(
        self, store: IndexStore, labelled: dict[str, ForestIndexNode]
    ) -> None:
        store.set_range_and_parent(labelled["b"].id, None, None, labelled["root"].id)  # type: ignore[arg-type]

        children = store.list_direct_children(labelled["root"], unindexed_only=True)

        assert [c.id for c in children] == [labelled["b"].id]

    def test_descendants_paged(self, store: IndexStore, labelled: dict[str, ForestIndexNode]) -> None:
        page = store.list_descendants(labelled["root"], PageRequest(offset=1, limit=2))

        assert page.total == 4
        assert [n.id for n in page] == [labelled["a1"].id, labelled["b"].id]
        assert page.has_more

    def test_descendants_of_unindexed_node(self, store: IndexStore) -> None:
        node = _row(store, None, None)
        assert store.list_descendants(node).total == 0

    def test_ancestors_nearest_first(self, store: IndexStore, labelled: dict[str, ForestIndexNode]) -> None:
        ancestors = store.list_ancestors(labelled["b1"])
        assert [n.id for n in ancestors] == [labelled["b"].id, labelled["root"].id]

        ascending = store.list_ancestors(labelled["b1"], descending=False)
        assert [n.id for n in ascending] == [labelled["root"].id, labelled["b"].id]

    def test_counts_and_tree_types(self, store: IndexStore, labelled: dict[str, ForestIndexNode]) -> None:
        _row(store, 1, 2, tree_type="other")

        assert store.count("default") == 5
        assert store.count() == 6
        assert store.tree_types() == ["default", "other"]


class TestWrites:
    """Tests for bulk shift, delete and clear primitives."""

    def test_shift_for_root_insert(self, store: IndexStore, labelled: dict[str, ForestIndexNode]) -> None:
        unindexed = _row(store, None, None)

        store.shift_for_root_insert("default")

        assert _bounds(store, labelled["root"]) == (2, 11)
        assert _bounds(store, labelled["b1"]) == (8, 9)
        assert _bounds(store, unindexed) == (None, None)

    def test_shift_for_child_insert(self, store: IndexStore, labelled: dict[str, ForestIndexNode]) -> None:
        """Opening a gap at a's rgt widens a and its ancestors, moves b right."""
        store.shift_for_child_insert("default", 5)

        assert _bounds(store, labelled["root"]) == (1, 12)
        assert _bounds(store, labelled["a"]) == (2, 7)
        assert _bounds(store, labelled["a1"]) == (3, 4)
        assert _bounds(store, labelled["b"]) == (8, 11)

    def test_shift_is_scoped_to_tree_type(
        self, store: IndexStore, labelled: dict[str, ForestIndexNode]
    ) -> None:
        other = _row(store, 1, 2, tree_type="other")

        store.shift_for_child_insert("default", 1)

        assert _bounds(store, other) == (1, 2)

    def test_delete_range_and_close_gap(
        self, store: IndexStore, labelled: dict[str, ForestIndexNode]
    ) -> None:
        deleted = store.delete_range("default", 2, 5)
        store.close_gap("default", 2, 5)

        assert deleted == 2
        assert store.get_by_id(labelled["a"].id) is None  # type: ignore[arg-type]
        assert _bounds(store, labelled["root"]) == (1, 6)
        assert _bounds(store, labelled["b"]) == (2, 5)
        assert _bounds(store, labelled["b1"]) == (3, 4)

    def test_deleted_rows_stay_readable(
        self, store: IndexStore, labelled: dict[str, ForestIndexNode]
    ) -> None:
        """Rows removed after a bulk shift are detached with their shifted values."""
        a, a1 = labelled["a"], labelled["a1"]
        store.shift_for_root_insert("default")

        store.delete_range("default", 3, 6)

        assert inspect(a).detached
        assert (a.lft, a.rgt) == (3, 6)
        assert a1.parent_id == a.id
        assert a not in store.session

    def test_close_gap_leaves_unindexed_rows(self, store: IndexStore, labelled: dict[str, ForestIndexNode]) -> None:
        unindexed = _row(store, None, None)

        store.close_gap("default", 2, 5)

        assert _bounds(store, unindexed) == (None, None)

    def test_bulk_writes_visible_to_loaded_rows(
        self, store: IndexStore, labelled: dict[str, ForestIndexNode]
    ) -> None:
        """Loaded objects reload shifted values after a bulk statement."""
        root = labelled["root"]
        store.shift_for_root_insert("default")

        assert (root.lft, root.rgt) == (2, 11)

    def test_clear_interior(self, store: IndexStore, labelled: dict[str, ForestIndexNode]) -> None:
        store.clear_interior("default", 6, 9)

        assert _bounds(store, labelled["b"]) == (6, 9)
        assert _bounds(store, labelled["b1"]) == (None, None)
        assert _bounds(store, labelled["a1"]) == (3, 4)

    def test_clear_ranges_and_delete_all(
        self, store: IndexStore, labelled: dict[str, ForestIndexNode]
    ) -> None:
        assert store.clear_ranges("default") == 5
        assert all(not n.is_indexed for n in store.list_all("default"))

        assert store.delete_all("default") == 5
        assert store.count("default") == 0

    def test_set_parent_and_content(self, store: IndexStore, labelled: dict[str, ForestIndexNode]) -> None:
        store.set_parent(labelled["b1"].id, labelled["a"].id)  # type: ignore[arg-type]
        store.set_content_id(labelled["b1"].id, 9)  # type: ignore[arg-type]

        b1 = store.get_by_id(labelled["b1"].id)  # type: ignore[arg-type]
        assert b1 is not None
        assert b1.parent_id == labelled["a"].id
        assert b1.content_id == 9
