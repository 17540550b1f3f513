"""Tests for nested-set integrity verification and recovery."""

from __future__ import annotations

import pytest

from forestindex.index import ForestIndexEngine, ForestIndexNode, IndexRecovery, IntegrityChecker
from forestindex.index._internal.db import Database


@pytest.fixture
def checker(temp_db: Database) -> IntegrityChecker:
    return IntegrityChecker(temp_db)


@pytest.fixture
def small_tree(engine: ForestIndexEngine) -> dict[str, ForestIndexNode]:
    """root -> {a -> {a1}, b}"""
    root = engine.save_node(engine.new_node())
    a = engine.save_node(engine.new_node(parent_id=root.id))
    a1 = engine.save_node(engine.new_node(parent_id=a.id))
    b = engine.save_node(engine.new_node(parent_id=root.id))
    return {"root": root, "a": a, "a1": a1, "b": b}


def _insert_raw(db: Database, **values: object) -> None:
    """Write a row without going through the engine."""
    with db.immediate_transaction() as session:
        session.add(ForestIndexNode(**values))


class TestVerify:
    def test_empty_tree_type_passes(self, checker: IntegrityChecker) -> None:
        report = checker.verify("default")

        assert report.passed
        assert report.nodes_checked == 0
        assert report.issues == []

    def test_healthy_tree_passes(
        self, checker: IntegrityChecker, small_tree: dict[str, ForestIndexNode]
    ) -> None:
        report = checker.verify("default")

        assert report.passed, report.issues
        assert report.nodes_checked == 4
        assert report.indexed_count == 4

    def test_delete_without_gap_breaks_descendant_count(
        self,
        engine: ForestIndexEngine,
        checker: IntegrityChecker,
        small_tree: dict[str, ForestIndexNode],
    ) -> None:
        engine.delete_node(small_tree["a"], close_gap=False)

        report = checker.verify("default")

        assert not report.passed
        assert "descendant_count" in report.categories

    def test_second_root_reported(
        self,
        temp_db: Database,
        checker: IntegrityChecker,
        small_tree: dict[str, ForestIndexNode],
    ) -> None:
        _insert_raw(temp_db, forest_tree_type="default")

        report = checker.verify("default")

        assert {"root_count", "unindexed"} <= report.categories

    def test_orphan_parent_reported(
        self,
        temp_db: Database,
        checker: IntegrityChecker,
        small_tree: dict[str, ForestIndexNode],
    ) -> None:
        _insert_raw(temp_db, forest_tree_type="default", parent_id=9999)

        report = checker.verify("default")

        assert "orphan_parent" in report.categories

    def test_overlapping_intervals_reported(
        self,
        temp_db: Database,
        checker: IntegrityChecker,
        small_tree: dict[str, ForestIndexNode],
    ) -> None:
        """A child labelled over its sibling's bounds breaks several checks."""
        root = small_tree["root"]
        _insert_raw(temp_db, forest_tree_type="default", parent_id=root.id, lft=2, rgt=3)

        report = checker.verify("default")

        assert {"sibling_overlap", "duplicate_bound", "descendant_count"} <= report.categories

    def test_other_tree_types_ignored(
        self,
        temp_db: Database,
        checker: IntegrityChecker,
        small_tree: dict[str, ForestIndexNode],
    ) -> None:
        _insert_raw(temp_db, forest_tree_type="other", parent_id=9999)

        assert checker.verify("default").passed
        assert not checker.verify("other").passed


class TestRecovery:
    def test_healthy_tree_not_rebuilt(
        self,
        engine: ForestIndexEngine,
        checker: IntegrityChecker,
        small_tree: dict[str, ForestIndexNode],
    ) -> None:
        calls: list[str] = []

        def rebuild(tree_type: str) -> int:
            calls.append(tree_type)
            return engine.rebuild(tree_type)

        report = IndexRecovery(checker, rebuild).recover("default")

        assert report.passed
        assert not report.rebuilt
        assert calls == []

    def test_unclosed_gap_repaired(
        self,
        engine: ForestIndexEngine,
        checker: IntegrityChecker,
        small_tree: dict[str, ForestIndexNode],
    ) -> None:
        engine.delete_node(small_tree["a"], close_gap=False)

        report = IndexRecovery(checker, engine.rebuild).recover("default")

        assert report.passed, report.issues
        assert report.rebuilt
        root = engine.get_node(small_tree["root"].id)  # type: ignore[arg-type]
        assert root is not None
        assert (root.lft, root.rgt) == (1, 4)

    def test_second_root_chained_by_rebuild(
        self,
        temp_db: Database,
        engine: ForestIndexEngine,
        checker: IntegrityChecker,
        small_tree: dict[str, ForestIndexNode],
    ) -> None:
        _insert_raw(temp_db, forest_tree_type="default")

        report = IndexRecovery(checker, engine.rebuild).recover("default")

        assert report.passed, report.issues
        assert report.indexed_count == 5

    def test_orphan_survives_rebuild(
        self,
        temp_db: Database,
        engine: ForestIndexEngine,
        checker: IntegrityChecker,
        small_tree: dict[str, ForestIndexNode],
    ) -> None:
        """Rows whose parent link leads nowhere cannot be relabelled."""
        _insert_raw(temp_db, forest_tree_type="default", parent_id=9999)

        report = IndexRecovery(checker, engine.rebuild).recover("default")

        assert report.rebuilt
        assert not report.passed
        assert {"orphan_parent", "unindexed"} <= report.categories
