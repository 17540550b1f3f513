"""Nested-set integrity verification and recovery.

Integrity checks (all scoped to one tree type):
1. Exactly one structural root (row without a parent)
2. Parent links resolve to a row of the same tree type
3. Rows left unindexed (lft/rgt absent)
4. Malformed intervals (lft >= rgt, odd width)
5. Children nested strictly inside their parent's interval
6. Sibling intervals never overlap
7. Descendant-count law: (rgt - lft) / 2 == rows strictly inside
8. No bound value used twice

A delete that skipped gap-closing fails check 7 for every ancestor of the
removed subtree until the next rebuild.

Recovery strategy: if any check fails, rebuild the tree type and verify again.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import text

if TYPE_CHECKING:
    from sqlmodel import Session

    from forestindex.index._internal.db.database import Database

logger = structlog.get_logger()


@dataclass
class IntegrityIssue:
    """A single integrity issue detected."""

    category: str  # 'root_count', 'orphan_parent', 'unindexed', 'malformed', 'nesting', ...
    message: str
    count: int = 1


@dataclass
class IntegrityReport:
    """Result of integrity verification."""

    tree_type: str
    passed: bool
    issues: list[IntegrityIssue] = field(default_factory=list)
    nodes_checked: int = 0
    indexed_count: int = 0
    rebuilt: bool = False

    def add_issue(self, issue: IntegrityIssue) -> None:
        """Add an issue and mark as failed."""
        self.issues.append(issue)
        self.passed = False

    @property
    def categories(self) -> set[str]:
        return {issue.category for issue in self.issues}


# category -> (query returning a violation count, message)
_COUNT_CHECKS: dict[str, tuple[str, str]] = {
    "orphan_parent": (
        """
        SELECT COUNT(*) FROM forest_index c
        WHERE c.forest_tree_type = :tree_type
          AND c.parent_id IS NOT NULL
          AND c.parent_id NOT IN (
              SELECT p.id FROM forest_index p WHERE p.forest_tree_type = :tree_type
          )
        """,
        "parent links pointing to missing rows or another tree type",
    ),
    "unindexed": (
        """
        SELECT COUNT(*) FROM forest_index
        WHERE forest_tree_type = :tree_type AND (lft IS NULL OR rgt IS NULL)
        """,
        "rows without an interval",
    ),
    "malformed": (
        """
        SELECT COUNT(*) FROM forest_index
        WHERE forest_tree_type = :tree_type
          AND lft IS NOT NULL AND rgt IS NOT NULL
          AND (lft >= rgt OR (rgt - lft) % 2 = 0)
        """,
        "intervals with lft >= rgt or an even width",
    ),
    "nesting": (
        """
        SELECT COUNT(*) FROM forest_index c
        JOIN forest_index p ON p.id = c.parent_id
        WHERE c.forest_tree_type = :tree_type
          AND p.forest_tree_type = :tree_type
          AND c.lft IS NOT NULL AND p.lft IS NOT NULL
          AND NOT (p.lft < c.lft AND c.rgt < p.rgt)
        """,
        "children outside their parent's interval",
    ),
    "sibling_overlap": (
        """
        SELECT COUNT(*) FROM forest_index x
        JOIN forest_index y
          ON x.parent_id = y.parent_id AND x.id < y.id
         AND y.forest_tree_type = x.forest_tree_type
        WHERE x.forest_tree_type = :tree_type
          AND x.lft IS NOT NULL AND y.lft IS NOT NULL
          AND NOT (x.rgt < y.lft OR y.rgt < x.lft)
        """,
        "overlapping sibling intervals",
    ),
    "descendant_count": (
        """
        SELECT COUNT(*) FROM forest_index n
        WHERE n.forest_tree_type = :tree_type
          AND n.lft IS NOT NULL AND n.rgt IS NOT NULL
          AND (n.rgt - n.lft) / 2 != (
              SELECT COUNT(*) FROM forest_index d
              WHERE d.forest_tree_type = :tree_type
                AND d.lft > n.lft AND d.lft < n.rgt
          )
        """,
        "interval widths disagreeing with the rows they enclose",
    ),
    "duplicate_bound": (
        """
        SELECT COUNT(*) - COUNT(DISTINCT bound) FROM (
            SELECT lft AS bound FROM forest_index
            WHERE forest_tree_type = :tree_type AND lft IS NOT NULL
            UNION ALL
            SELECT rgt AS bound FROM forest_index
            WHERE forest_tree_type = :tree_type AND rgt IS NOT NULL
        )
        """,
        "bound values used more than once",
    ),
}


class IntegrityChecker:
    """Verifies the nested-set invariants of one tree type.

    Usage::

        checker = IntegrityChecker(db)
        report = checker.verify("default")

        if not report.passed:
            recovery = IndexRecovery(checker, engine.rebuild)
            recovery.recover("default")
    """

    def __init__(self, db: Database) -> None:
        self._db = db

    def verify(self, tree_type: str) -> IntegrityReport:
        """Run all integrity checks and return report."""
        report = IntegrityReport(tree_type=tree_type, passed=True)
        with self._db.session() as session:
            self._check_counts(session, report)
            self._check_root(session, report)
            for category, (sql, message) in _COUNT_CHECKS.items():
                self._check(session, report, category, sql, message)
        if not report.passed:
            logger.warning(
                "forest_integrity_failed",
                tree_type=tree_type,
                categories=sorted(report.categories),
            )
        return report

    def _check_counts(self, session: Session, report: IntegrityReport) -> None:
        row = session.execute(
            text("""
                SELECT COUNT(*), COUNT(lft) FROM forest_index
                WHERE forest_tree_type = :tree_type
            """),
            {"tree_type": report.tree_type},
        ).one()
        report.nodes_checked = row[0] or 0
        report.indexed_count = row[1] or 0

    def _check_root(self, session: Session, report: IntegrityReport) -> None:
        """An empty tree type has no root; any other has exactly one."""
        if report.nodes_checked == 0:
            return
        roots = session.execute(
            text("""
                SELECT COUNT(*) FROM forest_index
                WHERE forest_tree_type = :tree_type AND parent_id IS NULL
            """),
            {"tree_type": report.tree_type},
        ).scalar() or 0
        if roots != 1:
            report.add_issue(
                IntegrityIssue(
                    category="root_count",
                    message=f"expected one structural root, found {roots}",
                    count=abs(roots - 1) or 1,
                )
            )

    def _check(
        self,
        session: Session,
        report: IntegrityReport,
        category: str,
        sql: str,
        message: str,
    ) -> None:
        count = session.execute(text(sql), {"tree_type": report.tree_type}).scalar() or 0
        if count > 0:
            report.add_issue(IntegrityIssue(category=category, message=message, count=count))


class IndexRecovery:
    """Recovery for a tree type whose intervals no longer satisfy the invariants.

    ``rebuild`` relabels the tree type from surviving parent links: the
    engine's rebuild, or the coordinator's rebuild from content.

    Usage::

        recovery = IndexRecovery(IntegrityChecker(db), engine.rebuild)
        report = recovery.recover("default")
    """

    def __init__(self, checker: IntegrityChecker, rebuild: Callable[[str], Any]) -> None:
        self._checker = checker
        self._rebuild = rebuild

    def recover(self, tree_type: str) -> IntegrityReport:
        """Rebuild when verification fails; return the final report."""
        report = self._checker.verify(tree_type)
        if report.passed:
            return report
        logger.info("forest_recovery_started", tree_type=tree_type, issues=len(report.issues))
        self._rebuild(tree_type)
        after = self._checker.verify(tree_type)
        after.rebuilt = True
        logger.info("forest_recovery_finished", tree_type=tree_type, passed=after.passed)
        return after


__all__ = [
    "IntegrityChecker",
    "IntegrityIssue",
    "IntegrityReport",
    "IndexRecovery",
]
