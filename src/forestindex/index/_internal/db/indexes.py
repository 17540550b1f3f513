"""Additional index creation for range-scan performance.

These indexes complement the single-column indexes declared via SQLModel
Field(index=True). Every shift, gap close and descendant scan filters on
tree type plus one bound, so the composite indexes lead with the tree type.

Call create_additional_indexes() after Database.create_all().
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import text

if TYPE_CHECKING:
    from sqlalchemy import Engine


ADDITIONAL_INDEXES = {
    "idx_forest_index_type_lft": "CREATE INDEX IF NOT EXISTS idx_forest_index_type_lft ON forest_index(forest_tree_type, lft)",
    "idx_forest_index_type_rgt": "CREATE INDEX IF NOT EXISTS idx_forest_index_type_rgt ON forest_index(forest_tree_type, rgt)",
    # Root lookup: parent_id IS NULL within a tree type
    "idx_forest_index_type_parent": "CREATE INDEX IF NOT EXISTS idx_forest_index_type_parent ON forest_index(forest_tree_type, parent_id)",
}


def create_additional_indexes(engine: Engine) -> None:
    """Create additional composite indexes."""
    with engine.connect() as conn:
        for sql in ADDITIONAL_INDEXES.values():
            conn.execute(text(sql))
        conn.commit()


def drop_additional_indexes(engine: Engine) -> None:
    """Drop additional indexes (for testing/reset)."""
    with engine.connect() as conn:
        for name in ADDITIONAL_INDEXES:
            conn.execute(text(f"DROP INDEX IF EXISTS {name}"))
        conn.commit()
