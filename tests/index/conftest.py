"""Shared fixtures for index tests."""

from __future__ import annotations

import tempfile
from collections.abc import Callable, Generator
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from forestindex.config.constants import DEFAULT_TREE_TYPE
from forestindex.index.models import ForestContent

if TYPE_CHECKING:
    from forestindex.index import ForestContentCoordinator, ForestIndexEngine
    from forestindex.index._internal.db import Database


class NodeContent(ForestContent, table=True):
    """Content table used by coordinator tests."""

    __tablename__ = "node_content"

    name: str = ""


AddContent = Callable[..., NodeContent]


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory(ignore_cleanup_errors=True) as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def temp_db(temp_dir: Path) -> Generator[Database, None, None]:
    """Create a temporary database with schema."""
    from forestindex.index._internal.db import Database, create_additional_indexes

    db_path = temp_dir / "test.db"
    db = Database(db_path)
    db.create_all()
    create_additional_indexes(db.engine)
    yield db
    db.dispose()


@pytest.fixture
def engine(temp_db: Database) -> ForestIndexEngine:
    from forestindex.index import ForestIndexEngine

    return ForestIndexEngine(temp_db)


@pytest.fixture
def coordinator(engine: ForestIndexEngine) -> ForestContentCoordinator[NodeContent]:
    from forestindex.index import ForestContentCoordinator, SqlContentStore

    return ForestContentCoordinator(engine, SqlContentStore(engine.db, NodeContent))


@pytest.fixture
def add_content(temp_db: Database) -> AddContent:
    """Insert a content record and return it (loaded, detached)."""

    def _add(
        name: str,
        parent: NodeContent | None = None,
        tree_type: str = DEFAULT_TREE_TYPE,
    ) -> NodeContent:
        with temp_db.session() as session:
            content = NodeContent(
                name=name,
                parent_id=parent.id if parent is not None else None,
                forest_tree_type=tree_type,
            )
            session.add(content)
            session.commit()
            session.refresh(content)
            return content

    return _add


@pytest.fixture
def content_model() -> type[NodeContent]:
    return NodeContent
