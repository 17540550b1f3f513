"""Forest index error types with typed error codes.

Error code ranges:
- 2xxx: Config
- 3xxx: Index preconditions
- 4xxx: Not found
- 5xxx: Unsupported at this layer
- 9xxx: Internal
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any


class ErrorCode(IntEnum):
    """Typed error codes for programmatic handling."""

    # Config (2xxx)
    CONFIG_PARSE_ERROR = 2001
    CONFIG_INVALID_VALUE = 2002
    CONFIG_FILE_NOT_FOUND = 2004

    # Index preconditions (3xxx)
    PARENT_NOT_INDEXED = 3001
    MOVE_RANGES_MISSING = 3002
    NODE_NOT_INDEXED = 3003
    INVALID_MOVE = 3004
    TREE_TYPE_MISMATCH = 3005
    NODE_FACTORY_INVALID = 3006
    NODE_ALREADY_INDEXED = 3007

    # Not found (4xxx)
    NODE_NOT_FOUND = 4001
    CONTENT_NOT_FOUND = 4002

    # Unsupported (5xxx)
    RECURSIVE_INDEXING_UNSUPPORTED = 5001

    # Internal (9xxx)
    INTERNAL_ERROR = 9001
    STORE_BUSY = 9002
    LOCK_TIMEOUT = 9003


@dataclass(eq=False)
class ForestIndexError(Exception):
    """Base error with structured context."""

    code: ErrorCode
    message: str
    retryable: bool = False
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def error_name(self) -> str:
        """String identifier for logging (e.g., 'PARENT_NOT_INDEXED')."""
        return self.code.name

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON responses."""
        return {
            "code": self.code.value,
            "error": self.error_name,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.error_name}: {self.message}"


class ConfigError(ForestIndexError):
    """Configuration-related errors."""

    @classmethod
    def parse_error(cls, path: str, reason: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_PARSE_ERROR,
            message=f"Failed to parse config at {path}: {reason}",
            details={"path": path, "reason": reason},
        )

    @classmethod
    def invalid_value(cls, field: str, value: Any, reason: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_INVALID_VALUE,
            message=f"Invalid value for '{field}': {reason}",
            details={"field": field, "value": str(value), "reason": reason},
        )

    @classmethod
    def file_not_found(cls, path: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_FILE_NOT_FOUND,
            message=f"Config file not found: {path}",
            details={"path": path},
        )


class PreconditionError(ForestIndexError):
    """A mutating call was made against state it cannot operate on.

    Fatal to the call and never retried automatically: the caller has to
    re-read fresh state before trying again.
    """

    @classmethod
    def parent_not_indexed(cls, parent_id: int | None) -> "PreconditionError":
        return cls(
            code=ErrorCode.PARENT_NOT_INDEXED,
            message=f"Parent node {parent_id} has no assigned ranges",
            details={"parent_id": parent_id},
        )

    @classmethod
    def move_ranges_missing(cls, node_id: int) -> "PreconditionError":
        return cls(
            code=ErrorCode.MOVE_RANGES_MISSING,
            message=f"Node {node_id} changes parent but its pre-move lft/rgt were not supplied",
            details={"node_id": node_id},
        )

    @classmethod
    def node_not_indexed(cls, node_id: int | None) -> "PreconditionError":
        return cls(
            code=ErrorCode.NODE_NOT_INDEXED,
            message=f"Node {node_id} has no assigned ranges; rebuild the tree type first",
            details={"node_id": node_id},
        )

    @classmethod
    def invalid_move(cls, node_id: int, parent_id: int) -> "PreconditionError":
        return cls(
            code=ErrorCode.INVALID_MOVE,
            message=f"Node {node_id} cannot be moved under its own subtree (parent {parent_id})",
            details={"node_id": node_id, "parent_id": parent_id},
        )

    @classmethod
    def tree_type_mismatch(cls, node_id: int | None, expected: str, actual: str) -> "PreconditionError":
        return cls(
            code=ErrorCode.TREE_TYPE_MISMATCH,
            message=f"Node {node_id} belongs to tree type '{actual}', not '{expected}'",
            details={"node_id": node_id, "expected": expected, "actual": actual},
        )

    @classmethod
    def node_factory_invalid(cls, produced: Any) -> "PreconditionError":
        return cls(
            code=ErrorCode.NODE_FACTORY_INVALID,
            message=f"Node factory produced {type(produced).__name__}, expected ForestIndexNode",
            details={"produced": type(produced).__name__},
        )

    @classmethod
    def node_already_indexed(cls, node_id: int) -> "PreconditionError":
        return cls(
            code=ErrorCode.NODE_ALREADY_INDEXED,
            message=f"Node {node_id} already has ranges; use save_node() to move it",
            details={"node_id": node_id},
        )


class NotFoundError(ForestIndexError):
    """Referenced index node or content record does not exist."""

    @classmethod
    def node(cls, node_id: int) -> "NotFoundError":
        return cls(
            code=ErrorCode.NODE_NOT_FOUND,
            message=f"Index node {node_id} not found",
            details={"node_id": node_id},
        )

    @classmethod
    def content(cls, content_id: Any) -> "NotFoundError":
        return cls(
            code=ErrorCode.CONTENT_NOT_FOUND,
            message=f"Content {content_id} not found",
            details={"content_id": str(content_id)},
        )


class UnsupportedOperationError(ForestIndexError):
    """Operation is valid in general but not offered at this layer."""

    @classmethod
    def recursive_indexing(cls, content_id: Any, parent_content_id: Any) -> "UnsupportedOperationError":
        return cls(
            code=ErrorCode.RECURSIVE_INDEXING_UNSUPPORTED,
            message=(
                f"Parent content {parent_content_id} of {content_id} is not indexed; "
                "index the parent first or use index_content()"
            ),
            details={"content_id": str(content_id), "parent_content_id": str(parent_content_id)},
        )


class InternalError(ForestIndexError):
    """Internal/unexpected errors."""

    @classmethod
    def unexpected(cls, reason: str, **details: Any) -> "InternalError":
        return cls(
            code=ErrorCode.INTERNAL_ERROR,
            message=f"Internal error: {reason}",
            details=details,
        )

    @classmethod
    def store_busy(cls, attempts: int) -> "InternalError":
        return cls(
            code=ErrorCode.STORE_BUSY,
            message=f"Index store stayed locked after {attempts} attempts",
            retryable=True,
            details={"attempts": attempts},
        )

    @classmethod
    def lock_timeout(cls, tree_type: str, timeout: float) -> "InternalError":
        return cls(
            code=ErrorCode.LOCK_TIMEOUT,
            message=f"Write lock for tree type {tree_type!r} not acquired within {timeout}s",
            retryable=True,
            details={"tree_type": tree_type, "timeout_sec": timeout},
        )
