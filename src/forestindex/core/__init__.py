"""Core module exports."""

from forestindex.core.errors import (
    ConfigError,
    ErrorCode,
    ForestIndexError,
    InternalError,
    NotFoundError,
    PreconditionError,
    UnsupportedOperationError,
)
from forestindex.core.logging import (
    clear_operation_id,
    configure_logging,
    get_logger,
    get_operation_id,
    set_operation_id,
)

__all__ = [
    # Errors
    "ErrorCode",
    "ForestIndexError",
    "ConfigError",
    "PreconditionError",
    "NotFoundError",
    "UnsupportedOperationError",
    "InternalError",
    # Logging
    "clear_operation_id",
    "configure_logging",
    "get_logger",
    "get_operation_id",
    "set_operation_id",
]
