"""Pydantic configuration models with env var support.

Configuration Hierarchy (highest to lowest precedence):
1. Direct kwargs to load_config()
2. Environment variables (FORESTINDEX__SECTION__KEY)
3. YAML config file (explicit path, else ~/.config/forestindex/config.yaml)
4. Built-in defaults (this file)

Environment Variable Format:
    FORESTINDEX__<SECTION>__<KEY>=<VALUE>

Examples:
    FORESTINDEX__LOGGING__LEVEL=DEBUG
    FORESTINDEX__DATABASE__PATH=/var/lib/forest/index.db
    FORESTINDEX__INDEX__DEFAULT_TREE_TYPE=org
"""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from forestindex.config.constants import DEFAULT_TREE_TYPE, PAGE_SIZE_MAX

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class LogOutputConfig(BaseModel):
    """Single logging output configuration.

    Env vars: Not directly configurable via env (use YAML for multi-output).
    """

    format: Literal["json", "console"] = "console"
    destination: str = "stderr"  # stderr, stdout, or absolute file path
    level: LogLevel | None = None  # Inherits from parent if None

    @field_validator("destination")
    @classmethod
    def validate_destination(cls, v: str) -> str:
        if v in ("stderr", "stdout"):
            return v
        path = Path(v).expanduser()
        if not path.is_absolute():
            raise ValueError(f"File destination must be absolute path: {v}")
        return str(path)


class LoggingConfig(BaseModel):
    """Logging configuration.

    Env vars:
        FORESTINDEX__LOGGING__LEVEL: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """

    level: LogLevel = Field(
        default="INFO",
        description="Root log level. DEBUG logs every shift and relayout step.",
    )
    outputs: list[LogOutputConfig] = Field(default_factory=lambda: [LogOutputConfig()])


class DatabaseConfig(BaseModel):
    """Index store connection configuration.

    Env vars:
        FORESTINDEX__DATABASE__PATH: SQLite file holding the index tables
        FORESTINDEX__DATABASE__BUSY_TIMEOUT_MS: SQLite busy timeout
        FORESTINDEX__DATABASE__MAX_RETRIES: Max retry attempts for locked DB
    """

    path: str = Field(
        default="forestindex.db",
        description="SQLite database file. Relative paths resolve against the working directory.",
    )
    busy_timeout_ms: int = Field(
        default=30000,
        description="SQLite busy timeout (ms). How long to wait for locks. "
        "RISK: Too low causes failures under contention; too high delays errors.",
    )
    max_retries: int = Field(
        default=3,
        description="Max retry attempts when a write transaction cannot start.",
    )
    retry_base_delay_sec: float = Field(
        default=0.1,
        description="Base delay between retries (exponential backoff).",
    )
    retry_max_delay_sec: float = Field(
        default=2.0,
        description="Upper bound for a single backoff delay.",
    )

    @field_validator("max_retries", "busy_timeout_ms")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"Must be >= 0, got {v}")
        return v


class IndexConfig(BaseModel):
    """Forest index behaviour.

    Env vars:
        FORESTINDEX__INDEX__DEFAULT_TREE_TYPE: Tree type used when none is given
        FORESTINDEX__INDEX__LOCK_TIMEOUT_SEC: Wait for the per-tree-type write lock
    """

    default_tree_type: str = Field(
        default=DEFAULT_TREE_TYPE,
        description="Partition used for nodes and content created without a tree type.",
    )
    lock_timeout_sec: float | None = Field(
        default=None,
        description="Max wait for the per-tree-type write lock. None waits forever. "
        "RISK: Rebuild holds the lock for its whole run.",
    )

    @field_validator("default_tree_type")
    @classmethod
    def validate_tree_type(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Tree type must not be empty")
        return v


class LimitsConfig(BaseModel):
    """Pagination defaults.

    See constants.py for the hard maximum that cannot be exceeded.

    Env vars:
        FORESTINDEX__LIMITS__PAGE_SIZE_DEFAULT: Default page size for listing queries
    """

    page_size_default: int = Field(
        default=50,
        description="Default page size for children/roots queries.",
    )

    @field_validator("page_size_default")
    @classmethod
    def validate_page_size(cls, v: int) -> int:
        if not (1 <= v <= PAGE_SIZE_MAX):
            raise ValueError(f"Page size must be 1-{PAGE_SIZE_MAX}, got {v}")
        return v


class ForestIndexConfig(BaseModel):
    """Root configuration for the forest index."""

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    index: IndexConfig = Field(default_factory=IndexConfig)
    limits: LimitsConfig = Field(default_factory=LimitsConfig)
