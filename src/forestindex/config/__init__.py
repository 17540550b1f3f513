"""Config module exports."""

from forestindex.config.loader import ForestIndexSettings, load_config
from forestindex.config.models import (
    DatabaseConfig,
    ForestIndexConfig,
    IndexConfig,
    LimitsConfig,
    LoggingConfig,
)

__all__ = [
    "load_config",
    "ForestIndexConfig",
    "ForestIndexSettings",
    "DatabaseConfig",
    "IndexConfig",
    "LimitsConfig",
    "LoggingConfig",
]
