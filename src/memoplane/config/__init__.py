"""Config module exports."""

from memoplane.config.loader import MemoplaneSettings, get_cache_db_path, load_config
from memoplane.config.models import (
    CacheConfig,
    DatabaseConfig,
    IgnoreConfig,
    LoggingConfig,
    MemoplaneConfig,
    TrackingConfig,
)

__all__ = [
    "load_config",
    "get_cache_db_path",
    "MemoplaneConfig",
    "MemoplaneSettings",
    "CacheConfig",
    "DatabaseConfig",
    "IgnoreConfig",
    "LoggingConfig",
    "TrackingConfig",
]
