"""Pydantic configuration models with env var support.

Configuration Hierarchy (highest to lowest precedence):
1. Direct kwargs to load_config()
2. Environment variables (MEMOPLANE__SECTION__KEY)
3. Program YAML (.memoplane/config.yaml)
4. Global YAML (~/.config/memoplane/config.yaml)
5. Built-in defaults (this file)

Environment Variable Format:
    MEMOPLANE__<SECTION>__<KEY>=<VALUE>

Examples:
    MEMOPLANE__LOGGING__LEVEL=DEBUG
    MEMOPLANE__CACHE__ENABLED=false
    MEMOPLANE__TRACKING__REACHABILITY_DEPTH=4
"""

import sys
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from memoplane.config.constants import SUPPORTED_IDENTITY_BITS

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def _native_identity_bits() -> int:
    return 64 if sys.maxsize > 2**32 else 32


class LogOutputConfig(BaseModel):
    """Single logging output configuration."""

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
        MEMOPLANE__LOGGING__LEVEL: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """

    level: LogLevel = Field(
        default="WARNING",
        description="Root log level. DEBUG logs every cache decision.",
    )
    outputs: list[LogOutputConfig] = Field(default_factory=lambda: [LogOutputConfig()])


class CacheConfig(BaseModel):
    """Persistent memo cache configuration.

    Env vars:
        MEMOPLANE__CACHE__ENABLED: Master switch for lookups and commits
        MEMOPLANE__CACHE__CACHE_DIR: Override cache storage location
        MEMOPLANE__CACHE__FLUSH_THRESHOLD: Pending commits before a flush
    """

    enabled: bool = Field(
        default=True,
        description="Disable to run the program with tracking but no caching.",
    )
    cache_dir: str | None = Field(
        default=None,
        description="Directory holding cache.db. Default: .memoplane/ next to the program.",
    )
    flush_threshold: int = Field(
        default=32,
        description="Pending commits buffered before they are written in one transaction. "
        "Buffered commits are always flushed at finalize.",
    )
    codec: Literal["pickle"] = Field(
        default="pickle",
        description="Serialization codec for payloads. Entries written by another codec are misses.",
    )

    @field_validator("flush_threshold")
    @classmethod
    def validate_flush_threshold(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"flush_threshold must be >= 1, got {v}")
        return v


class TrackingConfig(BaseModel):
    """Reachability tracking configuration.

    Env vars:
        MEMOPLANE__TRACKING__REACHABILITY_DEPTH: Container nesting followed eagerly
        MEMOPLANE__TRACKING__IDENTITY_BITS: Shadow table identity width (32 or 64)
    """

    reachability_depth: int = Field(
        default=8,
        description="How deep the host adapter walks containers when propagating "
        "reachability from arguments and globals. Deeper members are only tracked "
        "when the host reports the access.",
    )
    identity_bits: int = Field(
        default_factory=_native_identity_bits,
        description="Width of object identities. Determines shadow table depth.",
    )
    opaque_type_names: list[str] = Field(
        default_factory=lambda: ["sqlite3.Cursor", "sqlite3.Connection"],
        description="Exact type names (module.qualname) of foreign objects whose state "
        "cannot be round-tripped. Values of these types are never cached.",
    )

    @field_validator("identity_bits")
    @classmethod
    def validate_identity_bits(cls, v: int) -> int:
        if v not in SUPPORTED_IDENTITY_BITS:
            raise ValueError(f"identity_bits must be one of {SUPPORTED_IDENTITY_BITS}, got {v}")
        return v

    @field_validator("reachability_depth")
    @classmethod
    def validate_reachability_depth(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"reachability_depth must be >= 0, got {v}")
        return v


class IgnoreConfig(BaseModel):
    """Which callable units are never memoized.

    Env vars:
        MEMOPLANE__IGNORE__IGNORE_STDLIB: Skip standard library and site-packages code
    """

    patterns: list[str] = Field(
        default_factory=list,
        description="fnmatch patterns over canonical names (module.qualname).",
    )
    ignore_stdlib: bool = Field(
        default=True,
        description="Never memoize code living in the standard library or site-packages.",
    )


class DatabaseConfig(BaseModel):
    """SQLite cache database configuration.

    Env vars:
        MEMOPLANE__DATABASE__BUSY_TIMEOUT_MS: SQLite busy timeout
        MEMOPLANE__DATABASE__MAX_RETRIES: Retries for locked writes
    """

    busy_timeout_ms: int = Field(
        default=30000,
        description="Milliseconds SQLite waits on a locked database.",
    )
    max_retries: int = Field(
        default=3,
        description="Retries with exponential backoff when the database is locked.",
    )


class MemoplaneConfig(BaseModel):
    """Root configuration."""

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    tracking: TrackingConfig = Field(default_factory=TrackingConfig)
    ignore: IgnoreConfig = Field(default_factory=IgnoreConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
