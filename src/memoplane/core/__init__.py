"""Core module exports."""

from memoplane.core.errors import (
    ConfigError,
    ErrorCode,
    InternalError,
    InvariantViolation,
    MemoplaneError,
    SerializationError,
    StoreError,
)
from memoplane.core.logging import (
    configure_logging,
    current_run_id,
    end_run,
    get_logger,
    run_scope,
    start_run,
)

__all__ = [
    # Errors
    "ConfigError",
    "ErrorCode",
    "InternalError",
    "InvariantViolation",
    "MemoplaneError",
    "SerializationError",
    "StoreError",
    # Logging
    "configure_logging",
    "current_run_id",
    "end_run",
    "get_logger",
    "run_scope",
    "start_run",
]
