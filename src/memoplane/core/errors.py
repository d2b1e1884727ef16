"""Memoplane error types with typed error codes.

Error code ranges:
- 2xxx: Config
- 3xxx: Store (persistent cache database)
- 4xxx: Serialization (codec)
- 9xxx: Internal

Only ConfigError and InvariantViolation ever reach the host program.
StoreError and SerializationError are raised inside the engine and absorbed
there: a failing store disables caching for the run, a failing codec turns
the current call into a miss or an uncached execution.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any


class ErrorCode(IntEnum):
    """Typed error codes for programmatic handling."""

    # Config (2xxx)
    CONFIG_PARSE_ERROR = 2001
    CONFIG_INVALID_VALUE = 2002
    CONFIG_MISSING_REQUIRED = 2003
    CONFIG_FILE_NOT_FOUND = 2004

    # Store (3xxx)
    STORE_UNAVAILABLE = 3001
    STORE_CORRUPT = 3002
    STORE_WRITE_FAILED = 3003

    # Serialization (4xxx)
    SERIALIZATION_ENCODE_FAILED = 4001
    SERIALIZATION_DECODE_FAILED = 4002
    SERIALIZATION_UNSUPPORTED_KIND = 4003

    # Internal (9xxx)
    INTERNAL_ERROR = 9001
    INVARIANT_VIOLATION = 9002


@dataclass(frozen=True, slots=True)
class MemoplaneError(Exception):
    """Base error with structured context for logs and CLI output."""

    code: ErrorCode
    message: str
    retryable: bool = False
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def error_name(self) -> str:
        """String identifier for logging (e.g., 'STORE_CORRUPT')."""
        return self.code.name

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON output."""
        return {
            "code": self.code.value,
            "error": self.error_name,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.error_name}: {self.message}"


class ConfigError(MemoplaneError):
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
    def missing_required(cls, field: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_MISSING_REQUIRED,
            message=f"Missing required config field: {field}",
            details={"field": field},
        )

    @classmethod
    def file_not_found(cls, path: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_FILE_NOT_FOUND,
            message=f"Config file not found: {path}",
            details={"path": path},
        )


class StoreError(MemoplaneError):
    """The persistent cache database cannot be read or written."""

    @classmethod
    def unavailable(cls, path: str, reason: str) -> "StoreError":
        return cls(
            code=ErrorCode.STORE_UNAVAILABLE,
            message=f"Cache store unavailable at {path}: {reason}",
            retryable=True,
            details={"path": path, "reason": reason},
        )

    @classmethod
    def corrupt(cls, path: str, reason: str) -> "StoreError":
        return cls(
            code=ErrorCode.STORE_CORRUPT,
            message=f"Cache store at {path} is corrupt: {reason}",
            details={"path": path, "reason": reason},
        )

    @classmethod
    def write_failed(cls, path: str, reason: str) -> "StoreError":
        return cls(
            code=ErrorCode.STORE_WRITE_FAILED,
            message=f"Failed to write cache store at {path}: {reason}",
            retryable=True,
            details={"path": path, "reason": reason},
        )


class SerializationError(MemoplaneError):
    """The codec cannot encode or decode a value."""

    @classmethod
    def encode_failed(cls, type_name: str, reason: str) -> "SerializationError":
        return cls(
            code=ErrorCode.SERIALIZATION_ENCODE_FAILED,
            message=f"Cannot encode value of type {type_name}: {reason}",
            details={"type": type_name, "reason": reason},
        )

    @classmethod
    def decode_failed(cls, reason: str) -> "SerializationError":
        return cls(
            code=ErrorCode.SERIALIZATION_DECODE_FAILED,
            message=f"Cannot decode payload: {reason}",
            details={"reason": reason},
        )

    @classmethod
    def unsupported_kind(cls, type_name: str, kind: str) -> "SerializationError":
        return cls(
            code=ErrorCode.SERIALIZATION_UNSUPPORTED_KIND,
            message=f"Values of type {type_name} are never serialized ({kind})",
            details={"type": type_name, "kind": kind},
        )


class InternalError(MemoplaneError):
    """Internal/unexpected errors."""

    @classmethod
    def unexpected(cls, reason: str, **details: Any) -> "InternalError":
        return cls(
            code=ErrorCode.INTERNAL_ERROR,
            message=f"Internal error: {reason}",
            details=details,
        )


class InvariantViolation(MemoplaneError):
    """A bug in the engine itself. Never absorbed."""

    @classmethod
    def broken(cls, invariant: str, **details: Any) -> "InvariantViolation":
        return cls(
            code=ErrorCode.INVARIANT_VIOLATION,
            message=f"Invariant violated: {invariant}",
            details=details,
        )
