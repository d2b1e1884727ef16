"""Cache keys, dependency snapshots and lookup results."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Protocol


@dataclass(frozen=True, slots=True)
class CacheKey:
    """Content-addressed identity of one memoized call."""

    callable_name: str
    code_hash: str
    arg_signature: str

    def __str__(self) -> str:
        return f"{self.callable_name}@{self.code_hash[:8]}({self.arg_signature[:8]})"


def _frozen(mapping: Mapping[str, str] | None) -> Mapping[str, str]:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True)
class DependencySnapshot:
    """Everything a result depended on, as hashes taken at record time.

    - globals: binding key (``module:name``) -> value hash
    - files: path -> content hash
    - code: canonical unit name -> code hash, for the unit itself and
      every unit it transitively invoked
    """

    globals: Mapping[str, str] = field(default_factory=dict)
    files: Mapping[str, str] = field(default_factory=dict)
    code: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "globals", _frozen(self.globals))
        object.__setattr__(self, "files", _frozen(self.files))
        object.__setattr__(self, "code", _frozen(self.code))


class DependencyState(Protocol):
    """Current program state the cache validates snapshots against."""

    def binding_hash(self, key: str) -> str | None:
        """Hash of a binding's current value; None if unbound or unhashable."""
        ...

    def file_hash(self, path: str) -> str: ...

    def code_mismatch(self, code: Mapping[str, str]) -> str | None:
        """Name of the first unit whose code changed, or None."""
        ...


class MissReason(str, Enum):
    """Why a lookup did not produce a value."""

    ABSENT = "absent"
    DISABLED = "disabled"
    CODE_CHANGED = "code_changed"
    GLOBAL_CHANGED = "global_changed"
    FILE_CHANGED = "file_changed"
    STALE_SCHEMA = "stale_schema"
    DECODE_FAILED = "decode_failed"


@dataclass(frozen=True, slots=True)
class CacheHit:
    key: CacheKey
    payload: bytes
    snapshot: DependencySnapshot
    value: Any = None

    hit = True


@dataclass(frozen=True, slots=True)
class CacheMiss:
    key: CacheKey
    reason: MissReason
    detail: str | None = None

    hit = False


LookupResult = CacheHit | CacheMiss
