"""Persistent memoization cache."""

from memoplane.cache.database import Database
from memoplane.cache.snapshot import (
    CacheHit,
    CacheKey,
    CacheMiss,
    DependencySnapshot,
    DependencyState,
    LookupResult,
    MissReason,
)
from memoplane.cache.store import CacheStats, EntrySummary, MemoCache, validate_snapshot

__all__ = [
    "CacheHit",
    "CacheKey",
    "CacheMiss",
    "CacheStats",
    "Database",
    "DependencySnapshot",
    "DependencyState",
    "EntrySummary",
    "LookupResult",
    "MemoCache",
    "MissReason",
    "validate_snapshot",
]
