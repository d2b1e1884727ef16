"""Configuration constants.

This module contains truly constant values that should NOT be user-configurable.
These are layout constraints and implementation details of the engine.

For configurable values, see models.py (CacheConfig, TrackingConfig, etc.).
"""

# =============================================================================
# Shadow Metadata Store Layout
# =============================================================================

METADATA_MAP_BITS = 16
"""Identity bits consumed per level of the shadow metadata table."""

METADATA_MAP_SIZE = 1 << METADATA_MAP_BITS
"""Fan-out of every level (65536)."""

METADATA_MAP_MASK = METADATA_MAP_SIZE - 1

SUPPORTED_IDENTITY_BITS = (32, 64)
"""Identity widths the table can be laid out for (2 or 4 levels)."""

# =============================================================================
# Persistent Store
# =============================================================================

MEMOPLANE_DIR_NAME = ".memoplane"
"""Per-program state directory (config.yaml, cache database)."""

CACHE_DB_NAME = "cache.db"

SCHEMA_VERSION = 1
"""Bumped whenever stored payload layout changes; older entries become misses."""

# =============================================================================
# Hashing
# =============================================================================

HASH_DIGEST_SIZE = 16
"""blake2b digest size (bytes) for value, code and file hashes."""

FILE_HASH_CHUNK_SIZE = 1 << 16

# =============================================================================
# Native container hook points
# =============================================================================

MUTATING_C_METHODS = frozenset(
    {
        # list
        "append",
        "extend",
        "insert",
        "pop",
        "remove",
        "clear",
        "sort",
        "reverse",
        # dict
        "update",
        "setdefault",
        "popitem",
        # set
        "add",
        "discard",
        "difference_update",
        "intersection_update",
        "symmetric_difference_update",
        # bytearray / generic protocol
        "__setitem__",
        "__delitem__",
        "__iadd__",
        "__imul__",
        "__setattr__",
        "__delattr__",
    }
)
"""Natively-implemented methods that mutate their receiver."""
