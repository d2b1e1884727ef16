"""Shadow metadata for arbitrary live objects.

Objects are never augmented directly: extension types, builtins and objects
built by compiled libraries have a fixed layout (and often no ``__dict__``),
so the engine keeps its per-object facts in a side table keyed by ``id(obj)``.

The table is a multi-level page table in the style of Valgrind's shadow
memory: every level has a 65536-way fan-out and consumes 16 bits of the
identity, highest bits first. A 64-bit identity walks 4 levels, a 32-bit one
walks 2. The root level exists from construction; every other level is
allocated on the first write along its path. Reads along a path that was
never written stop at the first missing level and report "no record".

Records are never deleted. An identity can be reused once its object dies,
so each record remembers its owner through a weak reference when the
owner's type supports one. A record whose owner is gone reads as absent
through ``get_for`` and is reset by ``get_or_create_for``.
"""

from __future__ import annotations

import weakref
from typing import TYPE_CHECKING, Any

from memoplane.config.constants import (
    METADATA_MAP_BITS,
    METADATA_MAP_MASK,
    METADATA_MAP_SIZE,
    SUPPORTED_IDENTITY_BITS,
)
from memoplane.core.errors import InvariantViolation

if TYPE_CHECKING:
    from memoplane.tracking.bindings import GlobalBinding


class ObjectMetadataRecord:
    """Facts the tracker keeps about one object identity."""

    __slots__ = ("_global_container", "_owner", "arg_reachable_start_time")

    def __init__(self) -> None:
        self._global_container: weakref.ReferenceType[GlobalBinding] | None = None
        self._owner: weakref.ReferenceType[Any] | None = None
        self.arg_reachable_start_time: int | None = None

    @property
    def global_container(self) -> GlobalBinding | None:
        """Outermost global binding this object is reachable from.

        A binding that has been rebound, deleted or collected reads as None.
        """
        if self._global_container is None:
            return None
        binding = self._global_container()
        if binding is None or binding.retired:
            return None
        return binding

    def set_global_container(self, binding: GlobalBinding | None) -> None:
        self._global_container = weakref.ref(binding) if binding is not None else None

    def bind_owner(self, obj: Any) -> None:
        try:
            self._owner = weakref.ref(obj)
        except TypeError:
            # list, dict, int... cannot be weakly referenced
            self._owner = None

    @property
    def is_stale(self) -> bool:
        return self._owner is not None and self._owner() is None

    @property
    def is_tracked(self) -> bool:
        """True when the record carries any fact worth acting on."""
        return self.global_container is not None or self.arg_reachable_start_time is not None

    def reset(self) -> None:
        self._global_container = None
        self._owner = None
        self.arg_reachable_start_time = None

    def __repr__(self) -> str:  # pragma: no cover - representation helper
        container = self.global_container
        key = container.key if container is not None else None
        return f"ObjectMetadataRecord(global_container={key!r}, arg_time={self.arg_reachable_start_time})"


class ShadowMetadataStore:
    """Sparse identity -> ObjectMetadataRecord table.

    Lookup is O(depth) list indexing: no hashing and no collisions.
    """

    def __init__(self, identity_bits: int = 64) -> None:
        if identity_bits not in SUPPORTED_IDENTITY_BITS:
            raise InvariantViolation.broken(
                "identity width must be 32 or 64 bits", identity_bits=identity_bits
            )
        self.identity_bits = identity_bits
        self.depth = identity_bits // METADATA_MAP_BITS
        self._limit = 1 << identity_bits
        self._root: list[Any] = [None] * METADATA_MAP_SIZE
        self._allocated_pages = 1
        self._touched = 0

    @property
    def allocated_pages(self) -> int:
        """Number of 65536-slot levels allocated so far, root included."""
        return self._allocated_pages

    @property
    def touched_count(self) -> int:
        """Number of identities that ever received a record."""
        return self._touched

    def _indices(self, identity: int) -> list[int]:
        if not 0 <= identity < self._limit:
            raise InvariantViolation.broken(
                "identity outside shadow table range",
                identity=identity,
                identity_bits=self.identity_bits,
            )
        shifts = range((self.depth - 1) * METADATA_MAP_BITS, -1, -METADATA_MAP_BITS)
        return [(identity >> shift) & METADATA_MAP_MASK for shift in shifts]

    def get(self, identity: int) -> ObjectMetadataRecord | None:
        """Return the record for ``identity``, or None if never written."""
        node: Any = self._root
        indices = self._indices(identity)
        for index in indices[:-1]:
            node = node[index]
            if node is None:
                return None
            if not isinstance(node, list):
                raise InvariantViolation.broken(
                    "shadow table inner level is not a page", identity=identity
                )
        record = node[indices[-1]]
        if record is not None and not isinstance(record, ObjectMetadataRecord):
            raise InvariantViolation.broken("shadow table leaf holds a foreign value", identity=identity)
        return record  # type: ignore[no-any-return]

    def get_or_create(self, identity: int) -> ObjectMetadataRecord:
        """Return the record for ``identity``, allocating the path on first write."""
        node: Any = self._root
        indices = self._indices(identity)
        for index in indices[:-1]:
            child = node[index]
            if child is None:
                child = [None] * METADATA_MAP_SIZE
                node[index] = child
                self._allocated_pages += 1
            elif not isinstance(child, list):
                raise InvariantViolation.broken(
                    "shadow table inner level is not a page", identity=identity
                )
            node = child
        record = node[indices[-1]]
        if record is None:
            record = ObjectMetadataRecord()
            node[indices[-1]] = record
            self._touched += 1
        elif not isinstance(record, ObjectMetadataRecord):
            raise InvariantViolation.broken("shadow table leaf holds a foreign value", identity=identity)
        return record  # type: ignore[no-any-return]

    def get_for(self, obj: Any) -> ObjectMetadataRecord | None:
        """Record for a live object; stale records read as absent."""
        record = self.get(id(obj))
        if record is None or record.is_stale:
            return None
        return record

    def get_or_create_for(self, obj: Any) -> ObjectMetadataRecord:
        """Record for a live object, reclaiming a stale record left by a dead one."""
        record = self.get_or_create(id(obj))
        if record.is_stale:
            record.reset()
        if record._owner is None:
            record.bind_owner(obj)
        return record
