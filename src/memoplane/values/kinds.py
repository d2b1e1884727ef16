"""Closed classification of runtime values for the cacheability policy.

Every value the engine meets (arguments, return values, global reads) falls
into exactly one ValueKind:

- PRIMITIVE: immutable scalars compared by value. Their identity carries no
  meaning, so they are never entered in the shadow store.
- CONTAINER: builtin collections. Eligible iff every member is.
- OBJECT: anything else. Eligible iff the codec can encode it.
- NEVER: callables, modules, classes, open I/O handles, generators, code.
  Restoring their state on a later run is not meaningful.
- OPAQUE: foreign extension objects deny-listed by exact type name
  (``module.qualname``); their internal state cannot be round-tripped.
"""

from __future__ import annotations

import io
import types
from collections.abc import Iterable
from enum import Enum
from typing import Any

PRIMITIVE_TYPES: frozenset[type] = frozenset(
    {type(None), bool, int, float, complex, str, bytes}
)

CONTAINER_TYPES: frozenset[type] = frozenset({list, tuple, dict, set, frozenset})

NEVER_TYPES: tuple[type, ...] = (
    types.ModuleType,
    types.FunctionType,
    types.BuiltinFunctionType,
    types.MethodType,
    types.BuiltinMethodType,
    types.MethodWrapperType,
    types.WrapperDescriptorType,
    types.CodeType,
    types.FrameType,
    types.GeneratorType,
    types.CoroutineType,
    types.AsyncGeneratorType,
    type,
    io.IOBase,
)

DEFAULT_OPAQUE_TYPE_NAMES: frozenset[str] = frozenset({"sqlite3.Cursor", "sqlite3.Connection"})


class ValueKind(str, Enum):
    """Cacheability classes."""

    PRIMITIVE = "primitive"
    CONTAINER = "container"
    OBJECT = "object"
    NEVER = "never"
    OPAQUE = "opaque"

    @property
    def eligible(self) -> bool:
        return self not in (ValueKind.NEVER, ValueKind.OPAQUE)


def type_name(value: Any) -> str:
    """Exact ``module.qualname`` of a value's type."""
    cls = type(value)
    return f"{cls.__module__}.{cls.__qualname__}"


class ValueClassifier:
    """Maps values to ValueKind with an extensible opaque deny list."""

    def __init__(self, opaque_type_names: Iterable[str] | None = None) -> None:
        names = DEFAULT_OPAQUE_TYPE_NAMES if opaque_type_names is None else opaque_type_names
        self._opaque = frozenset(names)

    @property
    def opaque_type_names(self) -> frozenset[str]:
        return self._opaque

    def deny(self, *names: str) -> None:
        """Add exact type names of third-party opaque types."""
        self._opaque = self._opaque | frozenset(names)

    def classify(self, value: Any) -> ValueKind:
        cls = type(value)
        # exact match: subclasses of int/str may carry mutable state
        if cls in PRIMITIVE_TYPES:
            return ValueKind.PRIMITIVE
        if cls in CONTAINER_TYPES:
            return ValueKind.CONTAINER
        if isinstance(value, NEVER_TYPES):
            return ValueKind.NEVER
        if type_name(value) in self._opaque:
            return ValueKind.OPAQUE
        return ValueKind.OBJECT

    def is_tracked_kind(self, value: Any) -> bool:
        """Whether identity matters for this value (mutable or possibly mutable)."""
        kind = self.classify(value)
        return kind in (ValueKind.CONTAINER, ValueKind.OBJECT)

    def find_ineligible(self, value: Any) -> ValueKind | None:
        """Return the kind of the first value that must never be cached, if any.

        Walks builtin containers recursively; cycles are visited once.
        """
        seen: set[int] = set()
        stack = [value]
        while stack:
            current = stack.pop()
            kind = self.classify(current)
            if not kind.eligible:
                return kind
            if kind is not ValueKind.CONTAINER or id(current) in seen:
                continue
            seen.add(id(current))
            if isinstance(current, dict):
                stack.extend(current.keys())
                stack.extend(current.values())
            else:
                stack.extend(current)
        return None
