"""Static discovery of the globals a function's code touches.

The decorator host cannot observe individual name lookups while a body runs,
so it reads them off the bytecode instead: every ``LOAD_GLOBAL`` is a global
read, a ``LOAD_ATTR`` directly on a loaded global is an attribute read on it,
and ``STORE_GLOBAL``/``DELETE_GLOBAL`` are global writes. Nested code objects
(inner functions, comprehensions, lambdas) share the function's globals and
are scanned too.
"""

from __future__ import annotations

import dis
import types
from dataclasses import dataclass, field
from functools import lru_cache

_ATTRIBUTE_OPS = frozenset({"LOAD_ATTR", "LOAD_METHOD"})
_WRITE_OPS = frozenset({"STORE_GLOBAL", "DELETE_GLOBAL"})


@dataclass(frozen=True)
class GlobalRefs:
    """Global names a code object reads and writes."""

    reads: tuple[str, ...] = ()
    attributes: dict[str, tuple[str, ...]] = field(default_factory=dict)
    writes: tuple[str, ...] = ()


def _walk(code: types.CodeType) -> tuple[list[str], dict[str, list[str]], list[str]]:
    reads: list[str] = []
    attributes: dict[str, list[str]] = {}
    writes: list[str] = []
    previous_global: str | None = None
    for instruction in dis.get_instructions(code):
        name = instruction.argval
        if instruction.opname == "LOAD_GLOBAL" and isinstance(name, str):
            if name not in reads:
                reads.append(name)
            previous_global = name
            continue
        if instruction.opname in _ATTRIBUTE_OPS and previous_global is not None and isinstance(name, str):
            attrs = attributes.setdefault(previous_global, [])
            if name not in attrs:
                attrs.append(name)
        elif instruction.opname in _WRITE_OPS and isinstance(name, str) and name not in writes:
            writes.append(name)
        previous_global = None
    for const in code.co_consts:
        if isinstance(const, types.CodeType):
            nested_reads, nested_attributes, nested_writes = _walk(const)
            reads.extend(n for n in nested_reads if n not in reads)
            for owner, attrs in nested_attributes.items():
                merged = attributes.setdefault(owner, [])
                merged.extend(a for a in attrs if a not in merged)
            writes.extend(n for n in nested_writes if n not in writes)
    return reads, attributes, writes


@lru_cache(maxsize=4096)
def global_refs(code: types.CodeType) -> GlobalRefs:
    reads, attributes, writes = _walk(code)
    return GlobalRefs(
        reads=tuple(reads),
        attributes={owner: tuple(attrs) for owner, attrs in attributes.items()},
        writes=tuple(writes),
    )
