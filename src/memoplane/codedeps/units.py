"""Callable units: canonical names, content hashes and the ignore decision.

A unit's canonical name is ``module.qualname``; it is stable across runs and
used in cache keys together with the unit's code hash. The hash covers what
the code does (bytecode, constants, names, argument shape, nested code
objects) and leaves out where it sits (file name, line numbers, line table),
so moving or reformatting a function keeps its cache entries while any
semantic edit produces a new hash.
"""

from __future__ import annotations

import hashlib
import inspect
import sysconfig
import types
from collections.abc import Iterable
from dataclasses import dataclass
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Any

from memoplane.config.constants import HASH_DIGEST_SIZE

ANONYMOUS_CODE_NAMES = frozenset(
    {"<module>", "<lambda>", "<listcomp>", "<dictcomp>", "<setcomp>", "<genexpr>"}
)

_NON_REPLAYABLE_FLAGS = (
    inspect.CO_GENERATOR | inspect.CO_COROUTINE | inspect.CO_ASYNC_GENERATOR | inspect.CO_ITERABLE_COROUTINE
)


def canonical_name(module: str, qualname: str) -> str:
    return f"{module}.{qualname}"


def _canonical_const(value: Any) -> str:
    if isinstance(value, types.CodeType):
        return f"code:{code_content_hash(value)}"
    if isinstance(value, frozenset):
        # set iteration order depends on hash randomization
        return "frozenset(" + ",".join(sorted(_canonical_const(v) for v in value)) + ")"
    if isinstance(value, tuple):
        return "(" + ",".join(_canonical_const(v) for v in value) + ")"
    return f"{type(value).__name__}:{value!r}"


def code_content_hash(code: types.CodeType) -> str:
    """Location-independent hash of a code object and its nested code."""
    hasher = hashlib.blake2b(digest_size=HASH_DIGEST_SIZE)
    parts: Iterable[Any] = (
        code.co_name,
        code.co_argcount,
        code.co_posonlyargcount,
        code.co_kwonlyargcount,
        code.co_flags,
        code.co_names,
        code.co_varnames,
        code.co_freevars,
        code.co_cellvars,
    )
    for part in parts:
        hasher.update(repr(part).encode("utf-8"))
        hasher.update(b"\x00")
    hasher.update(code.co_code)
    for const in code.co_consts:
        hasher.update(_canonical_const(const).encode("utf-8"))
        hasher.update(b"\x00")
    return hasher.hexdigest()


def _library_roots() -> tuple[str, ...]:
    roots: set[str] = set()
    for key in ("stdlib", "platstdlib", "purelib", "platlib"):
        path = sysconfig.get_paths().get(key)
        if path:
            roots.add(str(Path(path).resolve()))
    return tuple(sorted(roots))


class IgnorePolicy:
    """Decides once per unit whether it is ever memoized."""

    def __init__(self, patterns: Iterable[str] = (), *, ignore_stdlib: bool = True) -> None:
        self.patterns = tuple(patterns)
        self.ignore_stdlib = ignore_stdlib
        self._roots = _library_roots() if ignore_stdlib else ()

    def decide(self, code: types.CodeType, name: str) -> str | None:
        """Return the reason to ignore the unit, or None to memoize it."""
        if code.co_flags & _NON_REPLAYABLE_FLAGS:
            return "generator"
        if code.co_name in ANONYMOUS_CODE_NAMES:
            return "anonymous"
        if self._roots and code.co_filename:
            filename = str(Path(code.co_filename).resolve())
            if filename.startswith(self._roots):
                return "library"
        for pattern in self.patterns:
            if fnmatchcase(name, pattern):
                return "pattern"
        return None


@dataclass(frozen=True)
class CodeUnit:
    """A registered callable unit."""

    canonical_name: str
    code_hash: str
    filename: str | None = None
    ignore_reason: str | None = None

    @property
    def ignored(self) -> bool:
        return self.ignore_reason is not None

    @classmethod
    def from_code(
        cls,
        code: types.CodeType,
        module: str,
        *,
        qualname: str | None = None,
        policy: IgnorePolicy | None = None,
    ) -> CodeUnit:
        qualname = qualname or getattr(code, "co_qualname", code.co_name)
        name = canonical_name(module, qualname)
        return cls(
            canonical_name=name,
            code_hash=code_content_hash(code),
            filename=code.co_filename or None,
            ignore_reason=policy.decide(code, name) if policy is not None else None,
        )

    @classmethod
    def from_function(cls, func: types.FunctionType, *, policy: IgnorePolicy | None = None) -> CodeUnit:
        return cls.from_code(
            func.__code__,
            func.__module__ or "__main__",
            qualname=func.__qualname__,
            policy=policy,
        )
