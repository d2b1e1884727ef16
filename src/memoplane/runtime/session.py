"""Decorator-based host adapter.

A Session drives a CallBoundaryProtocol for ordinary Python code. Functions
opt in with ``@session.memoize`` (or the module-level ``memoize``, which uses
whichever session is active when the call happens). Everything the
interpreter does not announce by itself is reported through explicit
helpers:

- ``set_global`` / ``delete_global`` for rebinding module globals
- ``about_to_mutate`` / ``call_method`` for in-place mutation
- ``open_file`` for file reads and writes

A closure's captured values are signed along with its arguments, and a
method depends on the data attributes of its class.
"""

from __future__ import annotations

import atexit
import builtins
import functools
import inspect
import os
import sys
import types
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any, TypeVar
from weakref import WeakKeyDictionary

import structlog

from memoplane.codedeps import CodeUnit
from memoplane.config.models import MemoplaneConfig
from memoplane.engine import CallBoundaryProtocol
from memoplane.frames import CallFrame, NonCacheableReason
from memoplane.runtime.introspection import global_refs
from memoplane.tracking import BUILTINS_NAMESPACE, MutationImpact

logger = structlog.get_logger()

F = TypeVar("F", bound=Callable[..., Any])

MEMOIZED_MARKER = "__memoplane_memoized__"

CLOSURE_ARGUMENT = "<closure>"
"""Pseudo-argument carrying a closure's captured values into its signature."""

_MISSING = object()

_OWN_PACKAGE = __name__.partition(".")[0]


def _is_memoized(value: Any) -> bool:
    return callable(value) and getattr(value, MEMOIZED_MARKER, False) is True


def _target_function(value: Any) -> types.FunctionType | None:
    """The plain function behind a global value, unwrapping memoized wrappers."""
    if _is_memoized(value):
        value = getattr(value, "__wrapped__", None)
    return value if isinstance(value, types.FunctionType) else None


def _is_own(func: types.FunctionType) -> bool:
    module = func.__module__ or ""
    return module == _OWN_PACKAGE or module.startswith(f"{_OWN_PACKAGE}.")


def _module_name(module: str | types.ModuleType) -> str:
    return module.__name__ if isinstance(module, types.ModuleType) else module


def _owning_class(func: types.FunctionType) -> type | None:
    """Class whose body defines ``func``, for methods of module-level classes."""
    path = func.__qualname__.split(".")[:-1]
    if not path or "<locals>" in path:
        return None
    owner = func.__globals__.get(path[0])
    for part in path[1:]:
        owner = getattr(owner, part, None)
    return owner if isinstance(owner, type) else None


_CLASS_MEMBER_TYPES = (types.FunctionType, staticmethod, classmethod, property)


def _class_attributes(cls: type) -> Iterator[tuple[str, str, Any]]:
    """Data attributes a method can see through ``self`` or ``cls``.

    Yields ``(namespace, name, value)`` for each non-dunder, non-method
    attribute of ``cls`` and its Python-defined bases, nearest definition first.
    """
    seen: set[str] = set()
    for base in cls.__mro__:
        if base.__module__ == "builtins":
            continue
        namespace = f"{base.__module__}.{base.__qualname__}"
        for name, value in vars(base).items():
            if name in seen or (name.startswith("__") and name.endswith("__")):
                continue
            seen.add(name)
            if isinstance(value, _CLASS_MEMBER_TYPES) or _is_memoized(value):
                continue
            yield namespace, name, value


class Session:
    """Host adapter around one engine.

    Usage::

        session = Session.open(Path("."))

        @session.memoize
        def load(path):
            with session.open_file(path) as f:
                return parse(f.read())

        session.finalize()
    """

    def __init__(self, engine: CallBoundaryProtocol) -> None:
        self.engine = engine
        self._units: WeakKeyDictionary[types.FunctionType, tuple[types.CodeType, CodeUnit]] = (
            WeakKeyDictionary()
        )

    @classmethod
    def open(
        cls,
        program_dir: Path | None = None,
        config: MemoplaneConfig | None = None,
    ) -> Session:
        return cls(CallBoundaryProtocol.open(program_dir, config))

    @property
    def closed(self) -> bool:
        return self.engine.finalized

    def __enter__(self) -> Session:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.finalize()

    def finalize(self) -> None:
        self.engine.finalize()

    # ------------------------------------------------------------------
    # code units
    # ------------------------------------------------------------------

    def unit_for(self, func: types.FunctionType) -> CodeUnit:
        """Registered unit of ``func``, re-registered when its code changed."""
        cached = self._units.get(func)
        if cached is not None:
            code, unit = cached
            if code is func.__code__ and self.engine.registry.get(unit.canonical_name) is unit:
                return unit
        unit = self.engine.function_unit(func)
        self._units[func] = (func.__code__, unit)
        return unit

    def _register_closure(self, func: types.FunctionType, unit: CodeUnit) -> list[types.FunctionType]:
        """Register every function statically reachable from ``func``.

        Returns the functions whose bodies run inside ``func``'s frame: ``func``
        itself and the plain helpers it reaches without passing through another
        memoized function.
        """
        inline: list[types.FunctionType] = []
        seen: set[types.CodeType] = set()
        queue: list[tuple[types.FunctionType, CodeUnit, bool]] = [(func, unit, True)]
        while queue:
            current, current_unit, runs_inline = queue.pop()
            if current.__code__ in seen:
                continue
            seen.add(current.__code__)
            if runs_inline:
                inline.append(current)
            for value in self._referenced_values(current):
                target = _target_function(value)
                if target is None or _is_own(target):
                    continue
                target_unit = self.unit_for(target)
                if target_unit.ignore_reason == "library":
                    continue
                self.engine.record_invocation(current_unit.canonical_name, target_unit.canonical_name)
                queue.append((target, target_unit, runs_inline and not _is_memoized(value)))
        return inline

    @staticmethod
    def _referenced_values(func: types.FunctionType) -> Iterator[Any]:
        refs = global_refs(func.__code__)
        for name in refs.reads:
            value = func.__globals__.get(name, _MISSING)
            if value is _MISSING:
                continue
            yield value
            if isinstance(value, types.ModuleType):
                for attr in refs.attributes.get(name, ()):
                    member = getattr(value, attr, _MISSING)
                    if member is not _MISSING:
                        yield member
        for cell in func.__closure__ or ():
            try:
                yield cell.cell_contents
            except ValueError:
                continue

    # ------------------------------------------------------------------
    # reads and writes a body performs
    # ------------------------------------------------------------------

    def _report_reads(self, functions: list[types.FunctionType]) -> None:
        for func in functions:
            namespace = func.__globals__
            module = namespace.get("__name__") or func.__module__ or "__main__"
            refs = global_refs(func.__code__)
            for name in refs.reads:
                if name not in namespace:
                    if hasattr(builtins, name):
                        self.engine.global_read(BUILTINS_NAMESPACE, name, getattr(builtins, name))
                    continue
                value = namespace[name]
                self.engine.global_read(module, name, value)
                if not isinstance(value, types.ModuleType):
                    continue
                for attr in refs.attributes.get(name, ()):
                    member = getattr(value, attr, _MISSING)
                    if member is not _MISSING:
                        self.engine.attribute_read(value, attr, member)
            owner = _owning_class(func)
            if owner is not None:
                for namespace_name, name, value in _class_attributes(owner):
                    self.engine.global_read(namespace_name, name, value)

    def _report_writes(self, functions: list[types.FunctionType]) -> None:
        for func in functions:
            namespace = func.__globals__
            module = namespace.get("__name__") or func.__module__ or "__main__"
            for name in global_refs(func.__code__).writes:
                if name in namespace:
                    self.engine.global_bound(module, name, namespace[name])
                else:
                    self.engine.global_deleted(module, name)

    # ------------------------------------------------------------------
    # memoization
    # ------------------------------------------------------------------

    def memoize(self, func: F) -> F:
        """Memoize ``func`` through this session."""
        if isinstance(func, types.FunctionType):
            self.unit_for(func)
        return _memoized(func, lambda: self)

    def call(self, func: types.FunctionType, *args: Any, **kwargs: Any) -> Any:
        """Run one call of ``func`` through the engine."""
        if self.closed:
            return func(*args, **kwargs)
        unit = self.unit_for(func)
        inline = self._register_closure(func, unit)
        try:
            bound = inspect.signature(func).bind(*args, **kwargs)
        except TypeError:
            # let the function itself raise the binding error
            return func(*args, **kwargs)
        bound.apply_defaults()
        arguments = dict(bound.arguments)
        captured = self._captured(func, set())
        if captured:
            arguments[CLOSURE_ARGUMENT] = captured

        entry = self.engine.enter_frame(unit, arguments)
        if entry.replayed:
            return entry.value
        frame: CallFrame = entry.frame
        self._report(self._report_reads, inline, frame, NonCacheableReason.INELIGIBLE_READ)
        try:
            result = func(*args, **kwargs)
        except BaseException:
            self.engine.exit_frame(frame, raised=True)
            raise
        self._report(self._report_writes, inline, frame, NonCacheableReason.GLOBAL_WRITE)
        self.engine.exit_frame(frame, result)
        return result

    @staticmethod
    def _report(
        reporter: Callable[[list[types.FunctionType]], None],
        functions: list[types.FunctionType],
        frame: CallFrame,
        reason: NonCacheableReason,
    ) -> None:
        try:
            reporter(functions)
        except Exception:
            logger.warning("dependency_report_failed", unit=frame.callable_id, exc_info=True)
            frame.taint(reason)

    def _captured(self, func: types.FunctionType, seen: set[types.CodeType]) -> tuple[tuple[str, Any], ...]:
        """Closure cell contents of ``func``, keyed by free variable name.

        Captured functions stand in as their unit name, code hash and own
        captured values; modules and classes stand in as their names.
        """
        seen.add(func.__code__)
        captured = []
        for name, cell in zip(func.__code__.co_freevars, func.__closure__ or ()):
            try:
                value = cell.cell_contents
            except ValueError:
                continue
            target = _target_function(value)
            if target is not None and _is_own(target):
                value = ("function", f"{target.__module__}.{target.__qualname__}")
            elif target is not None:
                target_unit = self.unit_for(target)
                nested = () if target.__code__ in seen else self._captured(target, seen)
                value = ("function", target_unit.canonical_name, target_unit.code_hash, nested)
            elif isinstance(value, types.ModuleType):
                value = ("module", value.__name__)
            elif isinstance(value, type):
                value = ("class", f"{value.__module__}.{value.__qualname__}")
            captured.append((name, value))
        return tuple(captured)

    # ------------------------------------------------------------------
    # explicit mutation helpers
    # ------------------------------------------------------------------

    def set_global(self, module: str | types.ModuleType, name: str, value: Any) -> None:
        """Rebind a module global, invalidating results that read it."""
        module_name = _module_name(module)
        namespace = vars(module) if isinstance(module, types.ModuleType) else vars(sys.modules[module_name])
        self.engine.global_bound(module_name, name, value)
        namespace[name] = value

    def delete_global(self, module: str | types.ModuleType, name: str) -> None:
        module_name = _module_name(module)
        namespace = vars(module) if isinstance(module, types.ModuleType) else vars(sys.modules[module_name])
        self.engine.global_deleted(module_name, name)
        del namespace[name]

    def about_to_mutate(self, obj: Any) -> MutationImpact:
        return self.engine.about_to_mutate(obj)

    def call_method(self, obj: Any, name: str, *args: Any, **kwargs: Any) -> Any:
        """Call ``obj.name(*args, **kwargs)``, reporting it first if it mutates."""
        self.engine.about_to_call_c_method(name, obj)
        return getattr(obj, name)(*args, **kwargs)

    def open_file(self, path: str | os.PathLike[str], mode: str = "r", *args: Any, **kwargs: Any) -> TrackedFile:
        """``open()`` that reports the read or write to the engine."""
        normalized = self.engine.file_opened(path, mode)
        return TrackedFile(open(normalized, mode, *args, **kwargs), normalized, self.engine)  # noqa: SIM115


class TrackedFile:
    """File object proxy that reports its close."""

    def __init__(self, handle: Any, path: str, engine: CallBoundaryProtocol) -> None:
        self._handle = handle
        self.path = path
        self._engine = engine

    def __getattr__(self, name: str) -> Any:
        return getattr(self._handle, name)

    def __iter__(self) -> Iterator[Any]:
        return iter(self._handle)

    def __enter__(self) -> TrackedFile:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        if not self._handle.closed:
            self._handle.close()
            self._engine.file_closed(self.path)


def _memoized(func: F, session_provider: Callable[[], Session | None]) -> F:
    if not isinstance(func, types.FunctionType):
        raise TypeError(f"memoize expects a plain function, got {type(func).__name__}")

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        session = session_provider()
        if session is None or session.closed:
            return func(*args, **kwargs)
        return session.call(func, *args, **kwargs)

    setattr(wrapper, MEMOIZED_MARKER, True)
    return wrapper  # type: ignore[return-value]


_active: Session | None = None


def activate(session: Session) -> Session:
    """Make ``session`` the one module-level ``memoize`` dispatches to."""
    global _active
    _active = session
    logger.debug("session_activated")
    return session


def deactivate() -> Session | None:
    global _active
    session, _active = _active, None
    return session


def active_session() -> Session | None:
    return _active


def memoize(func: F) -> F:
    """Memoize ``func`` through whichever session is active at call time.

    Without an active session the function runs unchanged.
    """
    session = _active
    if session is not None and not session.closed and isinstance(func, types.FunctionType):
        session.unit_for(func)
    return _memoized(func, active_session)


def install(program_dir: Path | None = None, config: MemoplaneConfig | None = None) -> Session:
    """Open and activate a session that is finalized at interpreter exit."""
    session = activate(Session.open(program_dir, config))
    atexit.register(session.finalize)
    return session
