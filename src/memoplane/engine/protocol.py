"""Call boundary protocol: the engine a host evaluation loop drives.

The engine owns every per-run component and turns host events into frame
bookkeeping and cache traffic:

    host events -> CallBoundaryProtocol -> {CallStack, ReachabilityTracker,
    CodeDependencyRegistry} -> MemoCache -> codec

Lookup and validity checking happen at frame entry against the snapshot
stored with the entry. Commit happens at frame exit when the frame is still
cacheable and its return value passes the value policy. A child's
dependencies are merged into its parent on exit, replayed or not, so every
enclosing frame depends on everything its callees depended on.

Usage::

    engine = CallBoundaryProtocol.open(program_dir)
    unit = engine.code_created(func.__code__, func.__module__, qualname=func.__qualname__)

    entry = engine.enter_frame(unit, {"n": 10})
    if entry.replayed:
        return entry.value
    try:
        result = func(10)
    except BaseException:
        engine.exit_frame(entry.frame, raised=True)
        raise
    engine.exit_frame(entry.frame, result)

    engine.finalize()
"""

from __future__ import annotations

import os
import types
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog

from memoplane.cache import CacheKey, DependencySnapshot, MemoCache
from memoplane.codedeps import CodeDependencyRegistry, CodeUnit, IgnorePolicy
from memoplane.config.constants import MUTATING_C_METHODS
from memoplane.config.loader import get_cache_db_path, load_config
from memoplane.config.models import MemoplaneConfig
from memoplane.core.errors import SerializationError
from memoplane.frames import CallFrame, CallStack, FrameState, NonCacheableReason
from memoplane.shadow import ShadowMetadataStore
from memoplane.tracking import BindingTable, MutationImpact, ReachabilityTracker, binding_key
from memoplane.values import Codec, PickleCodec, ValueClassifier, ValueKind
from memoplane.values import argument_signature as sign_arguments
from memoplane.values import file_hash as content_hash
from memoplane.values import value_hash as hash_value

logger = structlog.get_logger()

_WRITE_MODE_CHARS = frozenset("wax+")


@dataclass
class FrameEntry:
    """Outcome of ``enter_frame``.

    When ``replayed`` is True the frame is already closed and ``value`` is the
    decoded result; the host must not run the body or call ``exit_frame``.
    """

    frame: CallFrame
    replayed: bool = False
    value: Any = None


def _normalize_path(path: str | os.PathLike[str]) -> str:
    return os.path.abspath(os.fspath(path))


def _is_write_mode(mode: str) -> bool:
    return bool(_WRITE_MODE_CHARS.intersection(mode))


def _is_read_mode(mode: str) -> bool:
    return "r" in mode or "+" in mode


class CallBoundaryProtocol:
    """Dependency-tracking memoization engine for one process run.

    Single-threaded and synchronous with the host: events must arrive in
    program order, and frames must exit in strict LIFO order.
    """

    def __init__(
        self,
        config: MemoplaneConfig | None = None,
        *,
        cache: MemoCache | None = None,
        codec: Codec | None = None,
    ) -> None:
        self.config = config or MemoplaneConfig()
        tracking = self.config.tracking
        ignore = self.config.ignore

        self.store = ShadowMetadataStore(identity_bits=tracking.identity_bits)
        self.stack = CallStack()
        self.classifier = ValueClassifier(tracking.opaque_type_names)
        self.tracker = ReachabilityTracker(
            self.store,
            self.stack,
            self.classifier,
            depth=tracking.reachability_depth,
        )
        self.bindings = BindingTable()
        self.registry = CodeDependencyRegistry(
            IgnorePolicy(ignore.patterns, ignore_stdlib=ignore.ignore_stdlib)
        )
        self.codec: Codec = codec or PickleCodec()
        self.cache = cache or MemoCache.disabled("no cache attached", codec_name=self.codec.name)
        self._open_files: dict[str, str] = {}
        self._finalized = False

    @classmethod
    def open(
        cls,
        program_dir: Path | None = None,
        config: MemoplaneConfig | None = None,
    ) -> CallBoundaryProtocol:
        """Build an engine backed by the program's cache database."""
        program_dir = program_dir or Path.cwd()
        config = config or load_config(program_dir)
        codec = PickleCodec()
        if config.cache.enabled:
            cache = MemoCache.open(
                get_cache_db_path(program_dir, config),
                config=config,
                codec_name=codec.name,
            )
        else:
            cache = MemoCache.disabled("disabled by configuration", codec_name=codec.name)
        return cls(config, cache=cache, codec=codec)

    @property
    def current_frame(self) -> CallFrame | None:
        return self.stack.current

    @property
    def finalized(self) -> bool:
        return self._finalized

    # ------------------------------------------------------------------
    # DependencyState: current hashes for snapshot validation
    # ------------------------------------------------------------------

    def binding_hash(self, key: str) -> str | None:
        found, value = self.bindings.resolve(key)
        if not found or self.classifier.find_ineligible(value) is not None:
            return None
        try:
            return hash_value(value, self.codec)
        except SerializationError:
            return None

    def file_hash(self, path: str) -> str:
        return content_hash(path)

    def code_mismatch(self, code: Mapping[str, str]) -> str | None:
        return self.registry.first_mismatch(code)

    # ------------------------------------------------------------------
    # code units
    # ------------------------------------------------------------------

    def code_created(
        self,
        code: types.CodeType,
        module: str,
        *,
        qualname: str | None = None,
    ) -> CodeUnit:
        """A code object was created (function definition, import)."""
        return self.registry.register_code(code, module, qualname=qualname)

    def function_unit(self, func: types.FunctionType) -> CodeUnit:
        """Registered unit of a live function, registering it if needed."""
        return self.registry.register_function(func)

    def class_created(self, name: str, namespace: Mapping[str, Any], module: str) -> list[CodeUnit]:
        """Register every function defined in a class body."""
        units = [
            self.code_created(func.__code__, module, qualname=func.__qualname__)
            for value in namespace.values()
            for func in _class_member_functions(value)
        ]
        logger.debug("class_registered", cls=f"{module}.{name}", units=len(units))
        return units

    def record_invocation(self, caller: str, callee: str) -> None:
        """The running code of ``caller`` is known to call ``callee``."""
        self.registry.record_invocation(caller, callee)
        frame = self.stack.current
        if frame is not None and frame.callable_id == caller and callee != caller:
            frame.invoked_units.add(callee)

    # ------------------------------------------------------------------
    # frame entry and exit
    # ------------------------------------------------------------------

    def enter_frame(self, unit: CodeUnit, arguments: Mapping[str, Any]) -> FrameEntry:
        """Push a frame for ``unit`` called with bound ``arguments``.

        Looks the call up in the cache unless the unit is ignored or the
        arguments cannot be signed.
        """
        parent = self.stack.current
        if parent is not None:
            self.registry.record_invocation(parent.callable_id, unit.canonical_name)

        frame = self.stack.push(unit.canonical_name, unit.code_hash)
        try:
            for value in arguments.values():
                if self.tracker.note_argument_reachable(value, frame):
                    self.tracker.propagate_into(value)
            key = self._prepare_key(frame, unit, arguments)
        except Exception:
            # argument objects run user code on attribute access
            logger.warning("frame_entry_failed", unit=unit.canonical_name, exc_info=True)
            frame.taint(NonCacheableReason.UNSIGNABLE_ARGUMENTS)
            key = None

        if key is not None:
            replayed = self._try_replay(frame, key)
            if replayed is not None:
                return replayed

        frame.state = FrameState.ACCUMULATING
        return FrameEntry(frame=frame)

    def _prepare_key(self, frame: CallFrame, unit: CodeUnit, arguments: Mapping[str, Any]) -> CacheKey | None:
        if unit.ignored:
            frame.taint(NonCacheableReason.IGNORED_UNIT)
            return None
        if not self.cache.enabled:
            frame.taint(NonCacheableReason.CACHE_DISABLED)
            return None
        for value in arguments.values():
            if self.classifier.find_ineligible(value) is not None:
                frame.taint(NonCacheableReason.UNSIGNABLE_ARGUMENTS)
                return None
        try:
            frame.arg_signature = sign_arguments(arguments, self.codec)
        except SerializationError as e:
            logger.debug("arguments_unsignable", unit=unit.canonical_name, error=e.message)
            frame.taint(NonCacheableReason.UNSIGNABLE_ARGUMENTS)
            return None
        return CacheKey(unit.canonical_name, unit.code_hash, frame.arg_signature)

    def _try_replay(self, frame: CallFrame, key: CacheKey) -> FrameEntry | None:
        result = self.cache.lookup(key, self, decode=self.codec.decode)
        if not result.hit:
            return None

        snapshot = result.snapshot
        for binding, value_hash in snapshot.globals.items():
            frame.record_global(binding, value_hash)
        for path, file_digest in snapshot.files.items():
            frame.record_file(path, file_digest)
        for unit_name in snapshot.code:
            # the body did not run, so its edges come from the snapshot
            self.registry.record_invocation(frame.callable_id, unit_name)
            if unit_name != frame.callable_id:
                frame.invoked_units.add(unit_name)
        frame.state = FrameState.REPLAYED_FROM_CACHE
        logger.debug("frame_replayed", unit=frame.callable_id, start_time=frame.start_time)
        self._close(frame)
        return FrameEntry(frame=frame, replayed=True, value=result.value)

    def exit_frame(self, frame: CallFrame, value: Any = None, *, raised: bool = False) -> FrameState:
        """Close the innermost frame, committing its result when allowed."""
        payload = self._check_result(frame, value, raised=raised)
        if payload is not None and frame.cacheable:
            key = CacheKey(frame.callable_id, frame.code_hash, frame.arg_signature or "")
            snapshot = DependencySnapshot(
                globals=frame.globals_read,
                files=frame.files_read,
                code=self._code_snapshot(frame),
            )
            if self.cache.commit(key, payload, snapshot):
                frame.state = FrameState.COMMITTED_CACHEABLE
            else:
                frame.taint(NonCacheableReason.CACHE_DISABLED)
        if frame.state is not FrameState.COMMITTED_CACHEABLE:
            frame.state = FrameState.COMMITTED_UNCACHEABLE
            logger.debug(
                "frame_not_cached",
                unit=frame.callable_id,
                reasons=[reason.value for reason in frame.reasons],
            )
        self._close(frame)
        return frame.state

    def _check_result(self, frame: CallFrame, value: Any, *, raised: bool) -> bytes | None:
        if raised:
            frame.taint(NonCacheableReason.RAISED)
            return None
        if not frame.cacheable or frame.arg_signature is None:
            return None
        if self.classifier.find_ineligible(value) is not None:
            frame.taint(NonCacheableReason.INELIGIBLE_RETURN)
            return None
        try:
            return self.codec.encode(value)
        except SerializationError as e:
            logger.debug("result_unencodable", unit=frame.callable_id, error=e.message)
            frame.taint(NonCacheableReason.ENCODE_FAILED)
            return None

    def _code_snapshot(self, frame: CallFrame) -> dict[str, str]:
        code: dict[str, str] = {}
        for name in frame.invoked_units | {frame.callable_id}:
            code.update(self.registry.transitive_hashes(name))
        # the hash the body actually ran with
        code[frame.callable_id] = frame.code_hash
        return code

    def _close(self, frame: CallFrame) -> None:
        self.tracker.release_frame(frame)
        self.stack.pop(frame)
        parent = self.stack.current
        if parent is not None:
            parent.absorb(frame)

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------

    def global_read(self, namespace: str, name: str, value: Any) -> None:
        """The running code read global ``name`` from ``namespace``."""
        binding = self.bindings.binding(namespace, name)
        if self.tracker.mark_global_container(value, binding):
            self.tracker.propagate_into(value)
        frame = self.stack.current
        if frame is None:
            return
        kind = self.classifier.classify(value)
        if kind is ValueKind.NEVER:
            # functions, classes and modules are tracked as code and attribute reads
            return
        if self.classifier.find_ineligible(value) is not None:
            frame.taint(NonCacheableReason.INELIGIBLE_READ)
            return
        try:
            frame.record_global(binding.key, hash_value(value, self.codec))
        except SerializationError:
            frame.taint(NonCacheableReason.INELIGIBLE_READ)

    def attribute_read(self, obj: Any, attr: str, value: Any) -> None:
        """The running code read ``obj.attr``. Module attributes are global reads."""
        if isinstance(obj, types.ModuleType):
            self.global_read(obj.__name__, attr, value)
            return
        self.tracker.extend_reachability(obj, value)

    def extend_reachability(self, parent: Any, child: Any) -> bool:
        return self.tracker.extend_reachability(parent, child)

    # ------------------------------------------------------------------
    # writes and mutations
    # ------------------------------------------------------------------

    def global_bound(self, namespace: str, name: str, value: Any) -> None:
        """Global ``name`` in ``namespace`` is about to be (re)bound to ``value``."""
        previous = self.bindings.retire(namespace, name)
        binding = self.bindings.binding(namespace, name)
        if self.tracker.mark_global_container(value, binding):
            self.tracker.propagate_into(value)
        self._global_written(binding.key, rebound=previous is not None)

    def global_deleted(self, namespace: str, name: str) -> None:
        previous = self.bindings.retire(namespace, name)
        self._global_written(binding_key(namespace, name), rebound=previous is not None)

    def _global_written(self, key: str, *, rebound: bool) -> None:
        tainted = self.stack.taint_all(NonCacheableReason.GLOBAL_WRITE)
        if tainted:
            logger.debug("frame_tainted", reason="global_write", binding=key, frames=len(tainted))
        # first bindings (module initialisation) are checked lazily at lookup
        if rebound:
            self.cache.invalidate_binding(key)

    def about_to_mutate(self, obj: Any) -> MutationImpact:
        """``obj`` is about to be mutated in place."""
        impact = self.tracker.note_about_to_mutate(obj)
        if impact.binding is not None:
            self.cache.invalidate_binding(impact.binding.key)
        return impact

    def about_to_call_c_method(self, name: str, obj: Any) -> MutationImpact | None:
        """A native method ``name`` is about to run on ``obj``."""
        if name not in MUTATING_C_METHODS:
            return None
        return self.about_to_mutate(obj)

    # ------------------------------------------------------------------
    # files
    # ------------------------------------------------------------------

    def file_opened(self, path: str | os.PathLike[str], mode: str = "r") -> str:
        """A file was opened. Returns the normalized path used as its key."""
        normalized = _normalize_path(path)
        self._open_files[normalized] = mode
        if _is_read_mode(mode):
            self.file_read(normalized)
        if _is_write_mode(mode):
            self.file_about_to_write(normalized)
        return normalized

    def file_read(self, path: str | os.PathLike[str]) -> None:
        frame = self.stack.current
        if frame is None:
            return
        normalized = _normalize_path(path)
        frame.record_file(normalized, content_hash(normalized))

    def file_about_to_write(self, path: str | os.PathLike[str]) -> None:
        """A file is about to be written or truncated."""
        normalized = _normalize_path(path)
        tainted = self.stack.taint_all(NonCacheableReason.FILE_WRITE)
        if tainted:
            logger.debug("frame_tainted", reason="file_write", path=normalized, frames=len(tainted))
        self.cache.invalidate_file(normalized)

    def file_closed(self, path: str | os.PathLike[str]) -> str | None:
        """Returns the mode the file was opened with, if it was reported."""
        return self._open_files.pop(_normalize_path(path), None)

    # ------------------------------------------------------------------
    # shutdown
    # ------------------------------------------------------------------

    def finalize(self) -> None:
        """Flush pending commits and release the cache. Idempotent."""
        if self._finalized:
            return
        self._finalized = True
        if len(self.stack):
            logger.warning(
                "frames_open_at_finalize",
                frames=[frame.callable_id for frame in self.stack],
            )
        self.cache.close()
        stats = self.cache.stats
        logger.info(
            "engine_finalized",
            hits=stats.hits,
            misses=stats.misses,
            commits=stats.commits,
            invalidated=stats.invalidated,
            units=len(self.registry),
            tracked_objects=self.store.touched_count,
        )


def _class_member_functions(value: Any) -> list[types.FunctionType]:
    if isinstance(value, types.FunctionType):
        return [value]
    if isinstance(value, (staticmethod, classmethod)):
        inner = value.__func__
        return [inner] if isinstance(inner, types.FunctionType) else []
    if isinstance(value, property):
        return [f for f in (value.fget, value.fset, value.fdel) if isinstance(f, types.FunctionType)]
    return []
