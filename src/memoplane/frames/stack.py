"""Call frame stack with a process-wide monotonic entry counter.

Every frame entry draws the next value of a single counter. Values are never
reused within a process, so for two frames open at the same time the one
with the smaller ``start_time`` is the ancestor. Reachability marks compare
against these values to find the outermost frame that could observe a
mutation.
"""

from __future__ import annotations

import itertools
from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum

from memoplane.core.errors import InvariantViolation


class FrameState(str, Enum):
    """Lifecycle of one call frame."""

    ENTERED = "entered"
    ACCUMULATING = "accumulating"
    COMMITTED_CACHEABLE = "committed_cacheable"
    COMMITTED_UNCACHEABLE = "committed_uncacheable"
    REPLAYED_FROM_CACHE = "replayed_from_cache"

    @property
    def is_final(self) -> bool:
        return self in (
            FrameState.COMMITTED_CACHEABLE,
            FrameState.COMMITTED_UNCACHEABLE,
            FrameState.REPLAYED_FROM_CACHE,
        )


class NonCacheableReason(str, Enum):
    """Why a frame's result is not stored."""

    IGNORED_UNIT = "ignored_unit"
    UNSIGNABLE_ARGUMENTS = "unsignable_arguments"
    GLOBAL_MUTATION = "global_mutation"
    ARGUMENT_MUTATION = "argument_mutation"
    GLOBAL_WRITE = "global_write"
    FILE_WRITE = "file_write"
    INELIGIBLE_READ = "ineligible_read"
    INELIGIBLE_RETURN = "ineligible_return"
    ENCODE_FAILED = "encode_failed"
    RAISED = "raised"
    CACHE_DISABLED = "cache_disabled"

    @property
    def propagates_to_caller(self) -> bool:
        """Reasons that make every enclosing frame uncacheable as well.

        A read whose value cannot be hashed is a dependency the caller
        inherits, so the caller cannot be validated either.
        """
        return self is NonCacheableReason.INELIGIBLE_READ


@dataclass(eq=False)
class CallFrame:
    """One active invocation and everything observed while it runs."""

    start_time: int
    callable_id: str
    code_hash: str
    state: FrameState = FrameState.ENTERED
    cacheable: bool = True
    reasons: list[NonCacheableReason] = field(default_factory=list)
    arg_signature: str | None = None
    globals_read: dict[str, str] = field(default_factory=dict)
    files_read: dict[str, str] = field(default_factory=dict)
    invoked_units: set[str] = field(default_factory=set)

    def taint(self, reason: NonCacheableReason) -> bool:
        """Clear the cacheable flag. Returns True if this call changed it."""
        was_cacheable = self.cacheable
        self.cacheable = False
        if reason not in self.reasons:
            self.reasons.append(reason)
        return was_cacheable

    def record_global(self, key: str, value_hash: str) -> None:
        # the first observed value is the one the body depended on
        self.globals_read.setdefault(key, value_hash)

    def record_file(self, path: str, content_hash: str) -> None:
        self.files_read.setdefault(path, content_hash)

    def absorb(self, child: CallFrame) -> None:
        """Inherit a finished child's dependencies."""
        self.invoked_units.add(child.callable_id)
        for key, value_hash in child.globals_read.items():
            self.record_global(key, value_hash)
        for path, content_hash in child.files_read.items():
            self.record_file(path, content_hash)
        for reason in child.reasons:
            if reason.propagates_to_caller:
                self.taint(reason)


class CallStack:
    """Stack of open frames. Single-threaded, strictly nested."""

    def __init__(self) -> None:
        self._frames: list[CallFrame] = []
        self._counter = itertools.count(1)
        self._last_start_time = 0

    def __len__(self) -> int:
        return len(self._frames)

    def __iter__(self) -> Iterator[CallFrame]:
        """Iterate outermost first."""
        return iter(self._frames)

    @property
    def current(self) -> CallFrame | None:
        return self._frames[-1] if self._frames else None

    @property
    def last_start_time(self) -> int:
        return self._last_start_time

    def push(self, callable_id: str, code_hash: str) -> CallFrame:
        start_time = next(self._counter)
        if start_time <= self._last_start_time:
            raise InvariantViolation.broken(
                "frame counter is not strictly monotonic",
                start_time=start_time,
                last=self._last_start_time,
            )
        self._last_start_time = start_time
        frame = CallFrame(start_time=start_time, callable_id=callable_id, code_hash=code_hash)
        self._frames.append(frame)
        return frame

    def pop(self, frame: CallFrame) -> CallFrame:
        if not self._frames or self._frames[-1] is not frame:
            raise InvariantViolation.broken(
                "frame exit does not match the innermost open frame",
                exiting=frame.callable_id,
                innermost=self._frames[-1].callable_id if self._frames else None,
            )
        return self._frames.pop()

    def frames_since(self, start_time: int) -> list[CallFrame]:
        """Open frames entered at or after ``start_time`` (that frame and its descendants)."""
        return [frame for frame in self._frames if frame.start_time >= start_time]

    def taint_all(self, reason: NonCacheableReason) -> list[CallFrame]:
        """Taint every open frame. Returns the frames that changed."""
        return [frame for frame in self._frames if frame.taint(reason)]

    def taint_since(self, start_time: int, reason: NonCacheableReason) -> list[CallFrame]:
        return [frame for frame in self.frames_since(start_time) if frame.taint(reason)]
