"""Reachability propagation and mutation taint.

Two facts flow from object to object:

- global container: the global binding an object can be reached from.
  A mutation of such an object is a side effect on shared state, so every
  open frame loses its cacheable flag and cached results that depended on
  the binding are invalidated by the caller of ``note_about_to_mutate``.
- argument-reachable start time: the start time of the outermost open frame
  that received the object (or something containing it) as an argument.
  A mutation taints that frame and everything nested inside it. Frames
  entered earlier created or own the object and are unaffected.

Objects with neither fact are local to the running frame and can be mutated
freely.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog

from memoplane.frames.stack import CallFrame, CallStack, NonCacheableReason
from memoplane.values.kinds import ValueClassifier

if TYPE_CHECKING:
    from memoplane.shadow.store import ObjectMetadataRecord, ShadowMetadataStore
    from memoplane.tracking.bindings import GlobalBinding

logger = structlog.get_logger()


@dataclass
class MutationImpact:
    """What an about-to-mutate event touched."""

    binding: GlobalBinding | None = None
    arg_start_time: int | None = None
    tainted: list[CallFrame] = field(default_factory=list)

    @property
    def is_local(self) -> bool:
        return self.binding is None and self.arg_start_time is None


def iter_members(obj: Any) -> Iterator[Any]:
    """Direct members of builtin containers and plain instances."""
    if isinstance(obj, dict):
        yield from obj.keys()
        yield from obj.values()
    elif isinstance(obj, (list, tuple, set, frozenset)):
        yield from obj
    else:
        instance_dict = getattr(obj, "__dict__", None)
        if isinstance(instance_dict, dict):
            yield from instance_dict.values()
        for slot in getattr(type(obj), "__slots__", ()):
            if isinstance(slot, str) and slot not in ("__dict__", "__weakref__"):
                try:
                    yield getattr(obj, slot)
                except AttributeError:
                    continue


class ReachabilityTracker:
    """Maintains shadow facts and turns mutations into frame taints."""

    def __init__(
        self,
        store: ShadowMetadataStore,
        stack: CallStack,
        classifier: ValueClassifier,
        *,
        depth: int = 8,
    ) -> None:
        self.store = store
        self.stack = stack
        self.classifier = classifier
        self.depth = depth
        # start_time -> identities whose arg time was set to it
        self._arg_marks: dict[int, list[int]] = {}

    def _tracked(self, obj: Any) -> bool:
        return self.classifier.is_tracked_kind(obj)

    def mark_global_container(self, obj: Any, container: GlobalBinding) -> bool:
        """Record that ``obj`` is bound into global scope through ``container``."""
        if not self._tracked(obj):
            return False
        record = self.store.get_or_create_for(obj)
        record.set_global_container(container)
        return True

    def extend_reachability(self, parent: Any, child: Any) -> bool:
        """Propagate parent's facts to a child that became reachable through it.

        Returns True if the child carries any fact afterwards.
        """
        if not self._tracked(child):
            return False
        parent_record = self.store.get_for(parent)
        if parent_record is None:
            return False
        container = parent_record.global_container
        arg_time = parent_record.arg_reachable_start_time
        if container is None and arg_time is None:
            return False
        child_record = self.store.get_or_create_for(child)
        if container is not None and child_record.global_container is None:
            child_record.set_global_container(container)
        if arg_time is not None:
            self._lower_arg_time(id(child), child_record, arg_time)
        return True

    def note_argument_reachable(self, obj: Any, frame: CallFrame) -> bool:
        """Record that ``obj`` was passed as an argument into ``frame``."""
        if not self._tracked(obj):
            return False
        record = self.store.get_or_create_for(obj)
        self._lower_arg_time(id(obj), record, frame.start_time)
        return True

    def _lower_arg_time(self, identity: int, record: ObjectMetadataRecord, start_time: int) -> None:
        current = record.arg_reachable_start_time
        if current is not None and current <= start_time:
            return
        record.arg_reachable_start_time = start_time
        self._arg_marks.setdefault(start_time, []).append(identity)

    def note_about_to_mutate(self, obj: Any) -> MutationImpact:
        """Taint the frames that can observe a mutation of ``obj``."""
        if not self._tracked(obj):
            return MutationImpact()
        record = self.store.get_for(obj)
        if record is None:
            return MutationImpact()
        impact = MutationImpact(
            binding=record.global_container,
            arg_start_time=record.arg_reachable_start_time,
        )
        if impact.binding is not None:
            impact.tainted.extend(self.stack.taint_all(NonCacheableReason.GLOBAL_MUTATION))
        if impact.arg_start_time is not None:
            impact.tainted.extend(
                self.stack.taint_since(impact.arg_start_time, NonCacheableReason.ARGUMENT_MUTATION)
            )
        if impact.tainted:
            logger.debug(
                "frames_tainted_by_mutation",
                binding=impact.binding.key if impact.binding is not None else None,
                arg_start_time=impact.arg_start_time,
                frames=[frame.callable_id for frame in impact.tainted],
            )
        return impact

    def release_frame(self, frame: CallFrame) -> int:
        """Drop the argument marks ``frame`` introduced. Returns how many were cleared."""
        cleared = 0
        for identity in self._arg_marks.pop(frame.start_time, ()):
            record = self.store.get(identity)
            if record is not None and record.arg_reachable_start_time == frame.start_time:
                record.arg_reachable_start_time = None
                cleared += 1
        return cleared

    def propagate_into(self, root: Any, depth: int | None = None) -> int:
        """Eagerly extend reachability from ``root`` through nested members.

        Used by hosts that cannot report individual member accesses. Returns
        the number of parent -> child edges visited.
        """
        limit = self.depth if depth is None else depth
        if limit <= 0 or self.store.get_for(root) is None:
            return 0
        edges = 0
        seen = {id(root)}
        queue: deque[tuple[Any, int]] = deque([(root, 0)])
        while queue:
            parent, level = queue.popleft()
            if level >= limit:
                continue
            for child in iter_members(parent):
                if not self.extend_reachability(parent, child):
                    continue
                edges += 1
                if id(child) not in seen:
                    seen.add(id(child))
                    queue.append((child, level + 1))
        return edges
