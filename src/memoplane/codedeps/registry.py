"""Code dependency registry.

Tracks every callable unit the host created in this run and which units
each one was observed to invoke. A cached result stays valid only while the
code hash of its own unit and of every unit it transitively invoked is
unchanged.
"""

from __future__ import annotations

import types
from collections.abc import Mapping

import structlog

from memoplane.codedeps.units import CodeUnit, IgnorePolicy

logger = structlog.get_logger()


class CodeDependencyRegistry:
    """canonical name -> current CodeUnit, plus the invocation graph."""

    def __init__(self, policy: IgnorePolicy | None = None) -> None:
        self.policy = policy or IgnorePolicy()
        self._units: dict[str, CodeUnit] = {}
        self._invokes: dict[str, set[str]] = {}

    def __len__(self) -> int:
        return len(self._units)

    def __contains__(self, name: object) -> bool:
        return name in self._units

    def get(self, name: str) -> CodeUnit | None:
        return self._units.get(name)

    def register(self, unit: CodeUnit) -> CodeUnit:
        """Register a unit, replacing an earlier unit of the same name."""
        previous = self._units.get(unit.canonical_name)
        if previous is not None and previous.code_hash != unit.code_hash:
            logger.debug(
                "code_unit_redefined",
                unit=unit.canonical_name,
                old_hash=previous.code_hash,
                new_hash=unit.code_hash,
            )
            # edges describe the old body
            self._invokes.pop(unit.canonical_name, None)
        self._units[unit.canonical_name] = unit
        return unit

    def register_code(
        self,
        code: types.CodeType,
        module: str,
        *,
        qualname: str | None = None,
    ) -> CodeUnit:
        return self.register(CodeUnit.from_code(code, module, qualname=qualname, policy=self.policy))

    def register_function(self, func: types.FunctionType) -> CodeUnit:
        """Register a function once; later calls return the registered unit."""
        name = f"{func.__module__ or '__main__'}.{func.__qualname__}"
        existing = self._units.get(name)
        unit = CodeUnit.from_function(func, policy=self.policy)
        if existing is not None and existing.code_hash == unit.code_hash:
            return existing
        return self.register(unit)

    def record_invocation(self, caller: str, callee: str) -> bool:
        """Add ``callee`` to ``caller``'s invoked set. Returns True if new."""
        if caller == callee:
            return False
        invoked = self._invokes.setdefault(caller, set())
        if callee in invoked:
            return False
        invoked.add(callee)
        return True

    def invoked_by(self, name: str) -> frozenset[str]:
        return frozenset(self._invokes.get(name, ()))

    def transitive_units(self, name: str) -> set[str]:
        """``name`` plus every unit reachable through recorded invocations."""
        seen: set[str] = set()
        stack = [name]
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            stack.extend(self._invokes.get(current, ()))
        return seen

    def transitive_hashes(self, name: str) -> dict[str, str]:
        """Current code hash of ``name`` and of every unit it transitively invokes."""
        hashes: dict[str, str] = {}
        for unit_name in self.transitive_units(name):
            unit = self._units.get(unit_name)
            if unit is not None:
                hashes[unit_name] = unit.code_hash
        return hashes

    def first_mismatch(self, recorded: Mapping[str, str]) -> str | None:
        """First unit whose recorded hash differs from the registered one.

        A unit that is not registered in this run counts as a mismatch.
        """
        for name, code_hash in recorded.items():
            unit = self._units.get(name)
            if unit is None or unit.code_hash != code_hash:
                return name
        return None

    def is_current(self, recorded: Mapping[str, str]) -> bool:
        return self.first_mismatch(recorded) is None
