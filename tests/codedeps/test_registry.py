"""Tests for the code dependency registry."""

from memoplane.codedeps import CodeDependencyRegistry, CodeUnit, IgnorePolicy


def _unit(name: str, code_hash: str) -> CodeUnit:
    return CodeUnit(canonical_name=name, code_hash=code_hash)


class TestInvocationGraph:
    """Recorded edges and transitive closure."""

    def test_transitive_hashes_follow_edges(self) -> None:
        registry = CodeDependencyRegistry()
        for name, h in [("m.a", "ha"), ("m.b", "hb"), ("m.c", "hc"), ("m.d", "hd")]:
            registry.register(_unit(name, h))
        registry.record_invocation("m.a", "m.b")
        registry.record_invocation("m.b", "m.c")

        assert registry.transitive_hashes("m.a") == {"m.a": "ha", "m.b": "hb", "m.c": "hc"}
        assert registry.transitive_hashes("m.d") == {"m.d": "hd"}

    def test_cycles_are_safe(self) -> None:
        registry = CodeDependencyRegistry()
        registry.register(_unit("m.even", "he"))
        registry.register(_unit("m.odd", "ho"))
        registry.record_invocation("m.even", "m.odd")
        registry.record_invocation("m.odd", "m.even")
        assert registry.transitive_units("m.even") == {"m.even", "m.odd"}

    def test_self_edge_and_duplicates_are_not_recorded(self) -> None:
        registry = CodeDependencyRegistry()
        assert registry.record_invocation("m.f", "m.f") is False
        assert registry.record_invocation("m.f", "m.g") is True
        assert registry.record_invocation("m.f", "m.g") is False
        assert registry.invoked_by("m.f") == frozenset({"m.g"})

    def test_redefinition_drops_old_edges(self) -> None:
        """Edges describe the body that was observed."""
        registry = CodeDependencyRegistry()
        registry.register(_unit("m.f", "v1"))
        registry.record_invocation("m.f", "m.g")
        registry.register(_unit("m.f", "v2"))
        assert registry.invoked_by("m.f") == frozenset()

    def test_same_hash_registration_keeps_edges(self) -> None:
        registry = CodeDependencyRegistry()
        registry.register(_unit("m.f", "v1"))
        registry.record_invocation("m.f", "m.g")
        registry.register(_unit("m.f", "v1"))
        assert registry.invoked_by("m.f") == frozenset({"m.g"})


class TestValidity:
    """Snapshot comparisons."""

    def test_matching_snapshot_is_current(self) -> None:
        registry = CodeDependencyRegistry()
        registry.register(_unit("m.f", "h1"))
        assert registry.is_current({"m.f": "h1"})
        assert registry.first_mismatch({"m.f": "h1"}) is None

    def test_changed_hash_is_reported(self) -> None:
        registry = CodeDependencyRegistry()
        registry.register(_unit("m.f", "h2"))
        assert registry.first_mismatch({"m.f": "h1"}) == "m.f"

    def test_unknown_unit_counts_as_mismatch(self) -> None:
        assert CodeDependencyRegistry().first_mismatch({"m.gone": "h"}) == "m.gone"


class TestRegisterFunction:
    """Live function registration."""

    def test_register_function_is_idempotent(self) -> None:
        def work(x: int) -> int:
            return x + 1

        registry = CodeDependencyRegistry(IgnorePolicy(ignore_stdlib=False))
        first = registry.register_function(work)
        assert registry.register_function(work) is first
        assert first.canonical_name in registry
        assert len(registry) == 1

    def test_register_code_with_qualname(self) -> None:
        def work() -> None:
            pass

        registry = CodeDependencyRegistry(IgnorePolicy(ignore_stdlib=False))
        unit = registry.register_code(work.__code__, "pkg.mod", qualname="Worker.run")
        assert unit.canonical_name == "pkg.mod.Worker.run"
        assert registry.get("pkg.mod.Worker.run") is unit
