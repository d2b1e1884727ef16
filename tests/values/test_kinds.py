"""Tests for value classification."""

import io
import sqlite3
import threading

import pytest

from memoplane.values import ValueClassifier, ValueKind, type_name


class Point:
    def __init__(self, x: int, y: int) -> None:
        self.x = x
        self.y = y


class Flag(int):
    pass


class TestClassify:
    """The closed ValueKind classification."""

    @pytest.mark.parametrize("value", [None, True, 3, 2.5, 1j, "s", b"b"])
    def test_primitives(self, value: object) -> None:
        assert ValueClassifier().classify(value) is ValueKind.PRIMITIVE

    @pytest.mark.parametrize("value", [[], (), {}, set(), frozenset()])
    def test_containers(self, value: object) -> None:
        assert ValueClassifier().classify(value) is ValueKind.CONTAINER

    @pytest.mark.parametrize(
        "value",
        [len, print, Point, io, (lambda: 1), io.StringIO(), (i for i in range(2)), Point.__init__.__code__],
    )
    def test_never(self, value: object) -> None:
        """Callables, classes, modules, I/O handles, generators and code never cache."""
        assert ValueClassifier().classify(value) is ValueKind.NEVER

    def test_plain_instance_is_object(self) -> None:
        assert ValueClassifier().classify(Point(1, 2)) is ValueKind.OBJECT

    def test_int_subclass_is_object_not_primitive(self) -> None:
        """Only exact primitive types compare by value."""
        assert ValueClassifier().classify(Flag(1)) is ValueKind.OBJECT

    def test_default_opaque_types(self) -> None:
        connection = sqlite3.connect(":memory:")
        try:
            classifier = ValueClassifier()
            assert classifier.classify(connection) is ValueKind.OPAQUE
            assert classifier.classify(connection.cursor()) is ValueKind.OPAQUE
        finally:
            connection.close()

    def test_deny_extends_opaque_list(self) -> None:
        classifier = ValueClassifier()
        lock = threading.Lock()
        name = type_name(lock)
        assert classifier.classify(lock) is ValueKind.OBJECT
        classifier.deny(name)
        assert classifier.classify(lock) is ValueKind.OPAQUE
        assert name in classifier.opaque_type_names

    def test_type_name_is_module_qualname(self) -> None:
        assert type_name(Point(0, 0)).endswith("test_kinds.Point")
        assert type_name([]) == "builtins.list"


class TestEligibility:
    """find_ineligible walks containers."""

    def test_eligible_nested_containers(self) -> None:
        value = {"a": [1, 2, (3, frozenset({4}))], "b": Point(1, 2)}
        assert ValueClassifier().find_ineligible(value) is None

    def test_function_inside_container(self) -> None:
        assert ValueClassifier().find_ineligible({"key": [1, len]}) is ValueKind.NEVER

    def test_opaque_inside_container(self) -> None:
        connection = sqlite3.connect(":memory:")
        try:
            assert ValueClassifier().find_ineligible([connection]) is ValueKind.OPAQUE
        finally:
            connection.close()

    def test_cyclic_container_terminates(self) -> None:
        cycle: list[object] = [1]
        cycle.append(cycle)
        assert ValueClassifier().find_ineligible(cycle) is None

    def test_tracked_kinds(self) -> None:
        classifier = ValueClassifier()
        assert classifier.is_tracked_kind([]) is True
        assert classifier.is_tracked_kind(Point(0, 0)) is True
        assert classifier.is_tracked_kind(5) is False
        assert classifier.is_tracked_kind(len) is False

    def test_kind_eligibility(self) -> None:
        assert ValueKind.OBJECT.eligible is True
        assert ValueKind.NEVER.eligible is False
        assert ValueKind.OPAQUE.eligible is False
