"""Global bindings as first-class, weakly referenceable objects.

A GlobalBinding stands for one ``(namespace, name)`` slot such as the module
global ``config`` in module ``app.settings``, or the class attribute
``FACTOR`` in namespace ``app.models.Scaler``. Shadow records point at bindings
through weak references. When the slot is rebound or deleted the table
retires the binding object and forgets it, so every record that pointed at
the old binding reads as "no global container" from then on.
"""

from __future__ import annotations

import builtins
import sys
from collections.abc import Mapping, MutableMapping
from typing import Any

BUILTINS_NAMESPACE = "builtins"


def binding_key(namespace: str, name: str) -> str:
    return f"{namespace}:{name}"


def split_binding_key(key: str) -> tuple[str, str]:
    namespace, _, name = key.rpartition(":")
    return namespace, name


class GlobalBinding:
    """One global slot. Compared by identity."""

    __slots__ = ("__weakref__", "key", "name", "namespace", "retired")

    def __init__(self, namespace: str, name: str) -> None:
        self.namespace = namespace
        self.name = name
        self.key = binding_key(namespace, name)
        self.retired = False

    def __repr__(self) -> str:  # pragma: no cover - representation helper
        state = " retired" if self.retired else ""
        return f"<GlobalBinding {self.key}{state}>"


class BindingTable:
    """Registered namespaces and the live binding object of each slot."""

    def __init__(self) -> None:
        self._namespaces: dict[str, MutableMapping[str, Any]] = {}
        self._bindings: dict[str, GlobalBinding] = {}

    def __len__(self) -> int:
        return len(self._bindings)

    def register_namespace(self, namespace: str, mapping: MutableMapping[str, Any]) -> None:
        self._namespaces[namespace] = mapping

    def namespace(self, namespace: str) -> Mapping[str, Any] | None:
        """Mapping behind a namespace: registered, a module, or a class body.

        Class namespaces are named ``module.Qualname`` and are found by
        walking attributes from the longest imported module prefix.
        """
        mapping = self._namespaces.get(namespace)
        if mapping is not None:
            return mapping
        if namespace == BUILTINS_NAMESPACE:
            return vars(builtins)
        module_name, attrs = namespace, []
        while module_name not in sys.modules:
            module_name, _, attr = module_name.rpartition(".")
            if not module_name:
                return None
            attrs.insert(0, attr)
        owner: Any = sys.modules[module_name]
        for attr in attrs:
            owner = getattr(owner, attr, None)
        if attrs and not isinstance(owner, type):
            return None
        return vars(owner)

    def binding(self, namespace: str, name: str) -> GlobalBinding:
        """The live binding object for a slot, created on first use."""
        key = binding_key(namespace, name)
        current = self._bindings.get(key)
        if current is None:
            current = GlobalBinding(namespace, name)
            self._bindings[key] = current
        return current

    def retire(self, namespace: str, name: str) -> GlobalBinding | None:
        """Retire the slot's binding object after a rebind or delete."""
        previous = self._bindings.pop(binding_key(namespace, name), None)
        if previous is not None:
            previous.retired = True
        return previous

    def resolve(self, key: str) -> tuple[bool, Any]:
        """Current value of a binding key as ``(found, value)``."""
        namespace, name = split_binding_key(key)
        mapping = self.namespace(namespace)
        if mapping is None or name not in mapping:
            return False, None
        return True, mapping[name]
