"""Global bindings and reachability tracking."""

from memoplane.tracking.bindings import (
    BUILTINS_NAMESPACE,
    BindingTable,
    GlobalBinding,
    binding_key,
    split_binding_key,
)
from memoplane.tracking.reachability import MutationImpact, ReachabilityTracker, iter_members

__all__ = [
    "BUILTINS_NAMESPACE",
    "BindingTable",
    "GlobalBinding",
    "MutationImpact",
    "ReachabilityTracker",
    "binding_key",
    "iter_members",
    "split_binding_key",
]
