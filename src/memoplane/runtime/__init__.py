"""Decorator-based host adapter."""

from memoplane.runtime.introspection import GlobalRefs, global_refs
from memoplane.runtime.session import (
    MEMOIZED_MARKER,
    Session,
    TrackedFile,
    activate,
    active_session,
    deactivate,
    install,
    memoize,
)

__all__ = [
    "GlobalRefs",
    "MEMOIZED_MARKER",
    "Session",
    "TrackedFile",
    "activate",
    "active_session",
    "deactivate",
    "global_refs",
    "install",
    "memoize",
]
