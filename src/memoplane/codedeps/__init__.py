"""Callable units and their code dependencies."""

from memoplane.codedeps.registry import CodeDependencyRegistry
from memoplane.codedeps.units import (
    CodeUnit,
    IgnorePolicy,
    canonical_name,
    code_content_hash,
)

__all__ = [
    "CodeDependencyRegistry",
    "CodeUnit",
    "IgnorePolicy",
    "canonical_name",
    "code_content_hash",
]
