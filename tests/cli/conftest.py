"""Shared fixtures for CLI tests."""

from pathlib import Path

import pytest

from memoplane.cache import CacheKey, DependencySnapshot, MemoCache
from memoplane.config.constants import CACHE_DB_NAME, MEMOPLANE_DIR_NAME


@pytest.fixture
def program_dir(tmp_path: Path) -> Path:
    """An empty program directory."""
    path = tmp_path / "program"
    path.mkdir()
    return path


@pytest.fixture
def populated_program(program_dir: Path) -> Path:
    """A program directory whose cache holds three entries over two functions."""
    cache = MemoCache.open(program_dir / MEMOPLANE_DIR_NAME / CACHE_DB_NAME)
    snapshot = DependencySnapshot(code={"app.load": "c1"})
    cache.commit(CacheKey("app.load", "c1", "sig-a"), b"payload-a", snapshot)
    cache.commit(CacheKey("app.load", "c1", "sig-b"), b"payload-b", snapshot)
    cache.commit(CacheKey("app.parse", "c2", "sig-c"), b"payload-c", snapshot)
    cache.close()
    return program_dir
