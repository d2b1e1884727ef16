"""Root conftest.py for test configuration.

Ensures local src/ directory takes priority over any installed packages.
"""

import logging
import os
import sys
from collections.abc import Generator
from pathlib import Path

import pytest

# Insert local src directory at the beginning of sys.path
# This ensures that the local memoplane package is used, not any installed one
_src_dir = Path(__file__).parent.parent / "src"
if str(_src_dir) not in sys.path:
    sys.path.insert(0, str(_src_dir))

# Force reimport of memoplane modules if already imported
for module_name in list(sys.modules.keys()):
    if module_name.startswith("memoplane"):
        del sys.modules[module_name]


@pytest.fixture(autouse=True)
def clean_env() -> Generator[None, None, None]:
    """Remove MEMOPLANE__* env vars for clean tests."""
    orig = {k: v for k, v in os.environ.items() if k.startswith("MEMOPLANE__")}
    for k in orig:
        del os.environ[k]
    yield
    for k in [k for k in os.environ if k.startswith("MEMOPLANE__")]:
        del os.environ[k]
    os.environ.update(orig)


@pytest.fixture(autouse=True)
def isolated_global_config(tmp_path_factory: pytest.TempPathFactory) -> Generator[Path, None, None]:
    """Point the global config at an empty location."""
    from unittest.mock import patch

    path = tmp_path_factory.mktemp("global-config") / "config.yaml"
    with patch("memoplane.config.loader.GLOBAL_CONFIG_PATH", path):
        yield path


@pytest.fixture(autouse=True)
def reset_active_session() -> Generator[None, None, None]:
    """No test leaks an active runtime session into the next."""
    yield
    from memoplane.runtime import deactivate

    deactivate()


@pytest.fixture(autouse=True)
def reset_logging() -> Generator[None, None, None]:
    """Drop handlers installed by configure_logging()."""
    yield
    import structlog

    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()
    logging.getLogger().handlers.clear()
