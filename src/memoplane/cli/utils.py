"""CLI utilities."""

from pathlib import Path

import click

from memoplane.config.constants import MEMOPLANE_DIR_NAME
from memoplane.config.loader import get_cache_db_path, load_config
from memoplane.core.errors import ConfigError


def find_program_dir(start_path: Path | None = None) -> Path:
    """Find the directory owning a .memoplane/ directory.

    Walks up from start_path (default: current working directory). When no
    ancestor has one, start_path itself is the program directory.
    """
    if start_path is None:
        start_path = Path.cwd()
    start = start_path.resolve()
    if start.is_file():
        start = start.parent

    current = start
    while current != current.parent:
        if (current / MEMOPLANE_DIR_NAME).is_dir():
            return current
        current = current.parent
    if (current / MEMOPLANE_DIR_NAME).is_dir():
        return current
    return start


def resolve_cache_db(program_dir: Path) -> Path:
    """Cache database path for a program directory, as a CLI error on bad config."""
    try:
        return get_cache_db_path(program_dir, load_config(program_dir))
    except ConfigError as e:
        raise click.ClickException(str(e)) from e
