"""memoplane init command - create .memoplane/ with a commented config."""

import shutil
from pathlib import Path

import click

from memoplane.config.constants import MEMOPLANE_DIR_NAME
from memoplane.config.user_config import UserConfig, write_user_config
from memoplane.core.progress import status


def initialize_program(program_dir: Path, *, force: bool = False, disabled: bool = False) -> bool:
    """Create the .memoplane/ directory for a program, returning True on success."""
    memoplane_dir = program_dir / MEMOPLANE_DIR_NAME

    if memoplane_dir.exists() and not force:
        status(f"Already initialized: {memoplane_dir}", style="info")
        status("Use --force to reinitialize", style="info")
        return False

    if force and memoplane_dir.exists():
        shutil.rmtree(memoplane_dir)

    memoplane_dir.mkdir(parents=True, exist_ok=True)
    write_user_config(memoplane_dir / "config.yaml", UserConfig(enabled=not disabled))
    status(f"Initialized {memoplane_dir}", style="success")
    return True


@click.command()
@click.argument("path", default=".", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option("--force", "-f", is_flag=True, help="Recreate .memoplane/, dropping the cache")
@click.option("--disabled", is_flag=True, help="Write a config with caching switched off")
def init_command(path: Path, force: bool, disabled: bool) -> None:
    """Initialize a program directory for memoplane.

    PATH is the directory holding the program (default: current directory).
    """
    initialize_program(path.resolve(), force=force, disabled=disabled)
