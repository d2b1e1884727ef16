"""memoplane clear command - drop cached results."""

from pathlib import Path

import click
import questionary

from memoplane.cache import MemoCache
from memoplane.cli.utils import find_program_dir, resolve_cache_db
from memoplane.config.loader import load_config
from memoplane.core.progress import pluralize, status


def clear_cache(program_dir: Path, *, callable_name: str | None = None, yes: bool = False) -> int | None:
    """Delete cached entries of a program.

    Returns the number of entries removed, or None if cancelled or there
    was nothing to clear.
    """
    db_path = resolve_cache_db(program_dir)
    if not db_path.exists():
        status("Nothing to clear - no cache database found", style="warning")
        return None

    target = f"entries of {callable_name}" if callable_name else "every cached entry"
    if not yes:
        answer = questionary.confirm(f"Delete {target} in {db_path}?", default=False).ask()
        if not answer:
            status("Cancelled", style="info")
            return None

    cache = MemoCache.open(db_path, config=load_config(program_dir))
    try:
        if not cache.enabled:
            raise click.ClickException(f"Cache unusable: {cache.disabled_reason}")
        removed = cache.invalidate_callable(callable_name) if callable_name else cache.clear()
    finally:
        cache.close()

    status(f"Removed {pluralize(removed, 'entry', 'entries')}", style="success")
    return removed


@click.command()
@click.argument("path", default=None, required=False, type=click.Path(exists=True, path_type=Path))
@click.option("--callable", "callable_name", default=None, help="Only drop entries of this module.qualname")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
def clear_command(path: Path | None, callable_name: str | None, yes: bool) -> None:
    """Delete cached results of a program.

    PATH is the program directory. If not specified, walks up from the
    current directory to the nearest .memoplane/ directory.
    """
    clear_cache(find_program_dir(path), callable_name=callable_name, yes=yes)
