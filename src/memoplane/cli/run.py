"""memoplane run command - execute a script with memoization active."""

import runpy
import sys
from pathlib import Path

import click

from memoplane.cli.utils import find_program_dir
from memoplane.config.loader import load_config
from memoplane.core.errors import ConfigError
from memoplane.core.logging import configure_logging, run_scope
from memoplane.core.progress import pluralize, status
from memoplane.runtime import Session, activate, deactivate


@click.command(context_settings={"ignore_unknown_options": True, "allow_interspersed_args": False})
@click.argument("script", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
@click.option("--stats", "show_stats", is_flag=True, help="Print hit/miss counts when the script ends")
@click.pass_context
def run_command(ctx: click.Context, script: Path, args: tuple[str, ...], show_stats: bool) -> None:
    """Run SCRIPT as __main__ with memoization active.

    Functions decorated with memoplane.memoize are cached in the
    .memoplane/ directory next to the script (or the nearest ancestor that
    has one). Remaining ARGS are passed to the script.
    """
    script = script.resolve()
    program_dir = find_program_dir(script.parent)
    try:
        config = load_config(program_dir)
    except ConfigError as e:
        raise click.ClickException(str(e)) from e

    if not ctx.obj.get("verbose"):
        configure_logging(config.logging)

    with run_scope() as run_id:
        session = activate(Session.open(program_dir, config))
        saved_argv = sys.argv
        sys.argv = [str(script), *args]
        sys.path.insert(0, str(script.parent))
        try:
            runpy.run_path(str(script), run_name="__main__")
        finally:
            sys.argv = saved_argv
            if str(script.parent) in sys.path:
                sys.path.remove(str(script.parent))
            deactivate()
            session.finalize()

    if show_stats:
        stats = session.engine.cache.stats
        status(
            f"run {run_id}: {pluralize(stats.hits, 'hit')}, {pluralize(stats.misses, 'miss', 'misses')}, "
            f"{pluralize(stats.commits, 'commit')}",
            style="info",
        )
