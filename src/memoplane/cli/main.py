"""memoplane CLI."""

import click

from memoplane.cli.clear import clear_command
from memoplane.cli.init import init_command
from memoplane.cli.run import run_command
from memoplane.cli.status import status_command
from memoplane.config.models import LoggingConfig
from memoplane.core.logging import configure_logging


@click.group()
@click.version_option(version="0.1.0", prog_name="memoplane")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """memoplane - cross-run memoization for Python programs."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    configure_logging(LoggingConfig(level="DEBUG" if verbose else "WARNING"))


cli.add_command(init_command, name="init")
cli.add_command(status_command, name="status")
cli.add_command(clear_command, name="clear")
cli.add_command(run_command, name="run")


if __name__ == "__main__":
    cli()
