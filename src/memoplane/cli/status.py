"""memoplane status command - summarize the cache of a program."""

import json
from pathlib import Path

import click
from rich.table import Table

from memoplane.cache import MemoCache
from memoplane.cli.utils import find_program_dir, resolve_cache_db
from memoplane.config.loader import load_config
from memoplane.core.progress import get_console, pluralize, status


@click.command()
@click.argument("path", default=".", type=click.Path(exists=True, path_type=Path))
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.option("--entries", "show_entries", is_flag=True, help="List every entry, not just totals")
def status_command(path: Path, as_json: bool, show_entries: bool) -> None:
    """Show what the cache of a program holds.

    PATH is the program directory (default: current directory).
    """
    program_dir = find_program_dir(path)
    db_path = resolve_cache_db(program_dir)

    if not db_path.exists():
        if as_json:
            click.echo(json.dumps({"program_dir": str(program_dir), "cache": None}))
        else:
            status(f"No cache database at {db_path}", style="warning")
        return

    cache = MemoCache.open(db_path, config=load_config(program_dir))
    try:
        if not cache.enabled:
            raise click.ClickException(f"Cache unusable: {cache.disabled_reason}")
        counts = dict(cache.counts_by_callable())
        entries = cache.entries() if show_entries else []
    finally:
        cache.close()

    total = sum(counts.values())
    if as_json:
        payload: dict[str, object] = {
            "program_dir": str(program_dir),
            "cache": str(db_path),
            "total": total,
            "callables": counts,
        }
        if show_entries:
            payload["entries"] = [
                {
                    "callable": e.callable_name,
                    "code_hash": e.code_hash,
                    "arg_signature": e.arg_signature,
                    "size": e.payload_size,
                    "created_at": e.created_at,
                }
                for e in entries
            ]
        click.echo(json.dumps(payload))
        return

    console = get_console()
    status(f"Cache: {db_path}", style="none")
    status(f"{pluralize(total, 'entry', 'entries')} across {pluralize(len(counts), 'function')}", style="none")
    if not counts:
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Function")
    table.add_column("Entries", justify="right")
    for name, count in sorted(counts.items()):
        table.add_row(name, str(count))
    console.print(table)

    if show_entries:
        detail = Table(show_header=True, header_style="bold")
        detail.add_column("Function")
        detail.add_column("Code")
        detail.add_column("Arguments")
        detail.add_column("Bytes", justify="right")
        for e in entries:
            detail.add_row(e.callable_name, e.code_hash[:12], e.arg_signature[:12], str(e.payload_size))
        console.print(detail)
