"""
cachehold CLI
Command-line interface for inspecting disk caches.
"""

import asyncio
import json
import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from cachehold.cache.disk import DiskStore
from cachehold.config import settings

console = Console()


def get_store(ctx) -> DiskStore:
    """Create a store over the configured directory."""
    return DiskStore(
        dir=ctx.obj["dir"],
        single_file=ctx.obj["single_file"],
        flush_delay=0,
    )


def format_value(value) -> str:
    """Render a cached value for display."""
    if isinstance(value, str):
        return value
    if isinstance(value, bytes):
        return f"<{len(value):,} bytes>"
    return json.dumps(value, indent=2, default=str)


@click.group()
@click.option(
    "--dir",
    "-d",
    "cache_dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=lambda: settings.cache_dir,
    help="Cache directory",
)
@click.option("--single-file", is_flag=True, help="Cache uses the single-file layout")
@click.option("--log-level", default=lambda: settings.log_level, help="Logging level")
@click.pass_context
def cli(ctx, cache_dir: Path, single_file: bool, log_level: str):
    """cachehold CLI - inspect and maintain disk caches."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["dir"] = cache_dir
    ctx.obj["single_file"] = single_file


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def keys(ctx, as_json: bool):
    """List cached keys."""
    store = get_store(ctx)

    async def run():
        rows = []
        for key in await store.keys():
            entry = await store.get(key)
            if entry is not None:
                rows.append((key, entry))
        return rows

    rows = asyncio.run(run())

    if as_json:
        data = [{"key": key, "meta": entry.meta.to_dict()} for key, entry in rows]
        console.print(json.dumps(data, indent=2))
        return

    table = Table(title=f"Cache Entries ({len(rows)})")
    table.add_column("Key", style="cyan")
    table.add_column("Type")
    table.add_column("Last Modified", justify="right")

    for key, entry in rows:
        kind = "serialized" if not entry.deserialized else type(entry.value).__name__
        last_modified = entry.meta.last_modified
        table.add_row(key, kind, str(last_modified) if last_modified is not None else "-")

    console.print(table)


@cli.command()
@click.argument("key")
@click.pass_context
def get(ctx, key: str):
    """Show the value cached for KEY."""
    store = get_store(ctx)
    entry = asyncio.run(store.get(key))

    if entry is None:
        console.print(f"❌ [red]No entry for {key}[/red]")
        sys.exit(1)

    console.print(format_value(entry.value), markup=False)


@cli.command()
@click.argument("key")
@click.pass_context
def remove(ctx, key: str):
    """Remove the entry cached for KEY."""
    store = get_store(ctx)

    async def run():
        removed = await store.remove(key)
        await store.flush()
        return removed

    if asyncio.run(run()):
        console.print(f"✅ [green]Removed {key}[/green]")
    else:
        console.print(f"⚠️ [yellow]No entry for {key}[/yellow]")


@cli.command()
@click.confirmation_option(prompt="Remove all cache entries?")
@click.pass_context
def clear(ctx):
    """Remove all entries."""
    store = get_store(ctx)

    async def run():
        count = await store.clear()
        await store.flush()
        return count

    count = asyncio.run(run())
    console.print(f"✅ [green]Removed {count} entries[/green]")


@cli.command()
@click.pass_context
def stats(ctx):
    """Show store statistics."""
    store = get_store(ctx)
    health = asyncio.run(store.health_check())

    table = Table(title="Cache Store")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")

    table.add_row("Directory", health["dir"])
    table.add_row("Layout", health["layout"])
    table.add_row("Entries", f"{health['total_entries']:,}")

    console.print(table)


def main():
    """CLI entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
