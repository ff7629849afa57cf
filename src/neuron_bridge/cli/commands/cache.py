"""Compile cache commands."""

import json

import click
from rich.console import Console
from rich.table import Table

from neuron_bridge.cache import CompiledModelCache
from neuron_bridge.settings import load_settings

console = Console()


def _open_cache(cache_dir):
    if cache_dir is None:
        cache_dir = load_settings().cache_dir
    return CompiledModelCache(cache_dir)


@click.group()
def cache():
    """Manage the compiled-artifact cache.

    \b
    Examples:
      neuron-bridge cache list
      neuron-bridge cache clear --backend torchscript
    """
    pass


@cache.command("list")
@click.option("--cache-dir", type=click.Path(file_okay=False), default=None, help="Cache directory")
@click.option("--backend", default=None, help="Only show this backend")
@click.pass_context
def list_command(ctx, cache_dir, backend):
    """List cached artifacts."""
    json_output = ctx.obj.get("json", False)
    compile_cache = _open_cache(cache_dir)
    entries = compile_cache.list(backend=backend)

    if json_output:
        click.echo(
            json.dumps(
                {
                    "cache_dir": str(compile_cache.cache_dir),
                    "total_size_bytes": compile_cache.total_size(),
                    "entries": [e.to_dict() for e in entries],
                },
                indent=2,
            )
        )
        return

    if not entries:
        console.print(f"[yellow]⚠[/yellow] Cache is empty ({compile_cache.cache_dir})")
        return

    table = Table(title=f"Compile cache ({compile_cache.cache_dir})", show_header=True)
    table.add_column("Key", style="cyan")
    table.add_column("Backend", style="yellow")
    table.add_column("Task", style="white")
    table.add_column("Checkpoint", style="white")
    table.add_column("Size", style="green", justify="right")
    table.add_column("Cached at", style="dim")

    for entry in entries:
        table.add_row(
            entry.key[:12],
            entry.backend,
            entry.task or "-",
            entry.checkpoint_id or "-",
            f"{entry.size_bytes / 1024 / 1024:.2f} MB",
            entry.cached_at,
        )

    console.print(table)
    console.print(f"\nTotal: {len(entries)} artifacts, {compile_cache.total_size() / 1024 / 1024:.2f} MB")


@cache.command()
@click.option("--cache-dir", type=click.Path(file_okay=False), default=None, help="Cache directory")
@click.option("--backend", default=None, help="Only clear this backend")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def clear(ctx, cache_dir, backend, yes):
    """Delete cached artifacts."""
    json_output = ctx.obj.get("json", False)
    compile_cache = _open_cache(cache_dir)

    if not yes and not click.confirm(f"Delete {len(compile_cache.list(backend=backend))} cached artifacts?"):
        ctx.exit(0)

    removed = compile_cache.clear(backend=backend)

    if json_output:
        click.echo(json.dumps({"status": "success", "removed": removed}))
    else:
        console.print(f"[green]✓[/green] Removed {removed} cached artifacts")
