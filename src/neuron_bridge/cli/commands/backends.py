"""Compiler backend commands."""

import json

import click
from rich.console import Console
from rich.table import Table

from neuron_bridge.compiler import get_backend, list_backends

console = Console()

_REQUIREMENTS = {
    "neuronx": "pip install 'neuron-bridge[neuronx]' (Neuron SDK host)",
    "torchscript": "None",
}


@click.group()
def backends():
    """Inspect compiler backends.

    \b
    Examples:
      # List backends and whether they can run here
      neuron-bridge backends list

      # Show capabilities of one backend
      neuron-bridge backends info neuronx
    """
    pass


@backends.command("list")
@click.pass_context
def list_command(ctx):
    """List compiler backends."""
    json_output = ctx.obj.get("json", False)

    backends_info = []
    for name in list_backends():
        backend = get_backend(name)
        caps = backend.get_capabilities()
        backends_info.append(
            {
                "name": name,
                "available": backend.is_available(),
                "auto_cast_types": caps.get("supported_auto_cast_types", []),
                "output_format": caps.get("output_format", "unknown"),
                "requires": _REQUIREMENTS.get(name, "-"),
            }
        )

    if json_output:
        click.echo(json.dumps({"backends": backends_info}, indent=2))
        return

    table = Table(title="Compiler Backends", show_header=True)
    table.add_column("Backend", style="cyan")
    table.add_column("Available", style="green")
    table.add_column("Auto-cast types", style="yellow")
    table.add_column("Output", style="white")
    table.add_column("Requirements", style="dim")

    for b in backends_info:
        table.add_row(
            b["name"],
            "[green]Yes[/green]" if b["available"] else "[red]No[/red]",
            ", ".join(b["auto_cast_types"]) or "-",
            b["output_format"],
            b["requires"],
        )

    console.print(table)


@backends.command("info")
@click.argument("name")
@click.pass_context
def info(ctx, name):
    """Show capabilities of a compiler backend."""
    json_output = ctx.obj.get("json", False)

    if name not in list_backends():
        raise click.ClickException(
            f"Backend '{name}' not found. Use 'neuron-bridge backends list' to see backends."
        )

    backend = get_backend(name)
    caps = backend.get_capabilities()
    caps["available"] = backend.is_available()

    if json_output:
        click.echo(json.dumps(caps, indent=2))
    else:
        console.print(f"\n[bold cyan]{name}[/bold cyan] Compiler Backend\n")
        for key, value in caps.items():
            console.print(f"  {key}: {value}")
