"""Inspect a compiled model directory."""

import json
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from neuron_bridge.configuration import load_neuron_config
from neuron_bridge.exceptions import NeuronBridgeError
from neuron_bridge.export import ARTIFACT_NAME

console = Console()


@click.command()
@click.argument("model_dir", type=click.Path(exists=True, file_okay=False))
@click.pass_context
def info(ctx, model_dir):
    """Show the export parameters stored in MODEL_DIR/config.json."""
    json_output = ctx.obj.get("json", False)

    try:
        config, neuron_config = load_neuron_config(model_dir)
    except NeuronBridgeError as e:
        if json_output:
            click.echo(json.dumps({"status": "error", "error": str(e)}))
        else:
            console.print(f"[bold red]Error:[/bold red] {e}")
        ctx.exit(1)

    data = {
        "model_type": config.model_type,
        "architectures": getattr(config, "architectures", None),
        "neuron": neuron_config.to_dict(),
        "input_shapes": {k: list(v) for k, v in neuron_config.input_shapes.items()},
        "artifact": str(Path(model_dir) / ARTIFACT_NAME),
    }

    if json_output:
        click.echo(json.dumps(data, indent=2))
        return

    console.print(f"\n[bold cyan]{model_dir}[/bold cyan] ({config.model_type})\n")

    table = Table(title="Export parameters", show_header=True)
    table.add_column("Parameter", style="cyan")
    table.add_column("Value", style="white")
    for key, value in neuron_config.to_dict().items():
        if value is None or value == []:
            continue
        table.add_row(key, ", ".join(value) if isinstance(value, list) else str(value))
    console.print(table)

    console.print("\n[bold]Static input shapes:[/bold]")
    for name, shape in neuron_config.input_shapes.items():
        console.print(f"  {name}: {tuple(shape)}")
