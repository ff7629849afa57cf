"""Configuration management commands."""

import json

import click
from pydantic import ValidationError
from rich.console import Console
from rich.syntax import Syntax

from neuron_bridge.settings import (
    DEFAULT_CONFIG_PATH,
    BridgeSettings,
    load_settings,
    save_settings,
    settings_to_yaml,
)

console = Console()


@click.group()
def config():
    """Manage configuration settings.

    \b
    Examples:
      # Initialize configuration
      neuron-bridge config init

      # Show effective configuration (file + environment)
      neuron-bridge config show
    """
    pass


@config.command()
@click.option("--backend", default="neuronx", show_default=True, help="Default compiler backend")
@click.pass_context
def init(ctx, backend):
    """Initialize the configuration file."""
    json_output = ctx.obj.get("json", False)

    if DEFAULT_CONFIG_PATH.exists():
        console.print("[yellow]⚠[/yellow] Configuration file already exists")
        if not click.confirm("Overwrite?"):
            ctx.exit(0)

    path = save_settings(BridgeSettings(default_backend=backend))

    if json_output:
        click.echo(json.dumps({"status": "success", "config_file": str(path)}))
    else:
        console.print(f"\n[green]✓[/green] Configuration initialized: {path}")
        console.print("\n[dim]Edit this file to customize your settings[/dim]")


@config.command()
@click.pass_context
def show(ctx):
    """Show the effective configuration."""
    json_output = ctx.obj.get("json", False)

    try:
        settings = load_settings()
    except ValidationError as e:
        console.print(f"[red]✗[/red] Invalid configuration:\n{e}")
        ctx.exit(1)

    if json_output:
        click.echo(json.dumps(settings.model_dump(mode="json")))
        return

    source = DEFAULT_CONFIG_PATH if DEFAULT_CONFIG_PATH.exists() else "defaults"
    console.print(f"\n[bold]Configuration:[/bold] {source}\n")
    console.print(Syntax(settings_to_yaml(settings), "yaml", theme="monokai", line_numbers=True))
