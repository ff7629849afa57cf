"""Upload a compiled model directory to the Hugging Face Hub."""

import json

import click
from rich.console import Console

from neuron_bridge.configuration import is_compiled_checkpoint
from neuron_bridge.exceptions import NeuronBridgeError

console = Console()


@click.command()
@click.argument("model_dir", type=click.Path(exists=True, file_okay=False))
@click.argument("repository_id")
@click.option("--private", is_flag=True, default=None, help="Create the repository as private")
@click.option("--token", envvar="HF_TOKEN", default=None, help="Hub token (default: $HF_TOKEN)")
@click.option("--message", "-m", default="Upload compiled Neuron model", show_default=True)
@click.pass_context
def push(ctx, model_dir, repository_id, private, token, message):
    """Push MODEL_DIR to the Hub repository REPOSITORY_ID."""
    json_output = ctx.obj.get("json", False)

    if not is_compiled_checkpoint(model_dir):
        raise click.ClickException(
            f"{model_dir} is not a compiled model. Run 'neuron-bridge export' first."
        )

    from neuron_bridge.hub import push_directory

    try:
        url = push_directory(
            model_dir,
            repository_id,
            private=private,
            token=token,
            commit_message=message,
        )
    except NeuronBridgeError as e:
        if json_output:
            click.echo(json.dumps({"status": "error", "error": str(e)}))
        else:
            console.print(f"[bold red]Error:[/bold red] {e}")
        ctx.exit(1)

    if json_output:
        click.echo(json.dumps({"status": "success", "repository": repository_id, "commit_url": url}))
    else:
        console.print(f"[green]✓[/green] Pushed {model_dir} to {repository_id}")
        console.print(f"  {url}")
