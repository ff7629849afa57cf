"""neuron-bridge CLI.

Command-line interface for exporting, inspecting and running compiled models.
"""

import logging

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel

from neuron_bridge import __version__

# Initialize rich console for beautiful output
console = Console()


def configure_logging(verbose: int) -> None:
    """Route package logs through rich; -v for INFO, -vv for DEBUG."""
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose >= 2:
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=False)],
        force=True,
    )


@click.group()
@click.version_option(version=__version__, prog_name="neuron-bridge")
@click.option(
    "-v",
    "--verbose",
    count=True,
    help="Increase verbosity (-v for info logs, -vv for debug logs)",
)
@click.option("--json", is_flag=True, help="Output in JSON format")
@click.option("--quiet", is_flag=True, help="Minimal output")
@click.pass_context
def cli(ctx, verbose, json, quiet):
    """neuron-bridge - Compile Hugging Face models for AWS Neuron devices.

    \b
    Examples:
      neuron-bridge export bert-base-uncased ./bert-neuron --task text-classification \\
        --batch-size 1 --sequence-length 128
      neuron-bridge info ./bert-neuron
      neuron-bridge generate ./gpt2-neuron "Hello, my name is"
      neuron-bridge cache list
    """
    # Store settings in context for subcommands
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["json"] = json
    ctx.obj["quiet"] = quiet

    configure_logging(verbose)

    # Show welcome banner (unless quiet)
    if not quiet and not json and ctx.invoked_subcommand:
        console.print(
            Panel.fit(
                "[bold cyan]neuron-bridge[/bold cyan]\n"
                f"Version {__version__}",
                border_style="cyan",
            )
        )


def register_commands() -> None:
    """Attach all command groups to the CLI."""
    from neuron_bridge.cli.commands import backends
    from neuron_bridge.cli.commands import benchmark
    from neuron_bridge.cli.commands import cache
    from neuron_bridge.cli.commands import config
    from neuron_bridge.cli.commands import export
    from neuron_bridge.cli.commands import generate
    from neuron_bridge.cli.commands import info
    from neuron_bridge.cli.commands import push

    cli.add_command(export.export)
    cli.add_command(info.info)
    cli.add_command(generate.generate)
    cli.add_command(benchmark.benchmark)
    cli.add_command(push.push)
    cli.add_command(backends.backends)
    cli.add_command(cache.cache)
    cli.add_command(config.config)


def main():
    """Entry point for the CLI."""
    register_commands()
    cli(obj={})


if __name__ == "__main__":
    main()
