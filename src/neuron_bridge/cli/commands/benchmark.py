"""Benchmark a compiled model."""

import json

import click
from rich.console import Console
from rich.table import Table

from neuron_bridge.exceptions import NeuronBridgeError

console = Console()


@click.command()
@click.argument("model_dir", type=click.Path(exists=True, file_okay=False))
@click.option("--iterations", "-n", type=int, default=100, show_default=True)
@click.option("--warmup", type=int, default=10, show_default=True)
@click.pass_context
def benchmark(ctx, model_dir, iterations, warmup):
    """Measure latency and throughput of MODEL_DIR at its static shapes."""
    json_output = ctx.obj.get("json", False)

    try:
        from neuron_bridge.benchmark import benchmark_model
        from neuron_bridge.modeling import load_compiled_model

        model = load_compiled_model(model_dir)
        result = benchmark_model(model, iterations=iterations, warmup_iterations=warmup)
    except (NeuronBridgeError, ValueError) as e:
        if json_output:
            click.echo(json.dumps({"status": "error", "error": str(e)}))
        else:
            console.print(f"[bold red]Error:[/bold red] {e}")
        ctx.exit(1)

    if json_output:
        click.echo(json.dumps(result.model_dump(), indent=2))
        return

    table = Table(title=f"{result.task} on {result.backend}", show_header=True)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green", justify="right")
    table.add_row("Batch size", str(result.batch_size))
    table.add_row("Mean latency", f"{result.mean_latency_ms:.3f} ms")
    table.add_row("p50 latency", f"{result.p50_latency_ms:.3f} ms")
    table.add_row("p90 latency", f"{result.p90_latency_ms:.3f} ms")
    table.add_row("p99 latency", f"{result.p99_latency_ms:.3f} ms")
    table.add_row("Throughput", f"{result.throughput_samples_per_sec:.1f} samples/s")
    console.print(table)
