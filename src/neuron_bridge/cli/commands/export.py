"""Export commands: compile a checkpoint for static input shapes."""

import json
import logging
from pathlib import Path

import click
from pydantic import ValidationError
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from transformers import AutoImageProcessor, AutoTokenizer

from neuron_bridge.exceptions import NeuronBridgeError

console = Console()
logger = logging.getLogger(__name__)


def _save_preprocessor(model_id: str, output_dir: Path, task: str) -> str | None:
    """Copy the tokenizer (or image processor) next to the compiled model."""
    loader = AutoImageProcessor if task == "image-classification" else AutoTokenizer
    try:
        preprocessor = loader.from_pretrained(model_id)
    except (OSError, ValueError) as e:
        logger.info("No %s saved for %s: %s", loader.__name__, model_id, e)
        return None
    preprocessor.save_pretrained(output_dir)
    return type(preprocessor).__name__


@click.command()
@click.argument("model_id")
@click.argument("output_dir", type=click.Path())
@click.option("--task", "-t", default=None, help="Export task (inferred from the checkpoint if omitted)")
@click.option("--batch-size", type=int, default=1, show_default=True, help="Static batch size")
@click.option("--sequence-length", type=int, default=None, help="Static sequence length (text tasks)")
@click.option("--num-channels", type=int, default=None, help="Image channels (vision tasks)")
@click.option("--height", type=int, default=None, help="Image height (vision tasks)")
@click.option("--width", type=int, default=None, help="Image width (vision tasks)")
@click.option("--num-cores", type=int, default=1, show_default=True, help="NeuronCores to spread inference over")
@click.option(
    "--auto-cast",
    type=click.Choice(["none", "matmul", "all"]),
    default="none",
    show_default=True,
    help="Operations the compiler may down-cast",
)
@click.option(
    "--auto-cast-type",
    type=click.Choice(["bf16", "fp16", "tf32", "fp8_e4m3"]),
    default="bf16",
    show_default=True,
    help="Target dtype of auto-casting",
)
@click.option("--dynamic-batch-size", is_flag=True, help="Split batches larger than --batch-size at runtime")
@click.option("--backend", "-b", default=None, help="Compiler backend (neuronx, torchscript)")
@click.option("--revision", default=None, help="Hub revision of the checkpoint")
@click.option("--no-cache", is_flag=True, help="Do not reuse or store compiled artifacts")
@click.pass_context
def export(
    ctx,
    model_id,
    output_dir,
    task,
    batch_size,
    sequence_length,
    num_channels,
    height,
    width,
    num_cores,
    auto_cast,
    auto_cast_type,
    dynamic_batch_size,
    backend,
    revision,
    no_cache,
):
    """Compile MODEL_ID (Hub id or local directory) into OUTPUT_DIR.

    \b
    Examples:
      # Text classification with a 128-token window
      neuron-bridge export distilbert-base-uncased-finetuned-sst-2-english ./sst2-neuron \\
        --batch-size 1 --sequence-length 128

      # Causal LM with bf16 matmuls on 2 cores
      neuron-bridge export gpt2 ./gpt2-neuron --task text-generation --batch-size 4 \\
        --sequence-length 256 --auto-cast matmul --auto-cast-type bf16 --num-cores 2
    """
    json_output = ctx.obj.get("json", False)
    quiet = ctx.obj.get("quiet", False)

    try:
        from neuron_bridge.modeling import get_model_class
        from neuron_bridge.tasks import TasksManager

        if task is None:
            task = TasksManager.infer_task_from_model(model_id, revision=revision)
        task = TasksManager.get_task(task).name
        model_class = get_model_class(task)

        if not quiet and not json_output:
            console.print(f"\n[cyan]Exporting model:[/cyan] {model_id}")
            console.print(f"  Task: {task}")
            console.print(f"  Batch size: {batch_size}")
            if sequence_length:
                console.print(f"  Sequence length: {sequence_length}")
            console.print(f"  Auto-cast: {auto_cast} ({auto_cast_type})")
            console.print(f"  Cores: {num_cores}")
            console.print()

        export_kwargs = dict(
            export=True,
            revision=revision,
            backend=backend,
            batch_size=batch_size,
            sequence_length=sequence_length,
            num_channels=num_channels,
            height=height,
            width=width,
            num_cores=num_cores,
            auto_cast=auto_cast,
            auto_cast_type=auto_cast_type,
            dynamic_batch_size=dynamic_batch_size,
        )
        if no_cache:
            export_kwargs["compile_cache"] = False

        if not quiet and not json_output:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                TimeElapsedColumn(),
                console=console,
            ) as progress:
                progress_task = progress.add_task("[cyan]Compiling...", total=None)
                model = model_class.from_pretrained(model_id, **export_kwargs)
                progress.update(progress_task, completed=1)
        else:
            model = model_class.from_pretrained(model_id, **export_kwargs)

        output_path = model.save_pretrained(output_dir)
        preprocessor = _save_preprocessor(model_id, output_path, task)
        result = model.export_result

        data = {
            "status": "success",
            "output_dir": str(output_path),
            "neuron_config": model.neuron_config.to_dict(),
            "artifact_size_bytes": result.artifact.size_bytes,
            "compile_time_sec": result.artifact.compile_time_sec,
            "cache_hit": result.cache_hit,
            "validation": result.validation.model_dump() if result.validation else None,
            "preprocessor": preprocessor,
        }

        if json_output:
            click.echo(json.dumps(data, indent=2, default=str))
        elif not quiet:
            console.print("[bold green]Export completed[/bold green]")
            console.print(f"  Output: {output_path}")
            console.print(f"  Size: {result.artifact.size_bytes / 1024 / 1024:.2f} MB")
            if result.cache_hit:
                console.print("  [dim]Artifact reused from the compile cache[/dim]")
            elif result.artifact.compile_time_sec is not None:
                console.print(f"  Compile time: {result.artifact.compile_time_sec:.1f}s")
            if result.validation:
                status = "[green]PASSED[/green]" if result.validation.passed else "[red]FAILED[/red]"
                console.print(f"  Validation: {status}")
                for name, diff in result.validation.max_output_diff.items():
                    console.print(f"    {name}: max diff {diff:.2e}")

    except (NeuronBridgeError, ValidationError) as e:
        if json_output:
            click.echo(json.dumps({"status": "error", "error": str(e)}))
        else:
            console.print(f"\n[bold red]Error:[/bold red] {e}")
        ctx.exit(1)
