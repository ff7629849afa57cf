"""Text generation with a compiled causal LM."""

import json

import click
import torch
from rich.console import Console
from transformers import AutoTokenizer

from neuron_bridge.exceptions import NeuronBridgeError

console = Console()


@click.command()
@click.argument("model_dir", type=click.Path(exists=True, file_okay=False))
@click.argument("prompts", nargs=-1, required=True)
@click.option("--max-new-tokens", type=int, default=20, show_default=True)
@click.option("--do-sample", is_flag=True, help="Sample instead of greedy decoding")
@click.option("--top-k", type=int, default=None)
@click.option("--top-p", type=float, default=None)
@click.option("--temperature", type=float, default=None)
@click.option("--seed", type=int, default=None, help="Seed for sampling")
@click.pass_context
def generate(ctx, model_dir, prompts, max_new_tokens, do_sample, top_k, top_p, temperature, seed):
    """Generate continuations of PROMPTS with the model in MODEL_DIR.

    \b
    Examples:
      neuron-bridge generate ./gpt2-neuron "Hello, my name is" --max-new-tokens 32
      neuron-bridge generate ./gpt2-neuron "Once upon" "The answer is" --do-sample --top-p 0.9
    """
    json_output = ctx.obj.get("json", False)

    try:
        from neuron_bridge.modeling import NeuronModelForCausalLM

        model = NeuronModelForCausalLM.from_pretrained(model_dir)
        tokenizer = AutoTokenizer.from_pretrained(model_dir)
        if tokenizer.pad_token is None:
            tokenizer.pad_token = tokenizer.eos_token

        encoded = tokenizer(list(prompts), return_tensors="pt", padding=True)

        overrides = {"max_new_tokens": max_new_tokens, "do_sample": do_sample}
        for key, value in (("top_k", top_k), ("top_p", top_p), ("temperature", temperature)):
            if value is not None:
                overrides[key] = value

        generator = torch.Generator().manual_seed(seed) if seed is not None else None
        outputs = model.generate(
            encoded["input_ids"],
            attention_mask=encoded["attention_mask"],
            generator=generator,
            **overrides,
        )
    except (NeuronBridgeError, OSError) as e:
        if json_output:
            click.echo(json.dumps({"status": "error", "error": str(e)}))
        else:
            console.print(f"[bold red]Error:[/bold red] {e}")
        ctx.exit(1)

    texts = tokenizer.batch_decode(outputs, skip_special_tokens=True)

    if json_output:
        click.echo(json.dumps({"prompts": list(prompts), "generations": texts}, indent=2))
        return

    for prompt, text in zip(prompts, texts):
        console.print(f"\n[cyan]>[/cyan] {prompt}")
        console.print(text)
