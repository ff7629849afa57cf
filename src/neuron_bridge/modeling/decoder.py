"""Compiled causal language models and static-shape text generation."""

from __future__ import annotations

import copy
import logging
from typing import Any, Optional

import torch
from transformers import GenerationConfig
from transformers.generation import (
    LogitsProcessorList,
    TemperatureLogitsWarper,
    TopKLogitsWarper,
    TopPLogitsWarper,
)

from ..exceptions import InputShapeError
from .base import NeuronModel

logger = logging.getLogger(__name__)


class NeuronModelForCausalLM(NeuronModel):
    """Decoder compiled for a fixed ``batch_size`` x ``sequence_length`` window.

    The graph has no KV cache: every decoding step re-runs the whole padded
    window and reads the logits at each row's last real token. Prompts and
    generated tokens together can never exceed ``sequence_length``.
    """

    task = "text-generation"
    can_generate = True

    def _build_warpers(self, generation_config: GenerationConfig) -> LogitsProcessorList:
        warpers = LogitsProcessorList()
        if not generation_config.do_sample:
            return warpers
        if generation_config.temperature is not None and generation_config.temperature != 1.0:
            warpers.append(TemperatureLogitsWarper(generation_config.temperature))
        if generation_config.top_k is not None and generation_config.top_k != 0:
            warpers.append(TopKLogitsWarper(generation_config.top_k))
        if generation_config.top_p is not None and generation_config.top_p < 1.0:
            warpers.append(TopPLogitsWarper(generation_config.top_p))
        return warpers

    def _next_token_logits(
        self, tokens: torch.Tensor, mask: torch.Tensor, lengths: torch.Tensor
    ) -> torch.Tensor:
        inputs = {"input_ids": tokens, "attention_mask": mask}
        with torch.no_grad():
            outputs = self.model(*(inputs[name] for name in self.neuron_config.input_names))
        logits = outputs[0].cpu()
        rows = torch.arange(lengths.shape[0])
        return logits[rows, lengths - 1].float()

    def generate(
        self,
        input_ids: torch.Tensor,
        attention_mask: Optional[torch.Tensor] = None,
        generation_config: Optional[GenerationConfig] = None,
        generator: Optional[torch.Generator] = None,
        **kwargs: Any,
    ) -> torch.LongTensor:
        """Generate continuations of a batch of prompts.

        Args:
            input_ids: Prompt tokens, left- or right-padded, shape (batch, length)
            attention_mask: 1 for prompt tokens, 0 for padding
            generation_config: Base settings (default: the model's)
            generator: Random generator for sampling
            **kwargs: Overrides such as max_new_tokens, do_sample, top_k,
                top_p, temperature, eos_token_id, pad_token_id

        Returns:
            The input tokens followed by the generated ones, shape
            (batch, length + new_tokens); rows that stopped early are filled
            with the pad token

        Raises:
            InputShapeError: If a prompt is longer than sequence_length or the
                batch exceeds batch_size without dynamic batching
        """
        generation_config = copy.deepcopy(generation_config or self.generation_config or GenerationConfig())
        unused = generation_config.update(**kwargs)
        if unused:
            raise ValueError(f"Unknown generation arguments: {sorted(unused)}")

        input_ids = torch.as_tensor(input_ids, dtype=torch.long)
        if input_ids.dim() == 1:
            input_ids = input_ids.unsqueeze(0)
        if attention_mask is None:
            attention_mask = torch.ones_like(input_ids)
        else:
            attention_mask = torch.as_tensor(attention_mask, dtype=torch.long).reshape(input_ids.shape)

        batch = input_ids.shape[0]
        if batch > self.batch_size:
            if not self.neuron_config.dynamic_batch_size:
                raise InputShapeError(
                    f"Batch of {batch} exceeds the {self.batch_size} rows the compiled model takes "
                    f"(batch_size={self.neuron_config.batch_size}, num_cores={self.neuron_config.num_cores})"
                )
            return self._generate_chunked(input_ids, attention_mask, generation_config, generator)

        return self._generate_batch(input_ids, attention_mask, generation_config, generator)

    def _fill_token_id(self, generation_config: GenerationConfig) -> int:
        if generation_config.pad_token_id is not None:
            return int(generation_config.pad_token_id)
        eos = generation_config.eos_token_id
        if isinstance(eos, (list, tuple)):
            eos = eos[0] if eos else None
        return int(eos) if eos is not None else 0

    def _generate_chunked(
        self,
        input_ids: torch.Tensor,
        attention_mask: torch.Tensor,
        generation_config: GenerationConfig,
        generator: Optional[torch.Generator],
    ) -> torch.LongTensor:
        results = [
            self._generate_batch(
                input_ids[start : start + self.batch_size],
                attention_mask[start : start + self.batch_size],
                generation_config,
                generator,
            )
            for start in range(0, input_ids.shape[0], self.batch_size)
        ]

        width = max(result.shape[1] for result in results)
        fill = self._fill_token_id(generation_config)
        results = [
            torch.nn.functional.pad(result, (0, width - result.shape[1]), value=fill)
            for result in results
        ]
        return torch.cat(results, dim=0)

    def _generate_batch(
        self,
        input_ids: torch.Tensor,
        attention_mask: torch.Tensor,
        generation_config: GenerationConfig,
        generator: Optional[torch.Generator],
    ) -> torch.LongTensor:
        batch, prompt_width = input_ids.shape
        window = self.neuron_config.sequence_length

        prompt_lengths = attention_mask.sum(dim=1)
        if (prompt_lengths == 0).any():
            raise InputShapeError("Every prompt needs at least one unmasked token")
        if (prompt_lengths > window).any():
            raise InputShapeError(
                f"Prompt of {int(prompt_lengths.max())} tokens exceeds the compiled "
                f"sequence_length={window}"
            )

        if generation_config.max_new_tokens is not None:
            max_new_tokens = generation_config.max_new_tokens
        else:
            max_new_tokens = generation_config.max_length - prompt_width
        if max_new_tokens <= 0:
            logger.warning("Nothing to generate: max_new_tokens=%d", max_new_tokens)
            return input_ids

        # Compact every prompt to the left of a right-padded static window
        tokens = torch.full((self.batch_size, window), self._pad_value("input_ids"), dtype=torch.long)
        mask = torch.zeros((self.batch_size, window), dtype=torch.long)
        mask[batch:, 0] = 1
        for row in range(batch):
            prompt = input_ids[row][attention_mask[row].bool()]
            tokens[row, : prompt.shape[0]] = prompt
            mask[row, : prompt.shape[0]] = 1

        eos_ids = generation_config.eos_token_id
        if eos_ids is None:
            eos_ids = []
        elif isinstance(eos_ids, int):
            eos_ids = [eos_ids]
        eos_ids = torch.tensor(list(eos_ids), dtype=torch.long)
        fill = self._fill_token_id(generation_config)
        warpers = self._build_warpers(generation_config)

        lengths = prompt_lengths.clone()
        limits = torch.clamp(prompt_lengths + max_new_tokens, max=window)
        done = lengths >= limits
        if done.all():
            logger.warning("Prompts already fill the compiled sequence_length=%d", window)

        generated = []
        while not done.all():
            scores = self._next_token_logits(tokens, mask, lengths)

            if generation_config.do_sample:
                scores = warpers(tokens[:batch], scores)
                probs = torch.softmax(scores, dim=-1)
                next_tokens = torch.multinomial(probs, num_samples=1, generator=generator).squeeze(1)
            else:
                next_tokens = torch.argmax(scores, dim=-1)

            next_tokens = torch.where(done, torch.full_like(next_tokens, fill), next_tokens)
            generated.append(next_tokens)

            active = torch.nonzero(~done).squeeze(1)
            positions = lengths[active]
            tokens[active, positions] = next_tokens[active]
            mask[active, positions] = 1
            lengths[active] += 1

            stopped = torch.isin(next_tokens, eos_ids) & ~done
            done = done | stopped | (lengths >= limits)

        if not generated:
            return input_ids

        logger.debug("Generated %d tokens for a batch of %d", len(generated), batch)
        return torch.cat([input_ids, torch.stack(generated, dim=1)], dim=1)
