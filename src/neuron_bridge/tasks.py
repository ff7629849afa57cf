"""Task registry: which model class, inputs and static shapes each task uses."""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union

import torch
from transformers import (
    AutoConfig,
    AutoModel,
    AutoModelForCausalLM,
    AutoModelForImageClassification,
    AutoModelForMaskedLM,
    AutoModelForQuestionAnswering,
    AutoModelForSequenceClassification,
    AutoModelForTokenClassification,
    PretrainedConfig,
    PreTrainedModel,
)
from transformers.modeling_outputs import (
    BaseModelOutput,
    CausalLMOutput,
    ImageClassifierOutput,
    MaskedLMOutput,
    QuestionAnsweringModelOutput,
    SequenceClassifierOutput,
    TokenClassifierOutput,
)

from .configuration import NeuronConfig
from .exceptions import MissingInputShapeError, NeuronConfigError, UnsupportedTaskError

logger = logging.getLogger(__name__)

TEXT_INPUTS = ("input_ids", "attention_mask", "token_type_ids")
VISION_INPUTS = ("pixel_values",)


@dataclass(frozen=True)
class TaskSpec:
    """How a task is loaded, traced and unpacked."""

    name: str
    auto_class: type
    output_class: type
    candidate_inputs: tuple[str, ...]
    mandatory_shapes: tuple[str, ...]
    output_names: tuple[str, ...]
    # Outputs with a sequence dimension at axis 1 (sliced back after padding)
    sequence_outputs: frozenset[str] = field(default_factory=frozenset)

    @property
    def is_vision(self) -> bool:
        return "pixel_values" in self.candidate_inputs


_TASKS: dict[str, TaskSpec] = {
    spec.name: spec
    for spec in (
        TaskSpec(
            name="feature-extraction",
            auto_class=AutoModel,
            output_class=BaseModelOutput,
            candidate_inputs=TEXT_INPUTS,
            mandatory_shapes=("batch_size", "sequence_length"),
            output_names=("last_hidden_state",),
            sequence_outputs=frozenset({"last_hidden_state"}),
        ),
        TaskSpec(
            name="text-classification",
            auto_class=AutoModelForSequenceClassification,
            output_class=SequenceClassifierOutput,
            candidate_inputs=TEXT_INPUTS,
            mandatory_shapes=("batch_size", "sequence_length"),
            output_names=("logits",),
        ),
        TaskSpec(
            name="token-classification",
            auto_class=AutoModelForTokenClassification,
            output_class=TokenClassifierOutput,
            candidate_inputs=TEXT_INPUTS,
            mandatory_shapes=("batch_size", "sequence_length"),
            output_names=("logits",),
            sequence_outputs=frozenset({"logits"}),
        ),
        TaskSpec(
            name="question-answering",
            auto_class=AutoModelForQuestionAnswering,
            output_class=QuestionAnsweringModelOutput,
            candidate_inputs=TEXT_INPUTS,
            mandatory_shapes=("batch_size", "sequence_length"),
            output_names=("start_logits", "end_logits"),
            sequence_outputs=frozenset({"start_logits", "end_logits"}),
        ),
        TaskSpec(
            name="fill-mask",
            auto_class=AutoModelForMaskedLM,
            output_class=MaskedLMOutput,
            candidate_inputs=TEXT_INPUTS,
            mandatory_shapes=("batch_size", "sequence_length"),
            output_names=("logits",),
            sequence_outputs=frozenset({"logits"}),
        ),
        TaskSpec(
            name="text-generation",
            auto_class=AutoModelForCausalLM,
            output_class=CausalLMOutput,
            candidate_inputs=("input_ids", "attention_mask"),
            mandatory_shapes=("batch_size", "sequence_length"),
            output_names=("logits",),
            sequence_outputs=frozenset({"logits"}),
        ),
        TaskSpec(
            name="image-classification",
            auto_class=AutoModelForImageClassification,
            output_class=ImageClassifierOutput,
            candidate_inputs=VISION_INPUTS,
            mandatory_shapes=("batch_size", "num_channels", "height", "width"),
            output_names=("logits",),
        ),
    )
}

_SYNONYMS = {
    "default": "feature-extraction",
    "sequence-classification": "text-classification",
    "sentiment-analysis": "text-classification",
    "ner": "token-classification",
    "masked-lm": "fill-mask",
    "causal-lm": "text-generation",
}

# Checked in order, first match wins
_ARCHITECTURE_SUFFIXES = (
    ("ForSequenceClassification", "text-classification"),
    ("ForTokenClassification", "token-classification"),
    ("ForQuestionAnswering", "question-answering"),
    ("ForMaskedLM", "fill-mask"),
    ("ForCausalLM", "text-generation"),
    ("LMHeadModel", "text-generation"),
    ("ForImageClassification", "image-classification"),
)

_EXPORT_SHAPE_KEYS = ("batch_size", "sequence_length", "num_channels", "height", "width")


class TasksManager:
    """Lookup and helpers for the supported export tasks."""

    @staticmethod
    def normalize_task(task: str) -> str:
        task = task.strip().lower().replace("_", "-")
        return _SYNONYMS.get(task, task)

    @classmethod
    def get_task(cls, task: str) -> TaskSpec:
        """Get the TaskSpec of a task (synonyms accepted).

        Raises:
            UnsupportedTaskError: If the task is unknown
        """
        name = cls.normalize_task(task)
        spec = _TASKS.get(name)
        if spec is None:
            raise UnsupportedTaskError(
                f"Task '{task}' is not supported. Supported tasks: {cls.list_tasks()}"
            )
        return spec

    @staticmethod
    def list_tasks() -> list[str]:
        return sorted(_TASKS)

    @classmethod
    def infer_task_from_model(
        cls,
        model: Union[str, Path, PreTrainedModel, PretrainedConfig],
        **config_kwargs: Any,
    ) -> str:
        """Guess the task from the ``architectures`` recorded in a config.

        Bare backbones (no task head) map to feature-extraction.
        """
        if isinstance(model, PreTrainedModel):
            config = model.config
            architectures = [type(model).__name__]
        else:
            config = model if isinstance(model, PretrainedConfig) else AutoConfig.from_pretrained(
                model, **config_kwargs
            )
            architectures = list(getattr(config, "architectures", None) or [])

        for architecture in architectures:
            for suffix, task in _ARCHITECTURE_SUFFIXES:
                if architecture.endswith(suffix):
                    logger.debug("Inferred task %s from %s", task, architecture)
                    return task

        logger.info(
            "Could not infer a task from %s (%s), using feature-extraction",
            architectures or "no architectures",
            config.model_type,
        )
        return "feature-extraction"

    @classmethod
    def load_model(
        cls,
        task: str,
        model_id: Union[str, Path],
        revision: Optional[str] = None,
        token: Optional[str] = None,
        cache_dir: Optional[Union[str, Path]] = None,
        **kwargs: Any,
    ) -> PreTrainedModel:
        """Load the eager checkpoint for a task, ready for tracing."""
        spec = cls.get_task(task)
        kwargs.setdefault("attn_implementation", "eager")

        model = spec.auto_class.from_pretrained(
            model_id,
            revision=revision,
            token=token,
            cache_dir=cache_dir,
            **kwargs,
        )
        model.eval()
        return model

    @classmethod
    def get_input_names(cls, task: str, model: PreTrainedModel) -> list[str]:
        """Task inputs accepted by the model's forward signature."""
        spec = cls.get_task(task)
        parameters = inspect.signature(model.forward).parameters
        names = [name for name in spec.candidate_inputs if name in parameters]
        if not names:
            raise NeuronConfigError(
                f"{type(model).__name__}.forward accepts none of {list(spec.candidate_inputs)}"
            )
        return names

    @classmethod
    def resolve_input_shapes(
        cls,
        task: str,
        model_config: PretrainedConfig,
        **shapes: Optional[int],
    ) -> dict[str, int]:
        """Validate the static dimensions given for a task.

        Vision dimensions fall back to ``num_channels`` and ``image_size``
        of the model config; batch_size falls back to 1.

        Raises:
            MissingInputShapeError: If a mandatory dimension is missing
            NeuronConfigError: If a dimension is not a positive integer or
                the sequence is longer than the model supports
        """
        spec = cls.get_task(task)
        resolved = {key: value for key, value in shapes.items() if value is not None}
        resolved.setdefault("batch_size", 1)

        if spec.is_vision:
            image_size = getattr(model_config, "image_size", None)
            if isinstance(image_size, (list, tuple)):
                default_height, default_width = image_size[0], image_size[-1]
            else:
                default_height = default_width = image_size
            resolved.setdefault("num_channels", getattr(model_config, "num_channels", None))
            resolved.setdefault("height", default_height)
            resolved.setdefault("width", default_width)
            resolved = {key: value for key, value in resolved.items() if value is not None}

        missing = [name for name in spec.mandatory_shapes if name not in resolved]
        if missing:
            raise MissingInputShapeError(spec.name, missing)

        for name, value in resolved.items():
            if not isinstance(value, int) or isinstance(value, bool) or value < 1:
                raise NeuronConfigError(f"Static dimension '{name}' must be a positive integer, got {value!r}")

        max_positions = getattr(model_config, "max_position_embeddings", None) or getattr(
            model_config, "n_positions", None
        )
        sequence_length = resolved.get("sequence_length")
        if sequence_length is not None and max_positions and sequence_length > max_positions:
            raise NeuronConfigError(
                f"sequence_length={sequence_length} exceeds the model's "
                f"maximum of {max_positions} positions"
            )

        return {name: resolved[name] for name in _EXPORT_SHAPE_KEYS if name in resolved}

    @classmethod
    def create_neuron_config(
        cls,
        task: str,
        model: PreTrainedModel,
        backend: str,
        **kwargs: Any,
    ) -> NeuronConfig:
        """Build the export config for a loaded model.

        Args:
            task: Export task
            model: Eager model to export
            backend: Compiler backend name
            **kwargs: Static shapes plus compiler options (num_cores,
                auto_cast, auto_cast_type, dynamic_batch_size,
                checkpoint_id, checkpoint_revision)
        """
        spec = cls.get_task(task)
        shape_kwargs = {key: kwargs.pop(key, None) for key in _EXPORT_SHAPE_KEYS}
        shapes = cls.resolve_input_shapes(spec.name, model.config, **shape_kwargs)
        options = {key: value for key, value in kwargs.items() if value is not None}

        return NeuronConfig(
            task=spec.name,
            backend=backend,
            input_names=cls.get_input_names(spec.name, model),
            output_names=list(spec.output_names),
            **shapes,
            **options,
        )

    @staticmethod
    def generate_dummy_inputs(
        neuron_config: NeuronConfig,
        model_config: PretrainedConfig,
        seed: int = 0,
        batch_size: Optional[int] = None,
    ) -> tuple[torch.Tensor, ...]:
        """Example tensors matching the static input shapes, in input order.

        The attention mask leaves the last position masked so tracing
        records the masking path instead of an all-ones shortcut.
        ``batch_size`` replaces the leading dimension, for artifacts loaded
        on several cores.
        """
        generator = torch.Generator().manual_seed(seed)
        vocab_size = getattr(model_config, "vocab_size", None) or 2

        inputs = []
        for name, shape in neuron_config.input_shapes.items():
            if batch_size is not None:
                shape = (batch_size,) + shape[1:]
            if name == "input_ids":
                tensor = torch.randint(0, vocab_size, shape, generator=generator, dtype=torch.long)
            elif name == "attention_mask":
                tensor = torch.ones(shape, dtype=torch.long)
                if shape[-1] > 1:
                    tensor[:, -1] = 0
            elif name == "token_type_ids":
                tensor = torch.zeros(shape, dtype=torch.long)
            else:
                tensor = torch.randn(shape, generator=generator)
            inputs.append(tensor)

        return tuple(inputs)
