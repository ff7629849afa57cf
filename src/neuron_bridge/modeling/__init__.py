"""Compiled model classes with a transformers-style API."""

from pathlib import Path
from typing import Any, Union

from ..configuration import load_neuron_config
from ..hub import resolve_model_dir
from ..tasks import TasksManager
from .base import NeuronModel
from .decoder import NeuronModelForCausalLM
from .encoders import (
    NeuronModelForFeatureExtraction,
    NeuronModelForImageClassification,
    NeuronModelForMaskedLM,
    NeuronModelForQuestionAnswering,
    NeuronModelForSequenceClassification,
    NeuronModelForTokenClassification,
)

# Task name -> model class, used by the CLI to load any compiled directory
MODEL_CLASSES = {
    cls.task: cls
    for cls in (
        NeuronModelForFeatureExtraction,
        NeuronModelForSequenceClassification,
        NeuronModelForTokenClassification,
        NeuronModelForQuestionAnswering,
        NeuronModelForMaskedLM,
        NeuronModelForImageClassification,
        NeuronModelForCausalLM,
    )
}


def get_model_class(task: str) -> type[NeuronModel]:
    return MODEL_CLASSES[TasksManager.get_task(task).name]


def load_compiled_model(model_id: Union[str, Path], **kwargs: Any) -> NeuronModel:
    """Load a compiled checkpoint with the model class of its recorded task."""
    model_dir = resolve_model_dir(
        model_id,
        revision=kwargs.pop("revision", None),
        token=kwargs.pop("token", None),
        cache_dir=kwargs.pop("cache_dir", None),
    )
    _, neuron_config = load_neuron_config(model_dir)
    return get_model_class(neuron_config.task).from_pretrained(model_dir, **kwargs)


__all__ = [
    "MODEL_CLASSES",
    "NeuronModel",
    "NeuronModelForCausalLM",
    "NeuronModelForFeatureExtraction",
    "NeuronModelForImageClassification",
    "NeuronModelForMaskedLM",
    "NeuronModelForQuestionAnswering",
    "NeuronModelForSequenceClassification",
    "NeuronModelForTokenClassification",
    "get_model_class",
    "load_compiled_model",
]
