"""neuron-bridge - Compile Hugging Face checkpoints for AWS Neuron devices."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("neuron-bridge")
except PackageNotFoundError:
    # Package not installed (running from source without pip install -e)
    __version__ = "0.0.0.dev"

from .configuration import AutoCastScope, AutoCastType, NeuronConfig
from .export import export_model
from .modeling import (
    NeuronModel,
    NeuronModelForCausalLM,
    NeuronModelForFeatureExtraction,
    NeuronModelForImageClassification,
    NeuronModelForMaskedLM,
    NeuronModelForQuestionAnswering,
    NeuronModelForSequenceClassification,
    NeuronModelForTokenClassification,
)
from .tasks import TasksManager

__all__ = [
    "AutoCastScope",
    "AutoCastType",
    "NeuronConfig",
    "NeuronModel",
    "NeuronModelForCausalLM",
    "NeuronModelForFeatureExtraction",
    "NeuronModelForImageClassification",
    "NeuronModelForMaskedLM",
    "NeuronModelForQuestionAnswering",
    "NeuronModelForSequenceClassification",
    "NeuronModelForTokenClassification",
    "TasksManager",
    "export_model",
    "__version__",
]
