"""Export-time parameters and their persistence in ``config.json``.

A compiled checkpoint directory holds the regular ``transformers``
``config.json`` with one extra ``"neuron"`` section. That section is the
serialized :class:`NeuronConfig` and is what makes the directory loadable
without recompiling.
"""

from __future__ import annotations

import json
import logging
from enum import Enum
from pathlib import Path
from typing import Any, Union

from pydantic import BaseModel, Field
from transformers import AutoConfig, PretrainedConfig

from .exceptions import NeuronConfigError

logger = logging.getLogger(__name__)

CONFIG_NAME = "config.json"
NEURON_CONFIG_KEY = "neuron"

# Dimension names of each supported model input, in tensor order
INPUT_DIMENSIONS: dict[str, tuple[str, ...]] = {
    "input_ids": ("batch_size", "sequence_length"),
    "attention_mask": ("batch_size", "sequence_length"),
    "token_type_ids": ("batch_size", "sequence_length"),
    "pixel_values": ("batch_size", "num_channels", "height", "width"),
}


class AutoCastScope(str, Enum):
    """Operations the compiler is allowed to down-cast."""

    NONE = "none"
    MATMUL = "matmul"
    ALL = "all"


class AutoCastType(str, Enum):
    """Target dtype for auto-casting."""

    BF16 = "bf16"
    FP16 = "fp16"
    TF32 = "tf32"
    FP8_E4M3 = "fp8_e4m3"


class NeuronConfig(BaseModel):
    """Static shapes and compiler options a model was exported with."""

    task: str
    batch_size: int = Field(default=1, ge=1)
    sequence_length: int | None = Field(default=None, ge=1)
    num_channels: int | None = Field(default=None, ge=1)
    height: int | None = Field(default=None, ge=1)
    width: int | None = Field(default=None, ge=1)

    num_cores: int = Field(default=1, ge=1)
    auto_cast: AutoCastScope = AutoCastScope.NONE
    auto_cast_type: AutoCastType = AutoCastType.BF16
    dynamic_batch_size: bool = False

    backend: str = "neuronx"
    compiler_version: str | None = None

    input_names: list[str] = Field(default_factory=list)
    output_names: list[str] = Field(default_factory=list)

    checkpoint_id: str | None = None
    checkpoint_revision: str | None = None

    @property
    def input_shapes(self) -> dict[str, tuple[int, ...]]:
        """Static shape of every model input, keyed by input name.

        Raises:
            NeuronConfigError: If an input is unknown or one of its
                dimensions was never set
        """
        shapes = {}
        for name in self.input_names:
            dims = INPUT_DIMENSIONS.get(name)
            if dims is None:
                raise NeuronConfigError(f"No static dimensions known for input '{name}'")

            shape = []
            for dim in dims:
                value = getattr(self, dim)
                if value is None:
                    raise NeuronConfigError(
                        f"Input '{name}' needs '{dim}' but it was not set at export"
                    )
                shape.append(value)
            shapes[name] = tuple(shape)
        return shapes

    @property
    def auto_cast_enabled(self) -> bool:
        return self.auto_cast != AutoCastScope.NONE

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "NeuronConfig":
        return cls.model_validate(data)

    def export_signature(self) -> dict[str, Any]:
        """Fields that change the compiled artifact.

        Provenance fields are left out so the same export hits the same
        cache entry regardless of where the checkpoint came from.
        """
        return self.model_dump(
            mode="json",
            exclude={"compiler_version", "checkpoint_id", "checkpoint_revision"},
        )


def save_neuron_config(
    config: PretrainedConfig,
    neuron_config: NeuronConfig,
    directory: Union[str, Path],
) -> Path:
    """Write ``config.json`` with the export parameters under ``"neuron"``.

    Args:
        config: Model configuration of the exported checkpoint
        neuron_config: Export parameters
        directory: Target directory (created if needed)

    Returns:
        Path to the written config.json
    """
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)

    setattr(config, NEURON_CONFIG_KEY, neuron_config.to_dict())
    config.save_pretrained(directory)

    return directory / CONFIG_NAME


def load_neuron_config(directory: Union[str, Path]) -> tuple[PretrainedConfig, NeuronConfig]:
    """Restore the model and export configuration of a compiled checkpoint.

    Raises:
        NeuronConfigError: If config.json is missing or has no "neuron"
            section (the checkpoint was never exported)
    """
    directory = Path(directory)
    config_path = directory / CONFIG_NAME

    if not config_path.exists():
        raise NeuronConfigError(f"No {CONFIG_NAME} found in {directory}")

    with open(config_path) as f:
        data = json.load(f)

    neuron_data = data.get(NEURON_CONFIG_KEY)
    if not neuron_data:
        raise NeuronConfigError(
            f"{config_path} has no '{NEURON_CONFIG_KEY}' section. "
            "This is not a compiled checkpoint; load it with export=True."
        )

    neuron_config = NeuronConfig.from_dict(neuron_data)
    config = AutoConfig.from_pretrained(directory)
    logger.debug("Loaded %s export config from %s", neuron_config.task, directory)

    return config, neuron_config


def is_compiled_checkpoint(directory: Union[str, Path]) -> bool:
    config_path = Path(directory) / CONFIG_NAME
    if not config_path.exists():
        return False
    with open(config_path) as f:
        return bool(json.load(f).get(NEURON_CONFIG_KEY))
