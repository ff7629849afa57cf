"""Base class for compiler backends."""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import torch
import torch.nn as nn
from pydantic import BaseModel, Field

from ..configuration import NeuronConfig


class CompiledArtifact(BaseModel):
    """Result of a successful compilation."""

    path: Path
    backend: str
    compiler_version: str | None = None
    size_bytes: int
    compile_time_sec: float | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class CompilerBackend(ABC):
    """Abstract base class for compiler backends.

    A backend turns a traceable module plus example inputs of the static
    shapes into a serialized artifact, and loads such artifacts back into
    a callable taking the same positional tensors.
    """

    def __init__(self, name: str):
        self.name = name

    @abstractmethod
    def is_available(self) -> bool:
        """Check if the backend toolchain is installed.

        Returns:
            True if the backend can compile and load artifacts
        """
        pass

    @abstractmethod
    def get_capabilities(self) -> dict[str, Any]:
        """Return information about backend capabilities.

        Returns:
            Dictionary with supported auto-cast types, devices, etc.
        """
        pass

    @abstractmethod
    def version(self) -> str | None:
        """Version of the underlying compiler, None if unavailable."""
        pass

    @abstractmethod
    def compile(
        self,
        module: nn.Module,
        example_inputs: tuple[torch.Tensor, ...],
        neuron_config: NeuronConfig,
        output_path: Path,
    ) -> CompiledArtifact:
        """Compile a module for the static shapes of ``example_inputs``.

        Args:
            module: Module taking positional tensors, returning a tuple
            example_inputs: Tensors with the static input shapes
            neuron_config: Export parameters (auto-cast, cores, ...)
            output_path: File to write the artifact to

        Returns:
            CompiledArtifact describing the written file

        Raises:
            CompilationError: If the compiler rejects the module
        """
        pass

    @abstractmethod
    def load(self, path: Path, neuron_config: NeuronConfig) -> nn.Module:
        """Load a compiled artifact for inference."""
        pass

    def runtime_batch_size(self, neuron_config: NeuronConfig) -> int:
        """Rows a loaded artifact expects on every call."""
        return neuron_config.batch_size

    def supports(self, neuron_config: NeuronConfig) -> bool:
        """Check if the auto-cast settings are supported."""
        if not neuron_config.auto_cast_enabled:
            return True
        caps = self.get_capabilities()
        return neuron_config.auto_cast_type.value in caps.get("supported_auto_cast_types", [])

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name='{self.name}')"
