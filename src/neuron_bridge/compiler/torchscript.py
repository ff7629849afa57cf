"""TorchScript compiler backend for the host CPU.

Produces artifacts with the same static-shape contract as the Neuron
backend, so models can be exported, saved, reloaded and served on
machines without a Neuron device.
"""

import contextlib
import time
from pathlib import Path
from typing import Any

import torch
import torch.nn as nn

from .base import CompiledArtifact, CompilerBackend
from ..configuration import NeuronConfig
from ..exceptions import CompilationError


class TorchScriptBackend(CompilerBackend):
    """Trace-based backend running on CPU.

    Auto-casting is emulated by tracing under ``torch.autocast`` so the
    casts are recorded in the graph. Only bf16 is supported as CPU
    autocast target.
    """

    def __init__(self):
        super().__init__(name="torchscript")

    def is_available(self) -> bool:
        """TorchScript ships with torch.

        Returns:
            True
        """
        return True

    def get_capabilities(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "supported_auto_cast_types": ["bf16"],
            "supports_multi_core": False,
            "output_format": "TorchScript (.neuron)",
            "device": "cpu",
            "torch_version": torch.__version__,
        }

    def version(self) -> str | None:
        return torch.__version__

    def compile(
        self,
        module: nn.Module,
        example_inputs: tuple[torch.Tensor, ...],
        neuron_config: NeuronConfig,
        output_path: Path,
    ) -> CompiledArtifact:
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        if neuron_config.auto_cast_enabled:
            autocast = torch.autocast("cpu", dtype=torch.bfloat16)
        else:
            autocast = contextlib.nullcontext()

        start = time.perf_counter()
        try:
            with torch.no_grad(), autocast:
                traced = torch.jit.trace(module, example_inputs, strict=False, check_trace=False)
        except (RuntimeError, TypeError) as e:
            raise CompilationError(f"TorchScript tracing failed: {e}") from e
        compile_time = time.perf_counter() - start

        torch.jit.save(traced, str(output_path))

        return CompiledArtifact(
            path=output_path,
            backend=self.name,
            compiler_version=self.version(),
            size_bytes=output_path.stat().st_size,
            compile_time_sec=round(compile_time, 3),
            metadata={"device": "cpu"},
        )

    def load(self, path: Path, neuron_config: NeuronConfig) -> nn.Module:
        module = torch.jit.load(str(path), map_location="cpu")
        module.eval()
        return module
