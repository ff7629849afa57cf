"""Neuron compiler backend for Inferentia2 / Trainium devices.

Delegates compilation to ``torch_neuronx.trace`` (which drives the
``neuronx-cc`` compiler) and loads artifacts onto NeuronCores.

Requires:
- torch-neuronx Python package
- Neuron runtime and driver on the host
"""

import subprocess
import tempfile
import time
from pathlib import Path
from typing import Any

import torch
import torch.nn as nn

from .base import CompiledArtifact, CompilerBackend
from ..configuration import AutoCastScope, NeuronConfig
from ..exceptions import BackendUnavailableError, CompilationError

# neuronx-cc spells the matmul scope "matmult"
_AUTO_CAST_FLAGS = {
    AutoCastScope.NONE: "none",
    AutoCastScope.MATMUL: "matmult",
    AutoCastScope.ALL: "all",
}


def build_compiler_args(neuron_config: NeuronConfig) -> list[str]:
    """Command-line arguments passed to neuronx-cc for an export."""
    args = ["--auto-cast", _AUTO_CAST_FLAGS[neuron_config.auto_cast]]
    if neuron_config.auto_cast_enabled:
        args += ["--auto-cast-type", neuron_config.auto_cast_type.value]
    return args


class NeuronxBackend(CompilerBackend):
    """Backend compiling TorchScript graphs for NeuronCores."""

    def __init__(self):
        super().__init__(name="neuronx")
        self._neuronx = None

    def is_available(self) -> bool:
        """Check if torch-neuronx is importable."""
        try:
            import torch_neuronx

            self._neuronx = torch_neuronx
            return True
        except ImportError:
            return False

    def _require(self):
        if self._neuronx is None and not self.is_available():
            raise BackendUnavailableError(
                "torch-neuronx not available. Install with: pip install 'neuron-bridge[neuronx]' "
                "--extra-index-url https://pip.repos.neuron.amazonaws.com"
            )
        return self._neuronx

    def get_capabilities(self) -> dict[str, Any]:
        caps = {
            "name": self.name,
            "supported_auto_cast_types": ["bf16", "fp16", "tf32", "fp8_e4m3"],
            "supports_multi_core": True,
            "output_format": "TorchScript with Neuron ops (.neuron)",
            "device": "neuron",
        }

        if self.is_available():
            caps["torch_neuronx_version"] = self._neuronx.__version__
            caps["compiler_version"] = self.version()

        return caps

    def version(self) -> str | None:
        try:
            import neuronxcc
        except ImportError:
            return None
        return neuronxcc.__version__

    def compile(
        self,
        module: nn.Module,
        example_inputs: tuple[torch.Tensor, ...],
        neuron_config: NeuronConfig,
        output_path: Path,
    ) -> CompiledArtifact:
        """Compile with neuronx-cc and save the traced module.

        Workflow:
        1. Trace and compile with torch_neuronx.trace
        2. Save the Neuron TorchScript module
        """
        torch_neuronx = self._require()

        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        compiler_args = build_compiler_args(neuron_config)

        start = time.perf_counter()
        with tempfile.TemporaryDirectory(prefix="neuronx-cc-") as workdir:
            try:
                traced = torch_neuronx.trace(
                    module,
                    example_inputs,
                    compiler_workdir=workdir,
                    compiler_args=compiler_args,
                )
            except (RuntimeError, subprocess.CalledProcessError) as e:
                raise CompilationError(f"neuronx-cc failed: {e}") from e
        compile_time = time.perf_counter() - start

        torch.jit.save(traced, str(output_path))

        return CompiledArtifact(
            path=output_path,
            backend=self.name,
            compiler_version=self.version(),
            size_bytes=output_path.stat().st_size,
            compile_time_sec=round(compile_time, 3),
            metadata={
                "compiler_args": compiler_args,
                "torch_neuronx_version": torch_neuronx.__version__,
            },
        )

    def runtime_batch_size(self, neuron_config: NeuronConfig) -> int:
        """Replicas each take ``batch_size`` rows of every call."""
        return neuron_config.batch_size * neuron_config.num_cores

    def load(self, path: Path, neuron_config: NeuronConfig) -> nn.Module:
        """Load an artifact, replicated on ``num_cores`` NeuronCores.

        The replicated module takes ``batch_size * num_cores`` rows and
        hands each core exactly ``batch_size`` of them. Batches of any
        other size are split and padded by the runtime, not DataParallel.
        """
        torch_neuronx = self._require()

        module = torch.jit.load(str(path))
        if neuron_config.num_cores > 1:
            module = torch_neuronx.DataParallel(
                module,
                device_ids=list(range(neuron_config.num_cores)),
                set_dynamic_batching=False,
            )
        return module
