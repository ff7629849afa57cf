"""Tests for compiler backends."""

import subprocess
import sys
from unittest.mock import MagicMock, patch

import pytest
import torch
import torch.nn as nn

from neuron_bridge.compiler import (
    CompilerBackend,
    NeuronxBackend,
    TorchScriptBackend,
    build_compiler_args,
    get_backend,
    list_backends,
    register_backend,
)
from neuron_bridge.configuration import NeuronConfig
from neuron_bridge.exceptions import BackendUnavailableError, CompilationError


class TwoOutputModel(nn.Module):
    """Small module returning a tuple, like an export wrapper."""

    def __init__(self):
        super().__init__()
        self.linear = nn.Linear(8, 4)

    def forward(self, x):
        y = self.linear(x)
        return y, torch.relu(y)


def make_config(**kwargs):
    defaults = dict(task="feature-extraction", batch_size=2, sequence_length=8)
    defaults.update(kwargs)
    return NeuronConfig(**defaults)


class TestRegistry:
    """Tests for backend registration and lookup."""

    def test_builtin_backends(self):
        assert list_backends() == ["neuronx", "torchscript"]
        assert isinstance(get_backend("torchscript"), TorchScriptBackend)

    def test_unknown_backend(self):
        with pytest.raises(BackendUnavailableError, match="Unknown compiler backend 'tensorrt'"):
            get_backend("tensorrt")

    def test_register_custom_backend(self):
        backend = MagicMock(spec=CompilerBackend)
        backend.name = "custom"
        register_backend(backend)
        try:
            assert get_backend("custom") is backend
        finally:
            from neuron_bridge.compiler import _BACKENDS

            _BACKENDS.pop("custom")


class TestCompilerArgs:
    """Tests for neuronx-cc argument construction."""

    def test_no_auto_cast(self):
        assert build_compiler_args(make_config()) == ["--auto-cast", "none"]

    def test_matmul_spelling(self):
        args = build_compiler_args(make_config(auto_cast="matmul", auto_cast_type="bf16"))
        assert args == ["--auto-cast", "matmult", "--auto-cast-type", "bf16"]

    def test_all_fp8(self):
        args = build_compiler_args(make_config(auto_cast="all", auto_cast_type="fp8_e4m3"))
        assert args == ["--auto-cast", "all", "--auto-cast-type", "fp8_e4m3"]


class TestTorchScriptBackend:
    """Tests for the CPU TorchScript backend."""

    def test_compile_and_load(self, tmp_path):
        backend = TorchScriptBackend()
        model = TwoOutputModel().eval()
        x = torch.randn(2, 8)

        artifact = backend.compile(model, (x,), make_config(), tmp_path / "out" / "model.neuron")

        assert artifact.path.exists()
        assert artifact.backend == "torchscript"
        assert artifact.size_bytes > 0
        assert artifact.compiler_version == torch.__version__

        loaded = backend.load(artifact.path, make_config())
        expected = model(x)
        actual = loaded(x)
        for e, a in zip(expected, actual):
            assert torch.allclose(e, a)

    def test_supports_only_bf16_auto_cast(self):
        backend = TorchScriptBackend()
        assert backend.supports(make_config())
        assert backend.supports(make_config(auto_cast="all", auto_cast_type="bf16"))
        assert not backend.supports(make_config(auto_cast="all", auto_cast_type="fp16"))
        # auto_cast_type is irrelevant when auto-casting is off
        assert backend.supports(make_config(auto_cast_type="fp16"))

    def test_trace_failure(self, tmp_path):
        class Broken(nn.Module):
            def forward(self, x):
                raise RuntimeError("unsupported op")

        with pytest.raises(CompilationError, match="unsupported op"):
            TorchScriptBackend().compile(Broken(), (torch.randn(1),), make_config(), tmp_path / "m.neuron")


class TestNeuronxBackend:
    """Tests for the Neuron backend with torch-neuronx mocked."""

    def test_unavailable(self):
        backend = NeuronxBackend()
        with patch.dict(sys.modules, {"torch_neuronx": None}):
            assert not backend.is_available()
            with pytest.raises(BackendUnavailableError, match="torch-neuronx"):
                backend.compile(TwoOutputModel(), (torch.randn(2, 8),), make_config(), "m.neuron")

    def test_capabilities_without_sdk(self):
        backend = NeuronxBackend()
        with patch.dict(sys.modules, {"torch_neuronx": None}):
            caps = backend.get_capabilities()
        assert "fp8_e4m3" in caps["supported_auto_cast_types"]
        assert "torch_neuronx_version" not in caps

    def test_compile_calls_trace(self, tmp_path):
        fake_neuronx = MagicMock(__version__="2.1.0")
        fake_neuronx.trace.side_effect = lambda module, inputs, **kwargs: torch.jit.trace(module, inputs)
        config = make_config(auto_cast="matmul")

        backend = NeuronxBackend()
        with patch.dict(sys.modules, {"torch_neuronx": fake_neuronx, "neuronxcc": MagicMock(__version__="2.14")}):
            artifact = backend.compile(TwoOutputModel(), (torch.randn(2, 8),), config, tmp_path / "model.neuron")

        kwargs = fake_neuronx.trace.call_args.kwargs
        assert kwargs["compiler_args"] == ["--auto-cast", "matmult", "--auto-cast-type", "bf16"]
        assert "compiler_workdir" in kwargs
        assert artifact.compiler_version == "2.14"
        assert artifact.metadata["torch_neuronx_version"] == "2.1.0"
        assert artifact.path.exists()

    def test_compiler_failure(self, tmp_path):
        fake_neuronx = MagicMock()
        fake_neuronx.trace.side_effect = subprocess.CalledProcessError(70, "neuronx-cc")

        backend = NeuronxBackend()
        with patch.dict(sys.modules, {"torch_neuronx": fake_neuronx}):
            with pytest.raises(CompilationError, match="neuronx-cc failed"):
                backend.compile(TwoOutputModel(), (torch.randn(2, 8),), make_config(), tmp_path / "m.neuron")

    def test_load_data_parallel(self, tmp_path):
        path = tmp_path / "model.neuron"
        torch.jit.save(torch.jit.trace(TwoOutputModel(), (torch.randn(2, 8),)), str(path))
        config = make_config(num_cores=2, dynamic_batch_size=True)

        fake_neuronx = MagicMock()
        backend = NeuronxBackend()
        with patch.dict(sys.modules, {"torch_neuronx": fake_neuronx}):
            loaded = backend.load(path, config)

        assert loaded is fake_neuronx.DataParallel.return_value
        call = fake_neuronx.DataParallel.call_args
        assert call.kwargs["device_ids"] == [0, 1]
        # the runtime sends batch_size rows per core, splitting larger batches itself
        assert call.kwargs["set_dynamic_batching"] is False
        assert backend.runtime_batch_size(config) == 4
        assert TorchScriptBackend().runtime_batch_size(config) == 2

    def test_load_single_core(self, tmp_path):
        path = tmp_path / "model.neuron"
        torch.jit.save(torch.jit.trace(TwoOutputModel(), (torch.randn(2, 8),)), str(path))

        fake_neuronx = MagicMock()
        with patch.dict(sys.modules, {"torch_neuronx": fake_neuronx}):
            loaded = NeuronxBackend().load(path, make_config())

        fake_neuronx.DataParallel.assert_not_called()
        assert isinstance(loaded, torch.jit.ScriptModule)
