"""Compiler backends turning traced models into static-shape artifacts."""

from ..exceptions import BackendUnavailableError
from .base import CompiledArtifact, CompilerBackend
from .neuronx import NeuronxBackend, build_compiler_args
from .torchscript import TorchScriptBackend

_BACKENDS: dict[str, CompilerBackend] = {}


def register_backend(backend: CompilerBackend) -> None:
    """Register (or replace) a backend under its name."""
    _BACKENDS[backend.name] = backend


def get_backend(name: str) -> CompilerBackend:
    """Look up a registered backend.

    Raises:
        BackendUnavailableError: If no backend has this name
    """
    backend = _BACKENDS.get(name)
    if backend is None:
        raise BackendUnavailableError(
            f"Unknown compiler backend '{name}'. Known backends: {list_backends()}"
        )
    return backend


def list_backends() -> list[str]:
    return sorted(_BACKENDS)


register_backend(NeuronxBackend())
register_backend(TorchScriptBackend())

__all__ = [
    "CompiledArtifact",
    "CompilerBackend",
    "NeuronxBackend",
    "TorchScriptBackend",
    "build_compiler_args",
    "get_backend",
    "list_backends",
    "register_backend",
]
