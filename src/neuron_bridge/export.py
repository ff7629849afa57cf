"""Export orchestration: trace, compile, cache and validate a model."""

from __future__ import annotations

import inspect
import logging
import shutil
from pathlib import Path
from typing import Optional, Union

import torch
import torch.nn as nn
from pydantic import BaseModel, Field
from transformers import PreTrainedModel

from .cache import CompiledModelCache, compute_cache_key
from .compiler import CompiledArtifact, CompilerBackend, get_backend
from .configuration import NeuronConfig
from .exceptions import BackendUnavailableError, NeuronConfigError
from .tasks import TasksManager

logger = logging.getLogger(__name__)

ARTIFACT_NAME = "model.neuron"

DEFAULT_ATOL = 1e-3
DEFAULT_AUTO_CAST_ATOL = 5e-2


class ValidationResult(BaseModel):
    """Comparison of compiled outputs against the eager model."""

    passed: bool
    atol: float
    max_output_diff: dict[str, float] = Field(default_factory=dict)
    errors: list[str] = Field(default_factory=list)


class ExportResult(BaseModel):
    """Complete result of an export."""

    artifact: CompiledArtifact
    neuron_config: NeuronConfig
    validation: ValidationResult | None = None
    cache_key: str | None = None
    cache_hit: bool = False


class ExportWrapper(nn.Module):
    """Positional-tensor view of a ``transformers`` model.

    Tracing needs plain tensors in and out: inputs are taken in
    ``input_names`` order and outputs returned as a float32 tuple in
    ``output_names`` order.
    """

    def __init__(self, model: PreTrainedModel, input_names: list[str], output_names: list[str]):
        super().__init__()
        self.model = model
        self.input_names = list(input_names)
        self.output_names = list(output_names)
        self._disable_cache = "use_cache" in inspect.signature(model.forward).parameters

    def forward(self, *inputs: torch.Tensor) -> tuple[torch.Tensor, ...]:
        kwargs = dict(zip(self.input_names, inputs))
        if self._disable_cache:
            kwargs["use_cache"] = False
        outputs = self.model(**kwargs, return_dict=True)
        return tuple(outputs[name].float() for name in self.output_names)


def resolve_backend(backend: Union[str, CompilerBackend, None], neuron_config: NeuronConfig) -> CompilerBackend:
    """Get a usable backend for an export.

    Raises:
        BackendUnavailableError: If the backend is unknown or not installed
        NeuronConfigError: If the backend rejects the auto-cast settings
    """
    if not isinstance(backend, CompilerBackend):
        backend = get_backend(backend or neuron_config.backend)

    if not backend.is_available():
        raise BackendUnavailableError(f"Compiler backend '{backend.name}' is not available on this host")

    if not backend.supports(neuron_config):
        supported = backend.get_capabilities().get("supported_auto_cast_types", [])
        raise NeuronConfigError(
            f"Backend '{backend.name}' does not support auto_cast_type="
            f"{neuron_config.auto_cast_type.value}. Supported: {supported}"
        )

    return backend


def validate_model_outputs(
    reference: nn.Module,
    compiled: nn.Module,
    example_inputs: tuple[torch.Tensor, ...],
    output_names: list[str],
    atol: float,
) -> ValidationResult:
    """Run both modules on the same inputs and compare every output.

    Args:
        reference: Eager module (an ExportWrapper)
        compiled: Loaded artifact
        example_inputs: Inputs of the static shapes
        output_names: Names matching the output tuple positions
        atol: Maximum absolute difference allowed

    Returns:
        ValidationResult with per-output maximum differences
    """
    errors = []
    max_diffs = {}

    with torch.no_grad():
        expected = reference(*example_inputs)
        actual = compiled(*example_inputs)

    if len(actual) != len(expected):
        errors.append(f"Compiled model returned {len(actual)} outputs, expected {len(expected)}")
    else:
        for name, ref, out in zip(output_names, expected, actual):
            if ref.shape != out.shape:
                errors.append(f"Output '{name}' has shape {tuple(out.shape)}, expected {tuple(ref.shape)}")
                continue
            diff = float((ref.float() - out.float().cpu()).abs().max())
            max_diffs[name] = diff
            if diff > atol:
                errors.append(f"Output '{name}' differs by {diff:.3e} (atol={atol:.1e})")

    return ValidationResult(passed=not errors, atol=atol, max_output_diff=max_diffs, errors=errors)


def export_model(
    model: PreTrainedModel,
    neuron_config: NeuronConfig,
    output_dir: Union[str, Path],
    backend: Union[str, CompilerBackend, None] = None,
    cache: Optional[CompiledModelCache] = None,
    validate: bool = True,
    atol: Optional[float] = None,
) -> ExportResult:
    """Compile a model for its static input shapes.

    Workflow:
    1. Resolve the compiler backend
    2. Wrap the model and build example inputs
    3. Reuse a cached artifact or compile a new one
    4. Validate compiled outputs against the eager model

    Args:
        model: Eager model in eval mode
        neuron_config: Export parameters (from TasksManager.create_neuron_config)
        output_dir: Directory receiving model.neuron
        backend: Backend name or instance (default: neuron_config.backend)
        cache: Optional compiled-artifact cache
        validate: Compare compiled and eager outputs
        atol: Validation tolerance (default depends on auto-casting)

    Returns:
        ExportResult with artifact, final config and validation

    Raises:
        BackendUnavailableError: If the backend cannot be used
        CompilationError: If compilation fails
    """
    backend = resolve_backend(backend, neuron_config)
    neuron_config = neuron_config.model_copy(
        update={"backend": backend.name, "compiler_version": backend.version()}
    )

    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    artifact_path = output_dir / ARTIFACT_NAME

    model.eval()
    wrapper = ExportWrapper(model, neuron_config.input_names, neuron_config.output_names)
    example_inputs = TasksManager.generate_dummy_inputs(neuron_config, model.config)
    logger.info(
        "Exporting %s for %s with input shapes %s",
        type(model).__name__,
        backend.name,
        neuron_config.input_shapes,
    )

    cache_key = None
    cached_path = None
    if cache is not None:
        cache_key = compute_cache_key(model, neuron_config, backend.name, backend.version())
        cached_path = cache.get(cache_key)

    if cached_path is not None:
        logger.info("Reusing cached artifact %s", cache_key[:12])
        shutil.copyfile(cached_path, artifact_path)
        artifact = CompiledArtifact(
            path=artifact_path,
            backend=backend.name,
            compiler_version=neuron_config.compiler_version,
            size_bytes=artifact_path.stat().st_size,
            metadata={"cache_key": cache_key},
        )
    else:
        artifact = backend.compile(wrapper, example_inputs, neuron_config, artifact_path)
        logger.info("Compiled %s in %.1fs", artifact.path, artifact.compile_time_sec or 0.0)
        if cache is not None:
            cache.put(cache_key, artifact.path, backend.name, neuron_config, artifact.metadata)

    validation = None
    if validate:
        if atol is None:
            atol = DEFAULT_AUTO_CAST_ATOL if neuron_config.auto_cast_enabled else DEFAULT_ATOL
        compiled = backend.load(artifact.path, neuron_config)
        validation_inputs = example_inputs
        runtime_batch = backend.runtime_batch_size(neuron_config)
        if runtime_batch != neuron_config.batch_size:
            validation_inputs = TasksManager.generate_dummy_inputs(
                neuron_config, model.config, batch_size=runtime_batch
            )
        validation = validate_model_outputs(
            wrapper, compiled, validation_inputs, neuron_config.output_names, atol
        )
        if validation.passed:
            logger.info("Validation passed (max diff %s)", validation.max_output_diff)
        else:
            for error in validation.errors:
                logger.warning("Validation: %s", error)

    return ExportResult(
        artifact=artifact,
        neuron_config=neuron_config,
        validation=validation,
        cache_key=cache_key,
        cache_hit=cached_path is not None,
    )
