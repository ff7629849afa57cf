"""Base class for compiled models.

A ``NeuronModel`` wraps a compiled artifact together with the model and
export configuration it was built from. Compiled graphs only accept the
static shapes they were exported with, so the runtime pads smaller inputs
up to those shapes and slices the outputs back to the caller's shapes.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from pathlib import Path
from typing import Any, ClassVar, Optional, Union

import torch
import torch.nn as nn
from transformers import GenerationConfig, PretrainedConfig
from transformers.utils import ModelOutput

from ..cache import CompiledModelCache
from ..compiler import CompilerBackend, get_backend
from ..configuration import NeuronConfig, load_neuron_config, save_neuron_config
from ..exceptions import (
    ArtifactNotFoundError,
    BackendUnavailableError,
    InputShapeError,
    NeuronConfigError,
)
from ..export import ARTIFACT_NAME, ExportResult, export_model
from ..hub import push_directory, resolve_model_dir
from ..settings import load_settings
from ..tasks import TaskSpec, TasksManager

logger = logging.getLogger(__name__)

EXPORT_KWARGS = frozenset(
    {
        "batch_size",
        "sequence_length",
        "num_channels",
        "height",
        "width",
        "num_cores",
        "auto_cast",
        "auto_cast_type",
        "dynamic_batch_size",
    }
)


class NeuronModel:
    """Compiled model with a ``transformers``-style loading API.

    Subclasses pin ``task``; the base class accepts any supported task and
    infers it from the checkpoint when exporting.

    Examples:
        Export a Hub checkpoint and save it::

            model = NeuronModelForSequenceClassification.from_pretrained(
                "distilbert-base-uncased-finetuned-sst-2-english",
                export=True,
                batch_size=1,
                sequence_length=128,
            )
            model.save_pretrained("distilbert-neuron")

        Reload it later without recompiling::

            model = NeuronModelForSequenceClassification.from_pretrained("distilbert-neuron")
    """

    task: ClassVar[Optional[str]] = None
    can_generate: ClassVar[bool] = False

    def __init__(
        self,
        model: nn.Module,
        config: PretrainedConfig,
        neuron_config: NeuronConfig,
        model_path: Optional[Path] = None,
        generation_config: Optional[GenerationConfig] = None,
        runtime_batch_size: Optional[int] = None,
    ):
        spec = TasksManager.get_task(neuron_config.task)
        if self.task is not None and TasksManager.normalize_task(self.task) != spec.name:
            raise NeuronConfigError(
                f"{type(self).__name__} serves '{self.task}' but the model was "
                f"exported for '{spec.name}'"
            )

        self.model = model
        self.config = config
        self.neuron_config = neuron_config
        self.model_path = Path(model_path) if model_path is not None else None
        self.generation_config = generation_config
        self.task_spec: TaskSpec = spec
        self.export_result: Optional[ExportResult] = None
        self._tmp_dir: Optional[tempfile.TemporaryDirectory] = None
        # Rows per call of self.model: batch_size times the replicas it runs on
        self._runtime_batch_size = runtime_batch_size or neuron_config.batch_size

    # ------------------------------------------------------------------
    # Loading and saving
    # ------------------------------------------------------------------

    @classmethod
    def from_pretrained(
        cls,
        model_id: Union[str, Path],
        export: bool = False,
        revision: Optional[str] = None,
        token: Optional[str] = None,
        cache_dir: Optional[Union[str, Path]] = None,
        backend: Union[str, CompilerBackend, None] = None,
        compile_cache: Union[CompiledModelCache, bool, None] = None,
        task: Optional[str] = None,
        **kwargs: Any,
    ) -> "NeuronModel":
        """Load a compiled model, or compile a regular checkpoint.

        Args:
            model_id: Local directory or Hub repository id
            export: Compile a regular ``transformers`` checkpoint
            revision: Hub revision
            token: Hub token
            cache_dir: Hub download cache
            backend: Compiler backend (default: settings, or the backend
                recorded in config.json when loading)
            compile_cache: Compiled-artifact cache; None uses the settings,
                False disables caching
            task: Task for the base class (ignored by task subclasses)
            **kwargs: Export parameters: batch_size, sequence_length,
                num_channels, height, width, num_cores, auto_cast,
                auto_cast_type, dynamic_batch_size

        Raises:
            TypeError: If an unknown keyword argument is given
            NeuronConfigError: If the checkpoint is not compiled and export
                is False, or export parameters are invalid
        """
        unknown = set(kwargs) - EXPORT_KWARGS
        if unknown:
            raise TypeError(f"Unexpected arguments for from_pretrained: {sorted(unknown)}")

        if export:
            return cls._export(
                model_id,
                revision=revision,
                token=token,
                cache_dir=cache_dir,
                backend=backend,
                compile_cache=compile_cache,
                task=task,
                **kwargs,
            )

        if kwargs:
            logger.warning(
                "Ignoring export arguments %s: %s is already compiled (pass export=True to recompile)",
                sorted(kwargs),
                model_id,
            )

        model_dir = resolve_model_dir(model_id, revision=revision, token=token, cache_dir=cache_dir)
        config, neuron_config = load_neuron_config(model_dir)

        artifact_path = model_dir / ARTIFACT_NAME
        if not artifact_path.exists():
            raise ArtifactNotFoundError(f"No {ARTIFACT_NAME} in {model_dir}")

        backend_impl = backend if isinstance(backend, CompilerBackend) else get_backend(
            backend or neuron_config.backend
        )
        if not backend_impl.is_available():
            raise BackendUnavailableError(
                f"{model_dir} was compiled with '{neuron_config.backend}', "
                f"which is not available on this host"
            )

        module = backend_impl.load(artifact_path, neuron_config)
        logger.info("Loaded %s model from %s", neuron_config.task, model_dir)

        return cls(
            module,
            config,
            neuron_config,
            model_path=model_dir,
            generation_config=cls._load_generation_config(model_dir, config),
            runtime_batch_size=backend_impl.runtime_batch_size(neuron_config),
        )

    @classmethod
    def _export(
        cls,
        model_id: Union[str, Path],
        revision: Optional[str],
        token: Optional[str],
        cache_dir: Optional[Union[str, Path]],
        backend: Union[str, CompilerBackend, None],
        compile_cache: Union[CompiledModelCache, bool, None],
        task: Optional[str],
        **kwargs: Any,
    ) -> "NeuronModel":
        settings = load_settings()

        task = cls.task or task
        if task is None:
            task = TasksManager.infer_task_from_model(
                model_id, revision=revision, token=token, cache_dir=cache_dir
            )

        if compile_cache is None:
            compile_cache = CompiledModelCache(settings.cache_dir) if settings.cache_enabled else None
        elif compile_cache is False:
            compile_cache = None

        backend_name = backend.name if isinstance(backend, CompilerBackend) else backend or settings.default_backend

        model = TasksManager.load_model(task, model_id, revision=revision, token=token, cache_dir=cache_dir)
        neuron_config = TasksManager.create_neuron_config(
            task,
            model,
            backend_name,
            checkpoint_id=str(model_id),
            checkpoint_revision=revision,
            **kwargs,
        )

        tmp_dir = tempfile.TemporaryDirectory(prefix="neuron-bridge-")
        result = export_model(
            model,
            neuron_config,
            tmp_dir.name,
            backend=backend if isinstance(backend, CompilerBackend) else backend_name,
            cache=compile_cache,
            atol=settings.validation_atol,
        )

        backend_impl = backend if isinstance(backend, CompilerBackend) else get_backend(backend_name)
        module = backend_impl.load(result.artifact.path, result.neuron_config)

        generation_config = None
        if cls.can_generate:
            generation_config = model.generation_config

        instance = cls(
            module,
            model.config,
            result.neuron_config,
            model_path=Path(tmp_dir.name),
            generation_config=generation_config,
            runtime_batch_size=backend_impl.runtime_batch_size(result.neuron_config),
        )
        instance.export_result = result
        instance._tmp_dir = tmp_dir
        return instance

    @classmethod
    def _load_generation_config(
        cls, model_dir: Path, config: PretrainedConfig
    ) -> Optional[GenerationConfig]:
        if not cls.can_generate:
            return None
        try:
            return GenerationConfig.from_pretrained(model_dir)
        except OSError:
            return GenerationConfig.from_model_config(config)

    def save_pretrained(self, save_directory: Union[str, Path]) -> Path:
        """Save the artifact and configuration so from_pretrained can reload them.

        Returns:
            The save directory
        """
        if self.model_path is None:
            raise ArtifactNotFoundError("This model has no artifact on disk to save")

        save_directory = Path(save_directory)
        save_directory.mkdir(parents=True, exist_ok=True)

        source = self.model_path / ARTIFACT_NAME
        target = save_directory / ARTIFACT_NAME
        if not source.exists():
            raise ArtifactNotFoundError(f"No {ARTIFACT_NAME} in {self.model_path}")
        if source.resolve() != target.resolve():
            shutil.copyfile(source, target)

        save_neuron_config(self.config, self.neuron_config, save_directory)
        if self.generation_config is not None:
            self.generation_config.save_pretrained(save_directory)

        logger.info("Saved compiled model to %s", save_directory)
        return save_directory

    def push_to_hub(
        self,
        save_directory: Union[str, Path],
        repository_id: str,
        private: Optional[bool] = None,
        token: Optional[str] = None,
        commit_message: str = "Upload compiled Neuron model",
    ) -> str:
        """Save the model to ``save_directory`` and upload it to the Hub.

        Returns:
            URL of the commit
        """
        self.save_pretrained(save_directory)
        return push_directory(
            save_directory,
            repository_id,
            private=private,
            token=token,
            commit_message=commit_message,
        )

    # ------------------------------------------------------------------
    # Inference
    # ------------------------------------------------------------------

    @property
    def batch_size(self) -> int:
        """Rows sent to the compiled graph per call.

        Equal to the exported ``batch_size``, times ``num_cores`` when the
        backend replicates the artifact on several NeuronCores.
        """
        return self._runtime_batch_size

    def _pad_value(self, name: str) -> int:
        if name != "input_ids":
            return 0
        pad_id = getattr(self.config, "pad_token_id", None)
        vocab_size = getattr(self.config, "vocab_size", None)
        if pad_id is None or (vocab_size is not None and pad_id >= vocab_size):
            return 0
        return pad_id

    def _prepare_inputs(self, inputs: dict[str, Any]) -> dict[str, torch.Tensor]:
        """Convert inputs to tensors and fill optional text inputs."""
        names = self.neuron_config.input_names
        main_name = names[0]
        if inputs.get(main_name) is None:
            raise InputShapeError(f"Missing required input '{main_name}'")

        prepared = {}
        main = torch.as_tensor(inputs[main_name])
        for name in names:
            value = inputs.get(name)
            if value is None:
                if name == "attention_mask":
                    value = torch.ones(main.shape, dtype=torch.long)
                elif name == "token_type_ids":
                    value = torch.zeros(main.shape, dtype=torch.long)
                else:
                    raise InputShapeError(f"Missing required input '{name}'")
            tensor = torch.as_tensor(value)
            prepared[name] = tensor.float() if name == "pixel_values" else tensor.long()
        return prepared

    def _pad_to_static(self, inputs: dict[str, torch.Tensor]) -> tuple[torch.Tensor, ...]:
        """Pad one chunk (batch <= batch_size) up to the static shapes."""
        padded = []
        for name, static_shape in self.neuron_config.input_shapes.items():
            static_shape = (self.batch_size,) + static_shape[1:]
            tensor = inputs[name]
            if tensor.dim() != len(static_shape):
                raise InputShapeError(
                    f"Input '{name}' has {tensor.dim()} dimensions, expected {len(static_shape)}"
                )

            if name == "pixel_values":
                if tuple(tensor.shape[1:]) != static_shape[1:]:
                    raise InputShapeError(
                        f"Input '{name}' has shape {tuple(tensor.shape)}; the model was "
                        f"compiled for (batch, {', '.join(map(str, static_shape[1:]))})"
                    )
            elif tensor.shape[1] > static_shape[1]:
                raise InputShapeError(
                    f"Input '{name}' has sequence length {tensor.shape[1]}, larger than "
                    f"the compiled sequence_length={static_shape[1]}"
                )

            full = torch.full(static_shape, self._pad_value(name), dtype=tensor.dtype)
            full[tuple(slice(0, size) for size in tensor.shape)] = tensor
            padded.append(full)
        return tuple(padded)

    def _run(self, inputs: dict[str, torch.Tensor]) -> dict[str, torch.Tensor]:
        """Run the compiled graph on inputs of any fitting shape."""
        main = inputs[self.neuron_config.input_names[0]]
        batch = main.shape[0]

        if batch == 0:
            raise InputShapeError("Cannot run inference on an empty batch")
        if batch > self.batch_size and not self.neuron_config.dynamic_batch_size:
            raise InputShapeError(
                f"Batch of {batch} exceeds the {self.batch_size} rows the compiled model takes "
                f"(batch_size={self.neuron_config.batch_size}, num_cores={self.neuron_config.num_cores}); "
                "export with dynamic_batch_size=True to split larger batches"
            )

        chunks: dict[str, list[torch.Tensor]] = {name: [] for name in self.neuron_config.output_names}
        for start in range(0, batch, self.batch_size):
            chunk = {name: tensor[start : start + self.batch_size] for name, tensor in inputs.items()}
            chunk_batch = chunk[self.neuron_config.input_names[0]].shape[0]

            with torch.no_grad():
                outputs = self.model(*self._pad_to_static(chunk))

            for name, output in zip(self.neuron_config.output_names, outputs):
                output = output.cpu()[:chunk_batch]
                if name in self.task_spec.sequence_outputs:
                    output = output[:, : main.shape[1]]
                chunks[name].append(output)

        return {name: torch.cat(parts, dim=0) for name, parts in chunks.items()}

    def forward(self, **inputs: Any) -> ModelOutput:
        """Run inference, returning the task's ``transformers`` output class."""
        outputs = self._run(self._prepare_inputs(inputs))
        return self.task_spec.output_class(**outputs)

    def __call__(self, **inputs: Any) -> ModelOutput:
        return self.forward(**inputs)

    def __repr__(self) -> str:
        shapes = ", ".join(f"{k}={v}" for k, v in self.neuron_config.input_shapes.items())
        return f"{self.__class__.__name__}(task='{self.neuron_config.task}', backend='{self.neuron_config.backend}', {shapes})"
