"""Exceptions for neuron-bridge."""


class NeuronBridgeError(Exception):
    """Base exception for neuron-bridge errors."""

    pass


class NeuronConfigError(NeuronBridgeError):
    """Invalid or missing export configuration."""

    pass


class MissingInputShapeError(NeuronConfigError):
    """A static input dimension required by the task was not provided."""

    def __init__(self, task: str, missing: list[str]):
        self.task = task
        self.missing = missing
        super().__init__(
            f"Task '{task}' requires static input shapes: {', '.join(missing)}"
        )


class UnsupportedTaskError(NeuronBridgeError):
    """Task is not known to the TasksManager."""

    pass


class BackendUnavailableError(NeuronBridgeError):
    """Compiler backend is unknown or its toolchain is not installed."""

    pass


class CompilationError(NeuronBridgeError):
    """The compiler backend failed to produce an artifact."""

    pass


class InputShapeError(NeuronBridgeError):
    """Runtime inputs do not fit the compiled static shapes."""

    pass


class ArtifactNotFoundError(NeuronBridgeError):
    """Compiled artifact file is missing from a model directory."""

    pass


class HubError(NeuronBridgeError):
    """The Hugging Face Hub rejected or failed a request."""

    pass
