"""User settings for neuron-bridge.

Settings are read from ``.neuron-bridge/config.yaml`` in the working
directory, then overridden by ``NEURON_BRIDGE_*`` environment variables.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Union

import yaml
from pydantic import BaseModel, Field

DEFAULT_CONFIG_PATH = Path(".neuron-bridge") / "config.yaml"
DEFAULT_CACHE_DIR = Path.home() / ".cache" / "neuron_bridge" / "compiled"

_ENV_OVERRIDES = {
    "NEURON_BRIDGE_CACHE_DIR": "cache_dir",
    "NEURON_BRIDGE_BACKEND": "default_backend",
    "NEURON_BRIDGE_CACHE_ENABLED": "cache_enabled",
}


class BridgeSettings(BaseModel):
    """Runtime settings shared by the API and the CLI."""

    default_backend: str = "neuronx"
    cache_dir: Path = DEFAULT_CACHE_DIR
    cache_enabled: bool = True
    validation_atol: float | None = Field(default=None, gt=0)


def load_settings(path: Union[str, Path, None] = None) -> BridgeSettings:
    """Load settings from a YAML file and the environment.

    Args:
        path: Settings file (default: .neuron-bridge/config.yaml). A missing
            file yields the defaults.

    Returns:
        Parsed BridgeSettings

    Raises:
        ValidationError: If the file or environment holds invalid values
    """
    path = Path(path) if path is not None else DEFAULT_CONFIG_PATH

    data: dict = {}
    if path.exists():
        with open(path) as f:
            data = yaml.safe_load(f) or {}

    for env_var, field_name in _ENV_OVERRIDES.items():
        value = os.environ.get(env_var)
        if value:
            data[field_name] = value

    return BridgeSettings.model_validate(data)


def save_settings(
    settings: BridgeSettings,
    path: Union[str, Path, None] = None,
) -> Path:
    """Write settings to a YAML file, creating its directory."""
    path = Path(path) if path is not None else DEFAULT_CONFIG_PATH
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "w") as f:
        yaml.dump(
            settings.model_dump(mode="json"),
            f,
            default_flow_style=False,
            sort_keys=False,
        )

    return path


def settings_to_yaml(settings: BridgeSettings) -> str:
    return yaml.dump(settings.model_dump(mode="json"), default_flow_style=False, sort_keys=False)
