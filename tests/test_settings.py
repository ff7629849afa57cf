"""Tests for user settings."""

from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from neuron_bridge.settings import (
    DEFAULT_CONFIG_PATH,
    BridgeSettings,
    load_settings,
    save_settings,
    settings_to_yaml,
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in ("NEURON_BRIDGE_BACKEND", "NEURON_BRIDGE_CACHE_ENABLED", "NEURON_BRIDGE_CACHE_DIR"):
        monkeypatch.delenv(name, raising=False)


class TestLoadSettings:
    """Tests for load_settings."""

    def test_defaults(self, clean_env):
        settings = load_settings()
        assert settings.default_backend == "neuronx"
        assert settings.cache_enabled is True
        assert settings.validation_atol is None

    def test_from_file(self, clean_env, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text(yaml.dump({"default_backend": "torchscript", "validation_atol": 0.01}))

        settings = load_settings(path)
        assert settings.default_backend == "torchscript"
        assert settings.validation_atol == 0.01

    def test_default_path_in_working_directory(self, clean_env):
        DEFAULT_CONFIG_PATH.parent.mkdir()
        DEFAULT_CONFIG_PATH.write_text("cache_enabled: false\n")
        assert load_settings().cache_enabled is False

    def test_environment_overrides_file(self, clean_env, monkeypatch, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("default_backend: neuronx\ncache_enabled: true\n")
        monkeypatch.setenv("NEURON_BRIDGE_BACKEND", "torchscript")
        monkeypatch.setenv("NEURON_BRIDGE_CACHE_ENABLED", "false")
        monkeypatch.setenv("NEURON_BRIDGE_CACHE_DIR", str(tmp_path / "c"))

        settings = load_settings(path)
        assert settings.default_backend == "torchscript"
        assert settings.cache_enabled is False
        assert settings.cache_dir == tmp_path / "c"

    def test_empty_file(self, clean_env, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("")
        assert load_settings(path) == BridgeSettings()

    def test_invalid_tolerance(self, clean_env, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("validation_atol: -1\n")
        with pytest.raises(ValidationError):
            load_settings(path)


class TestSaveSettings:
    """Tests for save_settings."""

    def test_roundtrip(self, clean_env, tmp_path):
        settings = BridgeSettings(default_backend="torchscript", cache_dir=Path("/tmp/nb"))
        path = save_settings(settings, tmp_path / "nested" / "config.yaml")

        assert path.exists()
        assert load_settings(path) == settings

    def test_default_location(self, clean_env):
        path = save_settings(BridgeSettings())
        assert path == DEFAULT_CONFIG_PATH
        assert path.exists()

    def test_yaml_text(self):
        text = settings_to_yaml(BridgeSettings(default_backend="torchscript"))
        assert "default_backend: torchscript" in text
