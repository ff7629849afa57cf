"""Cache of compiled artifacts.

Compilation for a Neuron device can take minutes to hours, so exports are
keyed by everything that changes the compiled graph and reused when the
same model is exported again with the same parameters.

Structure:
    ~/.cache/neuron_bridge/compiled/
    ├── cache.json          # Cache index
    ├── neuronx/
    │   └── <key>/model.neuron
    └── torchscript/
        └── <key>/model.neuron
"""

from __future__ import annotations

import hashlib
import json
import logging
import shutil
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import torch
import torch.nn as nn

from .configuration import NeuronConfig
from .settings import DEFAULT_CACHE_DIR

logger = logging.getLogger(__name__)

INDEX_NAME = "cache.json"


def model_digest(model: nn.Module) -> str:
    """SHA-256 over the names and raw bytes of all parameters and buffers."""
    digest = hashlib.sha256()
    for name, tensor in model.state_dict().items():
        digest.update(name.encode())
        digest.update(str(tensor.dtype).encode())
        digest.update(str(tuple(tensor.shape)).encode())
        data = tensor.detach().cpu().contiguous().reshape(-1)
        digest.update(data.view(torch.uint8).numpy().tobytes() if data.numel() else b"")
    return digest.hexdigest()


# Config entries recording where and with what a checkpoint was saved
_PROVENANCE_CONFIG_KEYS = frozenset({"_name_or_path", "_commit_hash", "transformers_version"})


def compute_cache_key(
    model: nn.Module,
    neuron_config: NeuronConfig,
    backend_name: str,
    backend_version: Optional[str],
) -> str:
    """Key identifying a compiled artifact.

    The same weights exported with the same parameters map to the same key
    wherever the checkpoint was loaded from.
    """
    config = getattr(model, "config", None)
    model_config = None
    if config is not None:
        model_config = {
            key: value for key, value in config.to_dict().items() if key not in _PROVENANCE_CONFIG_KEYS
        }
    payload = {
        "model_config": model_config,
        "weights": model_digest(model),
        "export": neuron_config.export_signature(),
        "backend": backend_name,
        "backend_version": backend_version,
    }
    encoded = json.dumps(payload, sort_keys=True, default=str).encode()
    return hashlib.sha256(encoded).hexdigest()


@dataclass
class CacheEntry:
    """Metadata for a cached artifact."""

    key: str
    backend: str
    path: str
    size_bytes: int
    cached_at: str
    task: Optional[str] = None
    checkpoint_id: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CacheEntry":
        return cls(**data)


class CompiledModelCache:
    """Local cache of compiled artifacts, indexed by cache key."""

    def __init__(self, cache_dir: Optional[Path] = None):
        """Initialize the cache.

        Args:
            cache_dir: Custom cache directory (default: ~/.cache/neuron_bridge/compiled/)
        """
        self.cache_dir = Path(cache_dir) if cache_dir is not None else DEFAULT_CACHE_DIR
        self.index_path = self.cache_dir / INDEX_NAME
        self._entries: dict[str, CacheEntry] = {}
        self._load_index()

    def _load_index(self) -> None:
        """Load cache index from disk."""
        if not self.index_path.exists():
            return
        try:
            with open(self.index_path) as f:
                data = json.load(f)
            self._entries = {
                key: CacheEntry.from_dict(entry)
                for key, entry in data.get("entries", {}).items()
            }
        except (json.JSONDecodeError, AttributeError, KeyError, TypeError):
            logger.warning("Corrupted cache index %s, rebuilding from disk", self.index_path)
            self._rebuild_index()

    def _save_index(self) -> None:
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        data = {
            "version": "1.0",
            "updated_at": datetime.now().isoformat(),
            "entries": {key: entry.to_dict() for key, entry in self._entries.items()},
        }
        with open(self.index_path, "w") as f:
            json.dump(data, f, indent=2)

    def _rebuild_index(self) -> None:
        """Rebuild cache index from artifact directories on disk."""
        self._entries = {}
        if not self.cache_dir.exists():
            return

        for backend_dir in self.cache_dir.iterdir():
            if not backend_dir.is_dir():
                continue
            for key_dir in backend_dir.iterdir():
                artifact = key_dir / "model.neuron"
                if key_dir.is_dir() and artifact.exists():
                    self._entries[key_dir.name] = CacheEntry(
                        key=key_dir.name,
                        backend=backend_dir.name,
                        path=str(artifact),
                        size_bytes=artifact.stat().st_size,
                        cached_at=datetime.now().isoformat(),
                    )

        self._save_index()

    def get(self, key: str) -> Optional[Path]:
        """Get the cached artifact path for a key, None on a miss."""
        entry = self._entries.get(key)
        if entry is None:
            return None

        path = Path(entry.path)
        if not path.exists():
            # File was deleted, remove from index
            del self._entries[key]
            self._save_index()
            return None

        return path

    def put(
        self,
        key: str,
        artifact_path: Path,
        backend: str,
        neuron_config: Optional[NeuronConfig] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> CacheEntry:
        """Copy an artifact into the cache.

        Args:
            key: Cache key from compute_cache_key
            artifact_path: Compiled artifact to store
            backend: Backend that produced it
            neuron_config: Export parameters, recorded for listing
            metadata: Optional additional metadata

        Returns:
            CacheEntry for the stored artifact
        """
        target_dir = self.cache_dir / backend / key
        target_dir.mkdir(parents=True, exist_ok=True)
        target = target_dir / "model.neuron"
        shutil.copyfile(artifact_path, target)

        entry = CacheEntry(
            key=key,
            backend=backend,
            path=str(target),
            size_bytes=target.stat().st_size,
            cached_at=datetime.now().isoformat(),
            task=neuron_config.task if neuron_config else None,
            checkpoint_id=neuron_config.checkpoint_id if neuron_config else None,
            metadata=metadata or {},
        )

        self._entries[key] = entry
        self._save_index()
        logger.debug("Cached %s artifact %s", backend, key[:12])

        return entry

    def remove(self, key: str) -> bool:
        """Remove an artifact from the cache.

        Returns:
            True if the entry existed
        """
        entry = self._entries.pop(key, None)
        if entry is None:
            return False

        key_dir = Path(entry.path).parent
        if key_dir.exists():
            shutil.rmtree(key_dir)
        self._save_index()
        return True

    def list(self, backend: Optional[str] = None) -> list[CacheEntry]:
        """List cached artifacts, optionally for one backend."""
        entries = list(self._entries.values())
        if backend is not None:
            entries = [e for e in entries if e.backend == backend]
        return sorted(entries, key=lambda e: e.cached_at)

    def total_size(self) -> int:
        """Get total cache size in bytes."""
        return sum(e.size_bytes for e in self._entries.values())

    def clear(self, backend: Optional[str] = None) -> int:
        """Clear the cache.

        Args:
            backend: Optional backend to clear (clears all if None)

        Returns:
            Number of entries removed
        """
        if backend is not None:
            removed = [k for k, e in self._entries.items() if e.backend == backend]
            backend_dir = self.cache_dir / backend
            if backend_dir.exists():
                shutil.rmtree(backend_dir)
            for key in removed:
                del self._entries[key]
        else:
            removed = list(self._entries)
            if self.cache_dir.exists():
                shutil.rmtree(self.cache_dir)
            self._entries = {}

        self._save_index()
        return len(removed)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries
