"""Latency and throughput measurement for compiled models."""

import logging
import time
from typing import Any, Dict

import numpy as np
import torch
from pydantic import BaseModel

from .modeling.base import NeuronModel
from .tasks import TasksManager

logger = logging.getLogger(__name__)


class BenchmarkResult(BaseModel):
    """Timing statistics of a compiled model at its static shapes."""

    task: str
    backend: str
    batch_size: int
    mean_latency_ms: float
    std_latency_ms: float
    min_latency_ms: float
    max_latency_ms: float
    p50_latency_ms: float
    p90_latency_ms: float
    p99_latency_ms: float
    throughput_samples_per_sec: float
    iterations: int
    warmup_iterations: int
    metadata: Dict[str, Any] = {}


def benchmark_model(
    model: NeuronModel,
    iterations: int = 100,
    warmup_iterations: int = 10,
) -> BenchmarkResult:
    """Time the compiled graph on full static-shape batches.

    With several cores, each call carries ``batch_size`` rows per core.

    Args:
        model: Loaded compiled model
        iterations: Number of timed iterations
        warmup_iterations: Number of untimed iterations run first

    Returns:
        BenchmarkResult with latency statistics
    """
    if iterations < 1:
        raise ValueError("iterations must be at least 1")
    if warmup_iterations < 0:
        raise ValueError("warmup_iterations must not be negative")

    neuron_config = model.neuron_config
    inputs = TasksManager.generate_dummy_inputs(
        neuron_config, model.config, batch_size=model.batch_size
    )

    logger.info("Warming up (%d iterations)", warmup_iterations)
    with torch.no_grad():
        for _ in range(warmup_iterations):
            model.model(*inputs)

    logger.info("Running benchmark (%d iterations)", iterations)
    latencies = []
    with torch.no_grad():
        for _ in range(iterations):
            start_time = time.perf_counter()
            model.model(*inputs)
            end_time = time.perf_counter()
            latencies.append((end_time - start_time) * 1000)

    latencies_np = np.array(latencies)
    mean_latency = float(np.mean(latencies_np))
    throughput = (1000.0 / mean_latency) * model.batch_size if mean_latency > 0 else 0.0

    return BenchmarkResult(
        task=neuron_config.task,
        backend=neuron_config.backend,
        batch_size=model.batch_size,
        mean_latency_ms=mean_latency,
        std_latency_ms=float(np.std(latencies_np)),
        min_latency_ms=float(np.min(latencies_np)),
        max_latency_ms=float(np.max(latencies_np)),
        p50_latency_ms=float(np.percentile(latencies_np, 50)),
        p90_latency_ms=float(np.percentile(latencies_np, 90)),
        p99_latency_ms=float(np.percentile(latencies_np, 99)),
        throughput_samples_per_sec=throughput,
        iterations=iterations,
        warmup_iterations=warmup_iterations,
        metadata={
            "input_shapes": {k: list(v) for k, v in neuron_config.input_shapes.items()},
            "num_cores": neuron_config.num_cores,
        },
    )
