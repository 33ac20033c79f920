"""Timing and host helpers shared by the jet benchmarks."""

from __future__ import annotations

import math
import os
import platform
import time
from dataclasses import dataclass
from typing import Any, Callable

import numpy as np

# numpy dot products may run on a threaded BLAS; record what was requested.
BLAS_THREAD_VARS = (
    "OMP_NUM_THREADS",
    "OPENBLAS_NUM_THREADS",
    "MKL_NUM_THREADS",
    "VECLIB_MAXIMUM_THREADS",
)


@dataclass(frozen=True)
class Summary:
    mean_ms: float
    p50_ms: float
    p90_ms: float
    stddev_ms: float


def host_metadata() -> dict[str, Any]:
    return {
        "platform": platform.platform(),
        "python": platform.python_version(),
        "numpy": np.__version__,
        "cpu_count": os.cpu_count(),
        "blas_threads": {name: os.environ[name] for name in BLAS_THREAD_VARS if name in os.environ},
    }


def _quantile(ordered: list[float], q: float) -> float:
    pos = (len(ordered) - 1) * q
    lo, hi = math.floor(pos), math.ceil(pos)
    return ordered[lo] + (ordered[hi] - ordered[lo]) * (pos - lo)


def summarize(samples_ms: list[float]) -> Summary:
    ordered = sorted(samples_ms)
    n = len(ordered)
    mean = sum(ordered) / n
    spread = math.sqrt(sum((v - mean) ** 2 for v in ordered) / (n - 1)) if n > 1 else 0.0
    return Summary(mean_ms=mean, p50_ms=_quantile(ordered, 0.5), p90_ms=_quantile(ordered, 0.9), stddev_ms=spread)


def time_call(fn: Callable[[], object], *, repeats: int, warmup: int, samples: int) -> Summary:
    """Milliseconds per call over `samples` batches of `repeats` calls."""
    for _ in range(max(0, warmup)):
        fn()
    per_call: list[float] = []
    for _ in range(samples):
        start_ns = time.perf_counter_ns()
        for _ in range(repeats):
            fn()
        per_call.append((time.perf_counter_ns() - start_ns) / repeats / 1e6)
    return summarize(per_call)
