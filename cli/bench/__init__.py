from __future__ import annotations

from .app import app, main
from .benchmark import (
    InsertBenchmarkResult,
    QueryBenchmarkResult,
    benchmark_dynamic_insert,
    benchmark_knn_latency,
)

__all__ = [
    "InsertBenchmarkResult",
    "QueryBenchmarkResult",
    "app",
    "benchmark_dynamic_insert",
    "benchmark_knn_latency",
    "main",
]
