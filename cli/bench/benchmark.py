from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Tuple

import numpy as np
from numpy.random import Generator, default_rng

from kdtreex import ArrayDataSource, DynamicIndex, IndexParameters, SearchParameters, StaticIndex
from tests.utils.datasets import (
    angle_points,
    brute_force_knn,
    gaussian_points,
    unit_quaternions,
)


@dataclass(frozen=True)
class QueryBenchmarkResult:
    elapsed_seconds: float
    queries: int
    k: int
    latency_ms: float
    queries_per_second: float
    build_seconds: float
    mismatches: int | None = None


@dataclass(frozen=True)
class InsertBenchmarkResult:
    points: int
    batches: int
    insert_seconds: float
    points_per_second: float
    levels: int
    static_build_seconds: float


def generate_points(rng: Generator, count: int, dimension: int, metric: str) -> np.ndarray:
    """Sample points suited to ``metric`` (angles, quaternions or Gaussians)."""

    if metric == "so3":
        return unit_quaternions(rng, count)
    if metric == "so2":
        return angle_points(rng, count, dimension)
    return gaussian_points(rng, count, dimension, dtype=np.float64)


def benchmark_knn_latency(
    *,
    dimension: int,
    tree_points: int,
    query_count: int,
    k: int,
    seed: int,
    metric: str = "l2",
    leaf_max_size: int = 10,
    eps: float = 0.0,
    checks: int | None = None,
    verify: bool = True,
) -> Tuple[StaticIndex, QueryBenchmarkResult]:
    rng = default_rng(seed)
    points = generate_points(rng, tree_points, dimension, metric)
    queries = generate_points(default_rng(seed + 1), query_count, dimension, metric)
    params = IndexParameters.from_runtime(leaf_max_size=leaf_max_size, metric=metric)

    start = time.perf_counter()
    index = StaticIndex.build(ArrayDataSource(points), params)
    build_seconds = time.perf_counter() - start

    search = SearchParameters(eps=eps, checks=checks)
    results = []
    start = time.perf_counter()
    for query in queries:
        results.append(index.knn_search(query, k, search))
    elapsed = time.perf_counter() - start

    mismatches: int | None = None
    if verify:
        mismatches = 0
        for query, result in zip(queries, results):
            expected, _ = brute_force_knn(points, query, k, metric=metric)
            if not np.array_equal(expected, result.indices):
                mismatches += 1

    latency = (elapsed / query_count) * 1e3 if query_count else 0.0
    throughput = query_count / elapsed if elapsed > 0 else float("inf")
    return index, QueryBenchmarkResult(
        elapsed_seconds=elapsed,
        queries=query_count,
        k=k,
        latency_ms=latency,
        queries_per_second=throughput,
        build_seconds=build_seconds,
        mismatches=mismatches,
    )


def benchmark_dynamic_insert(
    *,
    dimension: int,
    tree_points: int,
    batch_size: int,
    seed: int,
    metric: str = "l2",
    leaf_max_size: int = 10,
) -> Tuple[DynamicIndex, InsertBenchmarkResult]:
    rng = default_rng(seed)
    points = generate_points(rng, tree_points, dimension, metric)
    params = IndexParameters.from_runtime(leaf_max_size=leaf_max_size, metric=metric)

    source = ArrayDataSource(np.empty((0, points.shape[1]), dtype=np.float64))
    index = DynamicIndex(source, params, dimension=points.shape[1])
    batches = 0
    start = time.perf_counter()
    for offset in range(0, tree_points, batch_size):
        added = source.append(points[offset : offset + batch_size])
        index.add_points(added.start, added.stop)
        batches += 1
    insert_seconds = time.perf_counter() - start

    start = time.perf_counter()
    StaticIndex.build(ArrayDataSource(points), params)
    static_seconds = time.perf_counter() - start

    throughput = tree_points / insert_seconds if insert_seconds > 0 else float("inf")
    return index, InsertBenchmarkResult(
        points=tree_points,
        batches=batches,
        insert_seconds=insert_seconds,
        points_per_second=throughput,
        levels=len(index.sub_trees()),
        static_build_seconds=static_seconds,
    )


__all__ = [
    "InsertBenchmarkResult",
    "QueryBenchmarkResult",
    "benchmark_dynamic_insert",
    "benchmark_knn_latency",
    "generate_points",
]
