from __future__ import annotations

from typing import Tuple

import numpy as np
from numpy.random import Generator, default_rng

from kdtreex.core.metrics import get_metric

Array = np.ndarray


def _ensure_rng(rng: Generator | None) -> Generator:
    return rng or default_rng()


def gaussian_points(
    rng: Generator | None,
    count: int,
    dimension: int,
    *,
    dtype: np.dtype | type[np.floating] = np.float64,
) -> Array:
    """Sample `count` Gaussian points with the requested dimensionality."""

    generator = _ensure_rng(rng)
    if count <= 0 or dimension <= 0:
        return np.zeros((max(count, 0), max(dimension, 0)), dtype=dtype)
    samples = generator.normal(loc=0.0, scale=1.0, size=(count, dimension))
    return np.asarray(samples, dtype=dtype)


def gaussian_dataset(
    rng: Generator | None,
    *,
    tree_points: int,
    queries: int,
    dimension: int,
    dtype: np.dtype | type[np.floating] = np.float64,
) -> Tuple[Array, Array]:
    """Return a tuple `(points, queries)` drawn from the same Gaussian."""

    generator = _ensure_rng(rng)
    points = gaussian_points(generator, tree_points, dimension, dtype=dtype)
    query_points = gaussian_points(generator, queries, dimension, dtype=dtype)
    return points, query_points


def angle_points(rng: Generator | None, count: int, dimension: int) -> Array:
    """Angles drawn uniformly from ``[-pi, pi)``."""

    generator = _ensure_rng(rng)
    return generator.uniform(-np.pi, np.pi, size=(count, dimension))


def unit_quaternions(rng: Generator | None, count: int) -> Array:
    """Random rotations as unit quaternions ``(w, x, y, z)`` with ``w >= 0``."""

    generator = _ensure_rng(rng)
    quats = generator.normal(size=(count, 4))
    quats /= np.linalg.norm(quats, axis=1, keepdims=True)
    quats[quats[:, 0] < 0.0] *= -1.0
    return quats


def brute_force_knn(
    points: Array, query: Array, k: int, *, metric: str = "l2"
) -> Tuple[Array, Array]:
    """Linear-scan reference: ``k`` smallest distances, ties by ascending index."""

    resolved = get_metric(metric)
    prepared = resolved.prepare_query(np.asarray(query, dtype=np.float64))
    dists = resolved.evaluate(prepared, np.asarray(points, dtype=np.float64))
    order = np.lexsort((np.arange(dists.shape[0]), dists))[:k]
    return order.astype(np.int64), dists[order]


def brute_force_radius(
    points: Array, query: Array, radius: float, *, metric: str = "l2"
) -> Tuple[Array, Array]:
    resolved = get_metric(metric)
    prepared = resolved.prepare_query(np.asarray(query, dtype=np.float64))
    dists = resolved.evaluate(prepared, np.asarray(points, dtype=np.float64))
    inside = np.flatnonzero(dists <= radius)
    order = inside[np.lexsort((inside, dists[inside]))]
    return order.astype(np.int64), dists[order]
