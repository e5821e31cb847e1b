from __future__ import annotations

import math
from typing import Callable, Dict, Tuple

import numpy as np

from kdtreex import config as kx_config
from kdtreex.core import _metrics_numba
from kdtreex.exceptions import ConstructionError, QueryError

RowKernel = Callable[[np.ndarray, np.ndarray], np.ndarray]

_TAU = 2.0 * math.pi


class Metric:
    """Distance accumulated dimension by dimension.

    ``accum_dist`` gives the contribution of a single dimension and the full
    distance is the sum over dimensions, so adding a dimension never lowers
    the total. The search relies on that to prune with partial sums.
    """

    name: str = ""
    required_dimension: int | None = None

    def accum_dist(self, a: float, b: float, dim: int) -> float:
        raise NotImplementedError

    def interval_distance(self, value: float, low: float, high: float, dim: int) -> float:
        """Lower bound of ``accum_dist(value, x, dim)`` over ``x`` in ``[low, high]``."""

        if value < low:
            return self.accum_dist(value, low, dim)
        if value > high:
            return self.accum_dist(value, high, dim)
        return 0.0

    def evaluate(self, query: np.ndarray, block: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def row_kernel(self, use_numba: bool = False) -> RowKernel:
        return self.evaluate

    def prepare_query(self, query: np.ndarray) -> np.ndarray:
        return query

    def distance(self, lhs: np.ndarray, rhs: np.ndarray) -> float:
        lhs_arr = self.prepare_query(np.asarray(lhs, dtype=np.float64).reshape(-1))
        rhs_arr = np.asarray(rhs, dtype=np.float64).reshape(1, -1)
        if lhs_arr.shape[0] != rhs_arr.shape[1]:
            raise QueryError("Metric operands must have identical shapes.")
        return float(self.evaluate(lhs_arr, rhs_arr)[0])

    def validate_dimension(self, dimension: int) -> None:
        if self.required_dimension is not None and dimension != self.required_dimension:
            raise ConstructionError(
                f"Metric '{self.name}' requires dimension {self.required_dimension}, "
                f"got {dimension}."
            )

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class L1Metric(Metric):
    name = "l1"

    def accum_dist(self, a: float, b: float, dim: int) -> float:
        return abs(a - b)

    def evaluate(self, query: np.ndarray, block: np.ndarray) -> np.ndarray:
        return np.sum(np.abs(block - query), axis=1)

    def row_kernel(self, use_numba: bool = False) -> RowKernel:
        return _metrics_numba.l1_rows if use_numba else self.evaluate


class L2Metric(Metric):
    """Squared Euclidean distance; the square root is never taken."""

    name = "l2"

    def accum_dist(self, a: float, b: float, dim: int) -> float:
        diff = a - b
        return diff * diff

    def evaluate(self, query: np.ndarray, block: np.ndarray) -> np.ndarray:
        diff = block - query
        return np.sum(diff * diff, axis=1)

    def row_kernel(self, use_numba: bool = False) -> RowKernel:
        return _metrics_numba.l2_rows if use_numba else self.evaluate


class L2SimpleMetric(L2Metric):
    """Squared Euclidean distance summed column by column.

    Avoids the ``(n, d)`` difference temporary, which pays off for the low
    fixed dimensionalities (2-4) point clouds use.
    """

    name = "l2_simple"

    def evaluate(self, query: np.ndarray, block: np.ndarray) -> np.ndarray:
        diff = block[:, 0] - query[0]
        out = diff * diff
        for dim in range(1, block.shape[1]):
            diff = block[:, dim] - query[dim]
            out += diff * diff
        return out


def _wrapped(delta: np.ndarray | float) -> np.ndarray | float:
    delta = np.abs(delta) % _TAU
    return np.minimum(delta, _TAU - delta)


class SO2Metric(Metric):
    """Geodesic distance on the circle for coordinates given in radians.

    Each dimension contributes its squared wrapped angular difference.
    """

    name = "so2"

    def accum_dist(self, a: float, b: float, dim: int) -> float:
        delta = float(_wrapped(a - b))
        return delta * delta

    def interval_distance(self, value: float, low: float, high: float, dim: int) -> float:
        span = high - low
        if span >= _TAU:
            return 0.0
        if (value - low) % _TAU <= span:
            return 0.0
        return min(self.accum_dist(value, low, dim), self.accum_dist(value, high, dim))

    def evaluate(self, query: np.ndarray, block: np.ndarray) -> np.ndarray:
        delta = _wrapped(block - query)
        return np.sum(delta * delta, axis=1)


class SO3Metric(L2Metric):
    """Geodesic distance between rotations stored as unit quaternions ``(w, x, y, z)``.

    Values are squared chordal distances on the unit 3-sphere. Queries are
    normalised and moved into the ``w >= 0`` hemisphere and stored quaternions
    are expected there too. The chord only tracks the rotation angle while
    ``q . p >= 0``; pairs near the ``w = 0`` boundary can have a negative dot
    product and then read farther apart than the rotation between them.
    """

    name = "so3"
    required_dimension = 4

    def prepare_query(self, query: np.ndarray) -> np.ndarray:
        norm = float(np.linalg.norm(query))
        if norm == 0.0:
            raise QueryError("Quaternion query must be non-zero.")
        unit = query / norm
        return -unit if unit[0] < 0.0 else unit

    @staticmethod
    def to_angle(distance: float) -> float:
        """Rotation angle in radians for a squared chordal distance with ``q . p >= 0``."""

        chord = math.sqrt(max(distance, 0.0))
        return 4.0 * math.asin(min(1.0, chord / 2.0))


class MetricRegistry:
    """Minimal registry for runtime-selectable metrics."""

    def __init__(self) -> None:
        self._metrics: Dict[str, Metric] = {}

    def register(self, metric: Metric, *, overwrite: bool = False) -> None:
        name = metric.name.lower()
        if not name:
            raise ValueError("Metric must define a non-empty name.")
        if not overwrite and name in self._metrics:
            raise ValueError(f"Metric '{metric.name}' already registered.")
        self._metrics[name] = metric

    def get(self, name: str) -> Metric:
        key = name.lower()
        if key not in self._metrics:
            raise KeyError(f"Metric '{name}' not registered.")
        return self._metrics[key]

    def names(self) -> Tuple[str, ...]:
        return tuple(sorted(self._metrics.keys()))


def _load_registry() -> MetricRegistry:
    registry = MetricRegistry()
    for metric in (L1Metric(), L2Metric(), L2SimpleMetric(), SO2Metric(), SO3Metric()):
        registry.register(metric)
    return registry


_REGISTRY = _load_registry()


def get_metric(name: str | Metric | None = None) -> Metric:
    """Return a registered metric, defaulting to the runtime-selected metric."""

    if isinstance(name, Metric):
        return name
    if name is None:
        name = kx_config.runtime_config().metric
    return _REGISTRY.get(name)


def register_metric(metric: Metric, *, overwrite: bool = False) -> None:
    _REGISTRY.register(metric, overwrite=overwrite)


def available_metrics() -> Tuple[str, ...]:
    return _REGISTRY.names()


__all__ = [
    "Metric",
    "MetricRegistry",
    "L1Metric",
    "L2Metric",
    "L2SimpleMetric",
    "SO2Metric",
    "SO3Metric",
    "available_metrics",
    "get_metric",
    "register_metric",
]
