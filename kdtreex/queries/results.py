from __future__ import annotations

import heapq
import math
from dataclasses import dataclass
from typing import Iterator, List, Tuple

import numpy as np

from kdtreex.exceptions import QueryError


@dataclass(frozen=True)
class SearchResult:
    """Finalized neighbours of one query.

    Distances are in the metric's own units (squared for ``l2``).
    """

    indices: np.ndarray
    distances: np.ndarray

    def __len__(self) -> int:
        return int(self.indices.shape[0])

    def __iter__(self) -> Iterator[Tuple[int, float]]:
        return iter(self.as_pairs())

    def as_pairs(self) -> List[Tuple[int, float]]:
        return list(zip(self.indices.tolist(), self.distances.tolist()))


def _build_result(indices: List[int], distances: List[float], *, sort: bool) -> SearchResult:
    idx = np.asarray(indices, dtype=np.int64)
    dist = np.asarray(distances, dtype=np.float64)
    if sort and idx.size > 1:
        order = np.lexsort((idx, dist))
        idx = idx[order]
        dist = dist[order]
    return SearchResult(indices=idx, distances=dist)


class ResultSet:
    """Accumulates ``(index, distance)`` candidates offered by the search."""

    eps: float = 0.0

    def worst_dist(self) -> float:
        raise NotImplementedError

    def add_point(self, distance: float, index: int) -> bool:
        raise NotImplementedError

    def add_candidates(self, distances: np.ndarray, indices: np.ndarray) -> int:
        """Offer a leaf's worth of candidates; returns how many were accepted."""

        keep = distances <= self.worst_dist()
        accepted = 0
        for distance, index in zip(distances[keep].tolist(), indices[keep].tolist()):
            if self.add_point(distance, index):
                accepted += 1
        return accepted

    def finalize(self, sorted: bool = True) -> SearchResult:
        raise NotImplementedError

    def __len__(self) -> int:
        raise NotImplementedError


class KNNResultSet(ResultSet):
    """Keeps the ``k`` smallest ``(distance, index)`` pairs.

    The heap stores ``(-distance, -index)`` so its top is the worst kept
    entry under the ascending ``(distance, index)`` order.
    """

    def __init__(self, k: int) -> None:
        if int(k) < 1:
            raise QueryError(f"k must be >= 1, got {k}")
        self.capacity = int(k)
        self._heap: List[Tuple[float, int]] = []

    def __len__(self) -> int:
        return len(self._heap)

    def full(self) -> bool:
        return len(self._heap) >= self.capacity

    def worst_dist(self) -> float:
        if len(self._heap) < self.capacity:
            return math.inf
        return -self._heap[0][0]

    def add_point(self, distance: float, index: int) -> bool:
        if len(self._heap) < self.capacity:
            heapq.heappush(self._heap, (-distance, -index))
            return True
        worst_dist, worst_index = self._heap[0]
        if (distance, index) < (-worst_dist, -worst_index):
            heapq.heapreplace(self._heap, (-distance, -index))
            return True
        return False

    def finalize(self, sorted: bool = True) -> SearchResult:
        entries = self._heap
        return _build_result(
            [-index for _, index in entries],
            [-distance for distance, _ in entries],
            sort=sorted,
        )


class ApproximateKNNResultSet(KNNResultSet):
    """KNN result set whose search prunes with the relaxed ``(1 + eps)`` bound."""

    def __init__(self, k: int, eps: float = 0.0) -> None:
        super().__init__(k)
        if not eps >= 0.0:
            raise QueryError(f"eps must be >= 0, got {eps}")
        self.eps = float(eps)


class RadiusResultSet(ResultSet):
    """Every point with ``distance <= radius``; unbounded."""

    def __init__(self, radius: float) -> None:
        if not radius >= 0.0:
            raise QueryError(f"radius must be >= 0, got {radius}")
        self.radius = float(radius)
        self._indices: List[int] = []
        self._distances: List[float] = []

    def __len__(self) -> int:
        return len(self._indices)

    def worst_dist(self) -> float:
        return self.radius

    def add_point(self, distance: float, index: int) -> bool:
        if distance <= self.radius:
            self._indices.append(index)
            self._distances.append(distance)
            return True
        return False

    def add_candidates(self, distances: np.ndarray, indices: np.ndarray) -> int:
        keep = distances <= self.radius
        self._indices.extend(indices[keep].tolist())
        self._distances.extend(distances[keep].tolist())
        return int(keep.sum())

    def finalize(self, sorted: bool = True) -> SearchResult:
        return _build_result(self._indices, self._distances, sort=sorted)


class RadiusKNNResultSet(KNNResultSet):
    """The ``k`` nearest points that also lie within ``radius``."""

    def __init__(self, k: int, radius: float) -> None:
        super().__init__(k)
        if not radius >= 0.0:
            raise QueryError(f"radius must be >= 0, got {radius}")
        self.radius = float(radius)

    def worst_dist(self) -> float:
        return min(self.radius, super().worst_dist())

    def add_point(self, distance: float, index: int) -> bool:
        if distance > self.radius:
            return False
        return super().add_point(distance, index)


__all__ = [
    "ApproximateKNNResultSet",
    "KNNResultSet",
    "RadiusKNNResultSet",
    "RadiusResultSet",
    "ResultSet",
    "SearchResult",
]
