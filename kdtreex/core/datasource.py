from __future__ import annotations

from typing import Any, Protocol, Sequence, runtime_checkable

import numpy as np

from kdtreex.core.bounds import BoundingBox


@runtime_checkable
class DataSource(Protocol):
    """Read-only view over externally owned point storage.

    Implementations may additionally expose ``bounding_box()`` (returning a
    :class:`BoundingBox` or ``None``) to skip one pass during build, and
    ``gather(indices)`` returning an ``(len(indices), d)`` float array as a
    vectorised alternative to ``coordinate``.
    """

    def point_count(self) -> int:
        ...

    def coordinate(self, index: int, dim: int) -> float:
        ...


def gather_points(source: DataSource, indices: Any, dimension: int) -> np.ndarray:
    """Materialise the coordinates of ``indices`` as a float64 block."""

    idx = np.asarray(indices, dtype=np.int64)
    gather = getattr(source, "gather", None)
    if gather is not None:
        block = np.asarray(gather(idx), dtype=np.float64)
        return block.reshape(idx.shape[0], dimension)
    block = np.empty((idx.shape[0], dimension), dtype=np.float64)
    for row, point in enumerate(idx.tolist()):
        for dim in range(dimension):
            block[row, dim] = source.coordinate(point, dim)
    return block


def source_bounding_box(source: DataSource) -> BoundingBox | None:
    getter = getattr(source, "bounding_box", None)
    if getter is None:
        return None
    return getter()


class ArrayDataSource:
    """Adaptor exposing an ``(n, d)`` array or a sequence of points.

    The array is referenced, not copied, when it already is a float64 NumPy
    array. Grow it with :meth:`append` (or hand over a grown array through
    :meth:`replace`) before calling ``DynamicIndex.add_points``.
    """

    def __init__(self, points: Any, *, bounding_box: BoundingBox | None = None) -> None:
        self._points = self._coerce(points)
        self._bbox = bounding_box

    @staticmethod
    def _coerce(points: Any) -> np.ndarray:
        arr = np.asarray(points, dtype=np.float64)
        if arr.ndim == 1:
            arr = arr.reshape(1, -1) if arr.size else arr.reshape(0, 0)
        if arr.ndim != 2:
            raise ValueError("ArrayDataSource expects a 2-D array of points.")
        return arr

    @property
    def points(self) -> np.ndarray:
        return self._points

    @property
    def dimension(self) -> int:
        return int(self._points.shape[1])

    def point_count(self) -> int:
        return int(self._points.shape[0])

    def coordinate(self, index: int, dim: int) -> float:
        return float(self._points[index, dim])

    def gather(self, indices: Sequence[int] | np.ndarray) -> np.ndarray:
        return self._points[np.asarray(indices, dtype=np.int64)]

    def bounding_box(self) -> BoundingBox | None:
        return self._bbox

    def replace(self, points: Any) -> None:
        """Swap in a grown point array; existing rows must be unchanged."""

        arr = self._coerce(points)
        if arr.shape[0] < self._points.shape[0]:
            raise ValueError("ArrayDataSource.replace cannot drop existing points.")
        if self._points.size and arr.shape[1] != self._points.shape[1]:
            raise ValueError("ArrayDataSource.replace cannot change dimensionality.")
        self._points = arr
        self._bbox = None

    def append(self, points: Any) -> range:
        """Append rows and return the range of their new indices."""

        block = self._coerce(points)
        start = self.point_count()
        if self._points.size == 0:
            self._points = block.copy()
        else:
            self._points = np.concatenate([self._points, block], axis=0)
        self._bbox = None
        return range(start, self.point_count())


__all__ = ["ArrayDataSource", "DataSource", "gather_points", "source_bounding_box"]
