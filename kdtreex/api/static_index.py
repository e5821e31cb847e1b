from __future__ import annotations

import io
from dataclasses import replace
from typing import BinaryIO, List

from kdtreex.api.base import NeighborQueries
from kdtreex.core.bounds import BoundingBox
from kdtreex.core.datasource import DataSource
from kdtreex.core.metrics import Metric
from kdtreex.core.persistence import read_tree, write_tree
from kdtreex.core.tree import KDTreeCore
from kdtreex.diagnostics import log_operation
from kdtreex.logging import get_logger
from kdtreex.params import IndexParameters

LOGGER = get_logger("api.static")


class StaticIndex(NeighborQueries):
    """One immutable KD-tree over every point of a data source.

    The data source is referenced, not copied; it must not change while the
    index is in use. Built indexes are safe to query from several threads.
    """

    def __init__(self, tree: KDTreeCore, params: IndexParameters) -> None:
        self._tree = tree
        self._params = params

    @classmethod
    def build(
        cls,
        data_source: DataSource,
        params: IndexParameters | None = None,
        *,
        dimension: int | None = None,
    ) -> "StaticIndex":
        params = params or IndexParameters.from_runtime()
        with log_operation(LOGGER, "static_build") as op_log:
            tree = KDTreeCore.build(data_source, params, dimension=dimension)
            op_log.add_metadata(
                points=tree.num_points,
                dimension=tree.dimension,
                nodes=tree.num_nodes,
                leaf_max_size=tree.leaf_max_size,
                metric=tree.metric.name,
            )
        return cls(tree, params)

    @property
    def tree(self) -> KDTreeCore:
        return self._tree

    @property
    def params(self) -> IndexParameters:
        return self._params

    @property
    def data_source(self) -> DataSource:
        return self._tree.data_source

    @property
    def dimension(self) -> int:
        return self._tree.dimension

    @property
    def metric(self) -> Metric:
        return self._tree.metric

    @property
    def num_points(self) -> int:
        return self._tree.num_points

    @property
    def num_nodes(self) -> int:
        return self._tree.num_nodes

    @property
    def bounding_box(self) -> BoundingBox:
        return self._tree.bounding_box

    def depth(self) -> int:
        return self._tree.depth()

    def used_memory(self) -> int:
        return self._tree.used_memory()

    def _search_trees(self) -> List[KDTreeCore]:
        return [self._tree]

    def save(self, stream: BinaryIO) -> int:
        """Write the tree image to ``stream``; returns the number of bytes."""

        with log_operation(LOGGER, "static_save") as op_log:
            written = write_tree(stream, self._tree)
            op_log.add_metadata(points=self.num_points, bytes=written)
        return written

    def to_bytes(self) -> bytes:
        buffer = io.BytesIO()
        self.save(buffer)
        return buffer.getvalue()

    @classmethod
    def load(
        cls,
        stream: BinaryIO,
        data_source: DataSource,
        params: IndexParameters | None = None,
    ) -> "StaticIndex":
        """Rebuild an index from ``stream`` without rescanning the points.

        The stored point count must equal ``data_source.point_count()``. The
        image does not record the metric; pass the ``IndexParameters.metric``
        used at build time, otherwise the runtime default is used.
        """

        params = params or IndexParameters.from_runtime()
        with log_operation(LOGGER, "static_load") as op_log:
            tree = read_tree(
                stream,
                data_source,
                params,
                expected_count=int(data_source.point_count()),
            )
            op_log.add_metadata(points=tree.num_points, nodes=tree.num_nodes)
        return cls(tree, replace(params, leaf_max_size=tree.leaf_max_size))

    @classmethod
    def from_bytes(
        cls,
        data: bytes,
        data_source: DataSource,
        params: IndexParameters | None = None,
    ) -> "StaticIndex":
        return cls.load(io.BytesIO(data), data_source, params)

    def __repr__(self) -> str:
        return (
            f"StaticIndex(points={self.num_points}, dimension={self.dimension}, "
            f"metric={self.metric.name!r})"
        )


__all__ = ["StaticIndex"]
