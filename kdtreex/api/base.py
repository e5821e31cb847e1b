from __future__ import annotations

from typing import Any, List

import numpy as np

from kdtreex.core.metrics import Metric
from kdtreex.core.tree import KDTreeCore
from kdtreex.params import SearchParameters
from kdtreex.queries.results import (
    KNNResultSet,
    RadiusKNNResultSet,
    RadiusResultSet,
    ResultSet,
    SearchResult,
)
from kdtreex.queries.search import SearchStats, find_neighbors, prepare_query


class NeighborQueries:
    """Query surface shared by the static and dynamic indexes.

    Subclasses provide ``dimension``, ``metric`` and the snapshot of trees to
    search; ``_removed_mask`` returns tombstones or ``None``.
    """

    dimension: int
    metric: Metric

    def _search_trees(self) -> List[KDTreeCore]:
        raise NotImplementedError

    def _removed_mask(self) -> np.ndarray | None:
        return None

    def query(
        self,
        point: Any,
        result_set: ResultSet,
        params: SearchParameters | None = None,
    ) -> SearchStats:
        """Run the search for ``point`` into a caller-supplied result set."""

        query = prepare_query(point, self.dimension, self.metric)
        return find_neighbors(
            self._search_trees(),
            query,
            result_set,
            params,
            removed=self._removed_mask(),
        )

    def _finalize(
        self, point: Any, result_set: ResultSet, params: SearchParameters | None
    ) -> SearchResult:
        params = params or SearchParameters()
        self.query(point, result_set, params)
        return result_set.finalize(sorted=params.sorted)

    def knn_search(
        self, point: Any, k: int, params: SearchParameters | None = None
    ) -> SearchResult:
        """The ``k`` nearest points; every point when ``k`` exceeds the index size."""

        return self._finalize(point, KNNResultSet(k), params)

    def radius_search(
        self, point: Any, radius: float, params: SearchParameters | None = None
    ) -> SearchResult:
        """Points with distance ``<= radius``, in the metric's own units."""

        return self._finalize(point, RadiusResultSet(radius), params)

    def rknn_search(
        self,
        point: Any,
        k: int,
        radius: float,
        params: SearchParameters | None = None,
    ) -> SearchResult:
        return self._finalize(point, RadiusKNNResultSet(k, radius), params)


__all__ = ["NeighborQueries"]
