from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List, Sequence, Tuple

import numpy as np

from kdtreex import config as kx_config
from kdtreex.core.arena import NO_CHILD
from kdtreex.core.datasource import gather_points
from kdtreex.core.metrics import Metric, RowKernel
from kdtreex.core.tree import KDTreeCore
from kdtreex.diagnostics import log_operation
from kdtreex.exceptions import QueryError
from kdtreex.logging import get_logger
from kdtreex.params import SearchParameters
from kdtreex.queries.results import ResultSet

LOGGER = get_logger("queries.search")


@dataclass
class SearchStats:
    """Work counters for one query; ``truncated`` is set when ``checks`` ran out."""

    leaves_visited: int = 0
    nodes_visited: int = 0
    points_evaluated: int = 0
    truncated: bool = False


def prepare_query(point: Any, dimension: int, metric: Metric) -> np.ndarray:
    """Validate a query vector and apply the metric's canonicalisation."""

    arr = np.asarray(point, dtype=np.float64)
    if arr.ndim == 2 and arr.shape[0] == 1:
        arr = arr[0]
    if arr.ndim != 1 or arr.shape[0] != dimension:
        raise QueryError(
            f"Query has shape {tuple(arr.shape)}; expected a vector of length {dimension}."
        )
    if not np.all(np.isfinite(arr)):
        raise QueryError("Query contains non-finite coordinates.")
    return np.ascontiguousarray(metric.prepare_query(arr), dtype=np.float64)


def _search_tree(
    tree: KDTreeCore,
    query: np.ndarray,
    result: ResultSet,
    *,
    scale: float,
    checks: int | None,
    kernel: RowKernel,
    removed: np.ndarray | None,
    stats: SearchStats,
) -> bool:
    """Branch-and-bound over one tree. Returns ``False`` once ``checks`` ran out."""

    metric = tree.metric
    nodes = tree.nodes
    left_of, right_of = nodes.left, nodes.right
    split_dims, split_values = nodes.split_dim, nodes.split_value
    firsts, lasts = nodes.first, nodes.last
    lows = tree.bounding_box.lows.tolist()
    highs = tree.bounding_box.highs.tolist()
    coords = query.tolist()

    root_dists = [
        metric.interval_distance(coords[dim], lows[dim], highs[dim], dim)
        for dim in range(tree.dimension)
    ]
    # Entries: (node, lower bound, per-dimension bound contributions).
    stack: List[Tuple[int, float, List[float]]] = [(tree.root, sum(root_dists), root_dists)]
    while stack:
        node, mindist, dists = stack.pop()
        if mindist * scale > result.worst_dist():
            continue
        stats.nodes_visited += 1
        left = left_of[node]
        if left == NO_CHILD:
            if checks is not None and stats.leaves_visited >= checks:
                stats.truncated = True
                return False
            stats.leaves_visited += 1
            members = tree.indices[firsts[node] : lasts[node]]
            if removed is not None:
                members = members[~removed[members]]
                if members.shape[0] == 0:
                    continue
            block = gather_points(tree.data_source, members, tree.dimension)
            stats.points_evaluated += int(members.shape[0])
            result.add_candidates(kernel(query, block), members)
            continue

        dim = split_dims[node]
        split = split_values[node]
        value = coords[dim]
        if value < split:
            close, far = left, right_of[node]
            cut = metric.interval_distance(value, split, highs[dim], dim)
        else:
            close, far = right_of[node], left
            cut = metric.interval_distance(value, lows[dim], split, dim)
        if cut > dists[dim]:
            far_dists = list(dists)
            far_dists[dim] = cut
            far_min = sum(far_dists)
        else:
            far_dists = dists
            far_min = mindist
        if far_min * scale <= result.worst_dist():
            stack.append((far, far_min, far_dists))
        stack.append((close, mindist, dists))
    return True


def find_neighbors(
    trees: Sequence[KDTreeCore],
    query: np.ndarray,
    result: ResultSet,
    params: SearchParameters | None = None,
    *,
    removed: np.ndarray | None = None,
) -> SearchStats:
    """Feed ``result`` with candidates from every tree in ``trees``.

    ``query`` must already be prepared with :func:`prepare_query`. The
    ``checks`` budget is shared by all trees. ``removed`` is a boolean mask
    over data-source indices whose set entries are never offered.
    """

    params = params or SearchParameters()
    stats = SearchStats()
    with log_operation(LOGGER, "tree_query", level=logging.DEBUG) as op_log:
        use_numba = kx_config.runtime_config().enable_numba
        scale = 1.0 + max(params.eps, result.eps)
        for tree in trees:
            kernel = tree.metric.row_kernel(use_numba)
            completed = _search_tree(
                tree,
                query,
                result,
                scale=scale,
                checks=params.checks,
                kernel=kernel,
                removed=removed,
                stats=stats,
            )
            if not completed:
                break
        op_log.add_metadata(
            trees=len(trees),
            leaves=stats.leaves_visited,
            nodes=stats.nodes_visited,
            points=stats.points_evaluated,
            truncated=stats.truncated,
            results=len(result),
        )
    return stats


__all__ = ["SearchStats", "find_neighbors", "prepare_query"]
