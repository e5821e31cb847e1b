from __future__ import annotations

from typing import Any, List, Tuple

import numpy as np

from kdtreex.core.arena import NO_CHILD, NodeTable, PooledAllocator
from kdtreex.core.bounds import BoundingBox
from kdtreex.core.datasource import DataSource, gather_points, source_bounding_box
from kdtreex.core.metrics import Metric, get_metric
from kdtreex.exceptions import ConstructionError
from kdtreex.logging import get_logger
from kdtreex.params import IndexParameters

LOGGER = get_logger("core.tree")


def resolve_dimension(source: DataSource, dimension: int | None = None) -> int:
    """Dimensionality from the caller, falling back to ``source.dimension``."""

    if dimension is None:
        dimension = getattr(source, "dimension", None)
    if dimension is None:
        raise ConstructionError(
            "Dimensionality is unknown: pass `dimension` or use a data source exposing it."
        )
    dimension = int(dimension)
    if dimension < 1:
        raise ConstructionError(f"Dimensionality must be >= 1, got {dimension}.")
    return dimension


def _slide_split(column: np.ndarray, value: float) -> float:
    """Move ``value`` onto a point coordinate so both sides are non-empty."""

    below = column < value
    if not below.any():
        lowest = column.min()
        return float(column[column > lowest].min())
    if below.all():
        return float(column.max())
    return value


def choose_split(block: np.ndarray, box: BoundingBox | None) -> Tuple[int, float] | None:
    """Pick ``(split_dim, split_value)`` for ``block`` with the sliding-midpoint rule.

    The widest dimension of ``box`` is cut at its midpoint. A box wider than
    the points themselves (a precomputed or parent box) may pick a dimension
    along which every point agrees; the tight box of ``block`` is used then.
    Returns ``None`` when all points coincide.
    """

    candidates = [box] if box is not None else []
    candidates.append(None)
    for candidate in candidates:
        current = candidate if candidate is not None else BoundingBox.from_points(block)
        dim = current.widest_dimension()
        column = block[:, dim]
        if column.min() == column.max():
            continue
        midpoint = float((current.lows[dim] + current.highs[dim]) * 0.5)
        return dim, _slide_split(column, midpoint)
    return None


class KDTreeCore:
    """A built KD-tree: permutation of point indices plus arena-backed nodes.

    Internal nodes send coordinates ``< split_value`` left and ``>=`` right.
    Leaves cover ``indices[first:last]``.
    """

    def __init__(
        self,
        *,
        data_source: DataSource,
        dimension: int,
        metric: Metric,
        leaf_max_size: int,
        indices: np.ndarray,
        bounding_box: BoundingBox,
        arena: PooledAllocator,
        root: int,
    ) -> None:
        self.data_source = data_source
        self.dimension = dimension
        self.metric = metric
        self.leaf_max_size = leaf_max_size
        self.indices = indices
        self.bounding_box = bounding_box
        self.arena = arena
        self.root = root
        self._nodes: NodeTable | None = None

    @classmethod
    def build(
        cls,
        data_source: DataSource,
        params: IndexParameters,
        *,
        dimension: int | None = None,
        indices: Any = None,
    ) -> "KDTreeCore":
        """Build over ``indices`` (default: every point of ``data_source``)."""

        dimension = resolve_dimension(data_source, dimension)
        metric = get_metric(params.metric)
        metric.validate_dimension(dimension)
        if indices is None:
            perm = np.arange(int(data_source.point_count()), dtype=np.int64)
            root_box = source_bounding_box(data_source)
        else:
            perm = np.array(indices, dtype=np.int64).reshape(-1)
            root_box = None
        if perm.shape[0] == 0:
            raise ConstructionError("Cannot build a KD-tree over zero points.")
        if root_box is not None and root_box.dimension != dimension:
            raise ConstructionError(
                f"Data source bounding box has dimension {root_box.dimension}, "
                f"expected {dimension}."
            )

        # Scratch coordinates follow the permutation while it is partitioned.
        scratch = gather_points(data_source, perm, dimension)
        if root_box is None:
            root_box = BoundingBox.from_points(scratch)

        arena = PooledAllocator(params.chunk_nodes, max_nodes=params.max_nodes)
        leaf_max_size = params.leaf_max_size
        root = arena.allocate()
        stack: List[Tuple[int, int, int, BoundingBox | None]] = [
            (root, 0, int(perm.shape[0]), root_box)
        ]
        while stack:
            node, first, last, box = stack.pop()
            if last - first <= leaf_max_size:
                arena.set_leaf(node, first, last)
                continue
            block = scratch[first:last]
            split = choose_split(block, box)
            if split is None:
                arena.set_leaf(node, first, last)
                continue
            split_dim, split_value = split
            goes_left = block[:, split_dim] < split_value
            order = np.concatenate(
                [np.flatnonzero(goes_left), np.flatnonzero(~goes_left)]
            )
            perm[first:last] = perm[first:last][order]
            scratch[first:last] = block[order]
            mid = first + int(goes_left.sum())

            left = arena.allocate()
            right = arena.allocate()
            arena.set_internal(node, split_dim, split_value, left, right)
            stack.append((right, mid, last, None))
            stack.append((left, first, mid, None))

        tree = cls(
            data_source=data_source,
            dimension=dimension,
            metric=metric,
            leaf_max_size=leaf_max_size,
            indices=perm,
            bounding_box=root_box,
            arena=arena,
            root=root,
        )
        LOGGER.debug(
            "Built KD-tree: points=%d nodes=%d dimension=%d metric=%s",
            tree.num_points,
            tree.num_nodes,
            dimension,
            metric.name,
        )
        return tree

    @property
    def nodes(self) -> NodeTable:
        if self._nodes is None:
            self._nodes = self.arena.freeze()
        return self._nodes

    @property
    def num_points(self) -> int:
        return int(self.indices.shape[0])

    @property
    def num_nodes(self) -> int:
        return self.arena.num_nodes

    def depth(self) -> int:
        nodes = self.nodes
        deepest = 0
        stack = [(self.root, 1)]
        while stack:
            node, level = stack.pop()
            deepest = max(deepest, level)
            if nodes.left[node] != NO_CHILD:
                stack.append((nodes.left[node], level + 1))
                stack.append((nodes.right[node], level + 1))
        return deepest

    def leaves(self) -> List[Tuple[int, int]]:
        """``(first, last)`` ranges of every leaf in left-to-right order."""

        nodes = self.nodes
        ranges: List[Tuple[int, int]] = []
        stack = [self.root]
        while stack:
            node = stack.pop()
            if nodes.left[node] == NO_CHILD:
                ranges.append((nodes.first[node], nodes.last[node]))
                continue
            stack.append(nodes.right[node])
            stack.append(nodes.left[node])
        return ranges

    def used_memory(self) -> int:
        return self.arena.reserved_bytes + int(self.indices.nbytes)

    def release(self) -> None:
        self.arena.release()
        self._nodes = None


__all__ = ["KDTreeCore", "choose_split", "resolve_dimension"]
