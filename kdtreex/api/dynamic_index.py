from __future__ import annotations

import io
from dataclasses import dataclass, replace
from typing import BinaryIO, List, Set, Tuple

import numpy as np

from kdtreex.api.base import NeighborQueries
from kdtreex.core.datasource import DataSource
from kdtreex.core.metrics import Metric, get_metric
from kdtreex.core.persistence import (
    DynamicHeader,
    read_dynamic_header,
    read_level,
    read_tree,
    write_dynamic_header,
    write_level,
    write_tree,
)
from kdtreex.core.tree import KDTreeCore, resolve_dimension
from kdtreex.diagnostics import log_operation
from kdtreex.exceptions import ConstructionError, SerializationError
from kdtreex.logging import get_logger
from kdtreex.params import IndexParameters

LOGGER = get_logger("api.dynamic")

_ABSENT = 0
_LIVE = 1
_REMOVED = 2


@dataclass(frozen=True)
class _SubTree:
    """Members of one level and the tree built over them (``None`` when empty)."""

    indices: np.ndarray
    tree: KDTreeCore | None


class DynamicIndex(NeighborQueries):
    """Logarithmic family of static trees maintained like a binary counter.

    Level ``i`` is occupied exactly when bit ``i`` of the insertion counter is
    set and then holds at most ``2**i`` points. Inserting a point carries it
    up through the occupied levels, merging their live members, until it
    reaches a free level. Removal only marks a tombstone; tombstoned points
    are physically dropped the next time their level is merged.
    """

    def __init__(
        self,
        data_source: DataSource,
        params: IndexParameters | None = None,
        *,
        dimension: int | None = None,
    ) -> None:
        self._params = params or IndexParameters.from_runtime()
        self._data_source = data_source
        self.dimension = resolve_dimension(data_source, dimension)
        self.metric: Metric = get_metric(self._params.metric)
        self.metric.validate_dimension(self.dimension)
        self._levels: List[_SubTree | None] = []
        self._counter = 0
        self._state = np.zeros(0, dtype=np.int8)
        self._removed = np.zeros(0, dtype=bool)
        self._tombstones = 0

    @classmethod
    def build(
        cls,
        data_source: DataSource,
        params: IndexParameters | None = None,
        *,
        dimension: int | None = None,
    ) -> "DynamicIndex":
        """Create an index holding every point currently in ``data_source``."""

        index = cls(data_source, params, dimension=dimension)
        count = int(data_source.point_count())
        if count:
            index.add_points(0, count)
        return index

    @property
    def params(self) -> IndexParameters:
        return self._params

    @property
    def data_source(self) -> DataSource:
        return self._data_source

    @property
    def insertion_count(self) -> int:
        return self._counter

    @property
    def num_points(self) -> int:
        return int(np.count_nonzero(self._state == _LIVE))

    def _grow_masks(self, size: int) -> None:
        if size <= self._state.shape[0]:
            return
        extra = size - self._state.shape[0]
        self._state = np.concatenate([self._state, np.zeros(extra, dtype=np.int8)])
        self._removed = np.concatenate([self._removed, np.zeros(extra, dtype=bool)])

    def _live_members(self, sub: _SubTree) -> np.ndarray:
        if self._tombstones == 0 or sub.indices.shape[0] == 0:
            return sub.indices
        return sub.indices[~self._removed[sub.indices]]

    def add_points(self, start: int, end: int) -> None:
        """Insert data-source indices ``[start, end)`` one at a time.

        Every touched level is rebuilt once, after the whole range has been
        carried in, and the new level list is installed in a single swap.
        """

        source_count = int(self._data_source.point_count())
        if not 0 <= start <= end <= source_count:
            raise ConstructionError(
                f"Cannot insert [{start}, {end}) from a data source of {source_count} points."
            )
        if start == end:
            return
        self._grow_masks(source_count)
        if np.any(self._state[start:end] != _ABSENT):
            raise ConstructionError(f"Points in [{start}, {end}) are already indexed.")

        with log_operation(LOGGER, "dynamic_insert") as op_log:
            levels = list(self._levels)
            dirty: Set[int] = set()
            dropped = 0
            for point in range(start, end):
                carried = [np.asarray([point], dtype=np.int64)]
                level = 0
                while level < len(levels) and levels[level] is not None:
                    sub = levels[level]
                    live = self._live_members(sub)
                    dropped += int(sub.indices.shape[0] - live.shape[0])
                    carried.append(live)
                    levels[level] = None
                    dirty.discard(level)
                    level += 1
                if level == len(levels):
                    levels.append(None)
                levels[level] = _SubTree(indices=np.concatenate(carried), tree=None)
                dirty.add(level)

            for level in sorted(dirty):
                members = levels[level].indices
                tree = KDTreeCore.build(
                    self._data_source, self._params, dimension=self.dimension, indices=members
                )
                levels[level] = _SubTree(indices=members, tree=tree)

            self._state[start:end] = _LIVE
            self._counter += end - start
            self._tombstones -= dropped
            self._levels = levels
            op_log.add_metadata(
                inserted=end - start,
                rebuilt=len(dirty),
                dropped=dropped,
                levels=len(levels),
                live=self.num_points,
            )

    def add_point(self, index: int) -> None:
        self.add_points(index, index + 1)

    def remove_point(self, index: int) -> bool:
        """Tombstone ``index``; ``False`` when it is not a live member."""

        if index < 0 or index >= self._state.shape[0] or self._state[index] != _LIVE:
            return False
        self._state[index] = _REMOVED
        removed = self._removed.copy()
        removed[index] = True
        self._removed = removed
        self._tombstones += 1
        return True

    def sub_trees(self) -> List[Tuple[int, int, int]]:
        """``(level, capacity, live_points)`` for every occupied level."""

        report = []
        for level, sub in enumerate(self._levels):
            if sub is not None:
                report.append((level, 2**level, int(self._live_members(sub).shape[0])))
        return report

    def _search_trees(self) -> List[KDTreeCore]:
        return [sub.tree for sub in self._levels if sub is not None and sub.tree is not None]

    def _removed_mask(self) -> np.ndarray | None:
        return self._removed if self._tombstones else None

    def used_memory(self) -> int:
        total = int(self._state.nbytes + self._removed.nbytes)
        for sub in self._levels:
            if sub is not None and sub.tree is not None:
                total += sub.tree.used_memory()
        return total

    def save(self, stream: BinaryIO) -> int:
        """Write every occupied level; tombstoned points are left out."""

        with log_operation(LOGGER, "dynamic_save") as op_log:
            levels = self._levels
            written = write_dynamic_header(
                stream,
                DynamicHeader(
                    dimension=self.dimension,
                    counter=self._counter,
                    source_count=int(self._data_source.point_count()),
                    leaf_max_size=self._params.leaf_max_size,
                    levels=len(levels),
                ),
            )
            rebuilt = 0
            for sub in levels:
                if sub is None:
                    written += write_level(stream, None)
                    continue
                live = self._live_members(sub)
                written += write_level(stream, int(live.shape[0]))
                if live.shape[0] == 0:
                    continue
                tree = sub.tree
                if live.shape[0] != sub.indices.shape[0]:
                    tree = KDTreeCore.build(
                        self._data_source, self._params, dimension=self.dimension, indices=live
                    )
                    rebuilt += 1
                written += write_tree(stream, tree)
            op_log.add_metadata(levels=len(levels), rebuilt=rebuilt, bytes=written)
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
    ) -> "DynamicIndex":
        """Restore an index saved with :meth:`save` over the same ``data_source``.

        The image does not record the metric; pass the ``IndexParameters.metric``
        used at build time, otherwise the runtime default is used.
        """

        params = params or IndexParameters.from_runtime()
        with log_operation(LOGGER, "dynamic_load") as op_log:
            header = read_dynamic_header(stream)
            source_count = int(data_source.point_count())
            if header.source_count != source_count:
                raise SerializationError(
                    f"Stored index was built over {header.source_count} points but the "
                    f"data source holds {source_count}."
                )
            params = replace(params, leaf_max_size=header.leaf_max_size)
            try:
                index = cls(data_source, params, dimension=header.dimension)
            except ConstructionError as exc:
                raise SerializationError(str(exc)) from exc

            levels: List[_SubTree | None] = []
            for level in range(header.levels):
                live = read_level(stream)
                expected = bool((header.counter >> level) & 1)
                if (live is not None) != expected:
                    raise SerializationError(
                        f"Level {level} occupancy disagrees with insertion counter "
                        f"{header.counter}."
                    )
                if live is None:
                    levels.append(None)
                elif live == 0:
                    levels.append(_SubTree(indices=np.zeros(0, dtype=np.int64), tree=None))
                else:
                    if live > 2**level:
                        raise SerializationError(
                            f"Level {level} holds {live} points, more than its capacity."
                        )
                    tree = read_tree(stream, data_source, params, expected_count=live)
                    levels.append(_SubTree(indices=tree.indices.copy(), tree=tree))
            if header.counter >> header.levels:
                raise SerializationError(
                    f"Insertion counter {header.counter} needs more than {header.levels} levels."
                )

            index._grow_masks(source_count)
            for sub in levels:
                if sub is None or sub.indices.shape[0] == 0:
                    continue
                if np.any(index._state[sub.indices] != _ABSENT):
                    raise SerializationError("A point is stored in more than one level.")
                index._state[sub.indices] = _LIVE
            index._levels = levels
            index._counter = header.counter
            op_log.add_metadata(levels=len(levels), live=index.num_points)
        return index

    @classmethod
    def from_bytes(
        cls,
        data: bytes,
        data_source: DataSource,
        params: IndexParameters | None = None,
    ) -> "DynamicIndex":
        return cls.load(io.BytesIO(data), data_source, params)

    def __repr__(self) -> str:
        return (
            f"DynamicIndex(points={self.num_points}, levels={len(self.sub_trees())}, "
            f"metric={self.metric.name!r})"
        )


__all__ = ["DynamicIndex"]
