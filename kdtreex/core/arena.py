from __future__ import annotations

from dataclasses import dataclass
from typing import List

import numpy as np

from kdtreex.exceptions import AllocationError

NO_CHILD = -1

NODE_DTYPE = np.dtype(
    [
        ("left", np.int64),
        ("right", np.int64),
        ("split_dim", np.int64),
        ("split_value", np.float64),
        ("first", np.int64),
        ("last", np.int64),
    ]
)


@dataclass(frozen=True)
class NodeTable:
    """Contiguous, read-only copy of the arena columns used during traversal.

    Columns are plain Python lists so per-node reads in the search loop stay
    cheap. A node is a leaf when ``left[node] == NO_CHILD``.
    """

    left: List[int]
    right: List[int]
    split_dim: List[int]
    split_value: List[float]
    first: List[int]
    last: List[int]

    def __len__(self) -> int:
        return len(self.left)

    def is_leaf(self, node: int) -> bool:
        return self.left[node] == NO_CHILD


class PooledAllocator:
    """Arena handing out node records from fixed-size chunks.

    Nodes are never freed one by one; :meth:`release` drops every chunk at
    once. With ``max_nodes`` set the arena refuses to grow past that many
    nodes and raises :class:`AllocationError`.
    """

    def __init__(self, chunk_nodes: int = 1024, *, max_nodes: int | None = None) -> None:
        if chunk_nodes <= 0:
            raise ValueError("chunk_nodes must be positive.")
        self._chunk_nodes = int(chunk_nodes)
        self._max_nodes = max_nodes
        self._chunks: List[np.ndarray] = []
        self._used = 0

    @property
    def chunk_nodes(self) -> int:
        return self._chunk_nodes

    @property
    def max_nodes(self) -> int | None:
        return self._max_nodes

    @property
    def num_nodes(self) -> int:
        return self._used

    @property
    def num_chunks(self) -> int:
        return len(self._chunks)

    @property
    def reserved_bytes(self) -> int:
        return sum(int(chunk.nbytes) for chunk in self._chunks)

    @property
    def used_bytes(self) -> int:
        return self._used * NODE_DTYPE.itemsize

    def __len__(self) -> int:
        return self._used

    def allocate(self) -> int:
        if self._max_nodes is not None and self._used >= self._max_nodes:
            raise AllocationError(self._used + 1, self._max_nodes)
        if self._used == len(self._chunks) * self._chunk_nodes:
            chunk = np.empty(self._chunk_nodes, dtype=NODE_DTYPE)
            chunk["left"] = NO_CHILD
            chunk["right"] = NO_CHILD
            self._chunks.append(chunk)
        node = self._used
        self._used += 1
        return node

    def _record(self, node: int) -> np.void:
        if node < 0 or node >= self._used:
            raise IndexError(f"Node {node} was not allocated from this arena.")
        chunk, offset = divmod(node, self._chunk_nodes)
        return self._chunks[chunk][offset]

    def set_leaf(self, node: int, first: int, last: int) -> None:
        record = self._record(node)
        record["left"] = NO_CHILD
        record["right"] = NO_CHILD
        record["split_dim"] = -1
        record["split_value"] = 0.0
        record["first"] = first
        record["last"] = last

    def set_internal(
        self, node: int, split_dim: int, split_value: float, left: int, right: int
    ) -> None:
        record = self._record(node)
        record["left"] = left
        record["right"] = right
        record["split_dim"] = split_dim
        record["split_value"] = split_value
        record["first"] = 0
        record["last"] = 0

    def read(self, node: int) -> tuple:
        """Return ``(left, right, split_dim, split_value, first, last)``."""

        record = self._record(node)
        return (
            int(record["left"]),
            int(record["right"]),
            int(record["split_dim"]),
            float(record["split_value"]),
            int(record["first"]),
            int(record["last"]),
        )

    def freeze(self) -> NodeTable:
        if self._chunks:
            nodes = np.concatenate(self._chunks)[: self._used]
        else:
            nodes = np.empty(0, dtype=NODE_DTYPE)
        return NodeTable(
            left=nodes["left"].tolist(),
            right=nodes["right"].tolist(),
            split_dim=nodes["split_dim"].tolist(),
            split_value=nodes["split_value"].tolist(),
            first=nodes["first"].tolist(),
            last=nodes["last"].tolist(),
        )

    def release(self) -> None:
        self._chunks = []
        self._used = 0


__all__ = ["NODE_DTYPE", "NO_CHILD", "NodeTable", "PooledAllocator"]
