"""Error taxonomy shared by the build, query and persistence layers."""

from __future__ import annotations


class KDTreexError(Exception):
    """Base class for every error raised by kdtreex."""


class ConstructionError(KDTreexError, ValueError):
    """Raised when a tree cannot be built (empty dataset, bad dimensionality)."""


class QueryError(KDTreexError, ValueError):
    """Raised for invalid queries instead of returning an empty result."""


class SerializationError(KDTreexError, ValueError):
    """Raised when a saved index image cannot be decoded or does not match."""


class AllocationError(KDTreexError, MemoryError):
    """Raised when the node arena exceeds its configured capacity."""

    def __init__(self, requested: int, limit: int) -> None:
        super().__init__(
            f"Node arena exhausted: requested node #{requested} with max_nodes={limit}."
        )
        self.requested = requested
        self.limit = limit


__all__ = [
    "KDTreexError",
    "ConstructionError",
    "QueryError",
    "SerializationError",
    "AllocationError",
]
