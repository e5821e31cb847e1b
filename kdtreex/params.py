from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any

from kdtreex import config as kx_config
from kdtreex.exceptions import ConstructionError, QueryError


@dataclass(frozen=True)
class SearchParameters:
    """Per-query knobs consumed by the branch-and-bound search.

    Parameters
    ----------
    eps:
        Approximation slack. A subtree is skipped once its lower bound times
        ``1 + eps`` exceeds the worst accepted distance; ``0`` is exact.
    sorted:
        Whether finalized results are ordered by ascending distance.
    checks:
        Maximum number of leaves visited per query, ``None`` for no cap.
    """

    eps: float = 0.0
    sorted: bool = True
    checks: int | None = None

    def __post_init__(self) -> None:
        if not self.eps >= 0.0:
            raise QueryError(f"eps must be >= 0, got {self.eps}")
        if self.checks is not None and self.checks <= 0:
            raise QueryError(f"checks must be a positive integer, got {self.checks}")


@dataclass(frozen=True)
class IndexParameters:
    """Build-time configuration threaded through tree construction."""

    leaf_max_size: int = 10
    metric: str = "l2"
    chunk_nodes: int = 1024
    max_nodes: int | None = None

    def __post_init__(self) -> None:
        if self.leaf_max_size < 1:
            raise ConstructionError(
                f"leaf_max_size must be >= 1, got {self.leaf_max_size}"
            )
        if self.chunk_nodes < 1:
            raise ConstructionError(f"chunk_nodes must be >= 1, got {self.chunk_nodes}")
        if self.max_nodes is not None and self.max_nodes < 1:
            raise ConstructionError(f"max_nodes must be >= 1, got {self.max_nodes}")
        # kdtreex.core imports this module.
        from kdtreex.core.metrics import get_metric

        try:
            get_metric(self.metric)
        except KeyError as exc:
            raise ConstructionError(f"Unknown metric '{self.metric}'") from exc

    @classmethod
    def from_runtime(cls, **overrides: Any) -> "IndexParameters":
        """Defaults taken from the active runtime configuration."""

        runtime = kx_config.runtime_config()
        base = cls(
            leaf_max_size=runtime.leaf_max_size,
            metric=runtime.metric,
            chunk_nodes=runtime.arena_chunk_nodes,
            max_nodes=runtime.arena_max_nodes,
        )
        return replace(base, **overrides) if overrides else base


__all__ = ["IndexParameters", "SearchParameters"]
