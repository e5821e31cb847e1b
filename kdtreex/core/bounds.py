from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence, Tuple

import numpy as np


@dataclass(frozen=True, eq=False)
class BoundingBox:
    """Axis-aligned box stored as per-dimension ``lows`` and ``highs``."""

    lows: np.ndarray
    highs: np.ndarray

    def __post_init__(self) -> None:
        lows = np.asarray(self.lows, dtype=np.float64).reshape(-1)
        highs = np.asarray(self.highs, dtype=np.float64).reshape(-1)
        if lows.shape != highs.shape:
            raise ValueError("BoundingBox lows/highs must have identical shapes.")
        object.__setattr__(self, "lows", lows)
        object.__setattr__(self, "highs", highs)

    @classmethod
    def from_points(cls, block: Any) -> "BoundingBox":
        arr = np.asarray(block, dtype=np.float64)
        if arr.ndim != 2 or arr.shape[0] == 0:
            raise ValueError("BoundingBox.from_points expects a non-empty (n, d) block.")
        return cls(lows=arr.min(axis=0), highs=arr.max(axis=0))

    @classmethod
    def from_intervals(cls, intervals: Sequence[Tuple[float, float]]) -> "BoundingBox":
        pairs = np.asarray(intervals, dtype=np.float64).reshape(-1, 2)
        return cls(lows=pairs[:, 0], highs=pairs[:, 1])

    @property
    def dimension(self) -> int:
        return int(self.lows.shape[0])

    def intervals(self) -> Tuple[Tuple[float, float], ...]:
        return tuple(zip(self.lows.tolist(), self.highs.tolist()))

    def extents(self) -> np.ndarray:
        return self.highs - self.lows

    def widest_dimension(self) -> int:
        """Dimension of largest extent; the lowest index wins on ties."""

        return int(np.argmax(self.extents()))

    def split(self, dim: int, value: float) -> Tuple["BoundingBox", "BoundingBox"]:
        left_highs = self.highs.copy()
        left_highs[dim] = value
        right_lows = self.lows.copy()
        right_lows[dim] = value
        return (
            BoundingBox(lows=self.lows, highs=left_highs),
            BoundingBox(lows=right_lows, highs=self.highs),
        )

    def contains(self, other: "BoundingBox") -> bool:
        return bool(np.all(self.lows <= other.lows) and np.all(other.highs <= self.highs))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, BoundingBox):
            return NotImplemented
        return bool(
            np.array_equal(self.lows, other.lows) and np.array_equal(self.highs, other.highs)
        )


__all__ = ["BoundingBox"]
