"""Public index façades."""

from .dynamic_index import DynamicIndex
from .static_index import StaticIndex

__all__ = [
    "DynamicIndex",
    "StaticIndex",
]
