from .results import (
    ApproximateKNNResultSet,
    KNNResultSet,
    RadiusKNNResultSet,
    RadiusResultSet,
    ResultSet,
    SearchResult,
)
from .search import SearchStats, find_neighbors, prepare_query

__all__ = [
    "ApproximateKNNResultSet",
    "KNNResultSet",
    "RadiusKNNResultSet",
    "RadiusResultSet",
    "ResultSet",
    "SearchResult",
    "SearchStats",
    "find_neighbors",
    "prepare_query",
]
