"""Retrieval orchestration components."""

from .hybrid import fuse, normalize_scores
from .keyword_index import KeywordIndex
from .search import SearchEngine
from .vector_index import VectorIndex

__all__ = [
    "KeywordIndex",
    "VectorIndex",
    "SearchEngine",
    "fuse",
    "normalize_scores",
]
