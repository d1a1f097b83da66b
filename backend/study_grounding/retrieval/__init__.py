"""Retrieval components."""

from .search import VectorSearch, format_search_results
from .similarity import cosine_similarity, rank_candidates
from .tools import SearchTools
from .types import SearchOptions, SearchResult, ToolCallRecord

__all__ = [
    "VectorSearch",
    "format_search_results",
    "cosine_similarity",
    "rank_candidates",
    "SearchTools",
    "SearchOptions",
    "SearchResult",
    "ToolCallRecord",
]
