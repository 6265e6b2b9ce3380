"""Retrieval orchestration components."""

from .search import SearchEngine, SearchOptions
from .rerank import EmbeddingReranker
from .hybrid import bm25_scores, graph_boost, hybrid_rescore

__all__ = [
    "SearchEngine",
    "SearchOptions",
    "EmbeddingReranker",
    "bm25_scores",
    "graph_boost",
    "hybrid_rescore",
]
