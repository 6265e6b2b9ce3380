"""Search orchestration."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, replace
from typing import Any

from docvector.core.config import Settings
from docvector.core.metrics import SEARCH_COUNT, SEARCH_LATENCY
from docvector.core.protocols import Embedder, VectorStore
from docvector.models.entities import Chunk, GraphContext, SearchHit, SearchQuery, SearchResult
from docvector.retrieval.hybrid import graph_boost, hybrid_rescore
from docvector.retrieval.rerank import EmbeddingReranker, should_rerank
from docvector.utils.text import highlight

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SearchOptions:
    default_k: int = 10
    default_rerank: bool = True
    default_hybrid: bool = True
    default_alpha: float = 0.7
    rerank_multiplier: int = 3

    @classmethod
    def from_settings(cls, settings: Settings) -> "SearchOptions":
        return cls(
            default_k=settings.search_k,
            default_rerank=settings.search_rerank,
            default_hybrid=settings.search_hybrid,
            default_alpha=settings.search_alpha,
            rerank_multiplier=settings.rerank_multiplier,
        )


class SearchEngine:
    """Coordinates vector retrieval, BM25 blending, reranking and highlighting."""

    def __init__(
        self,
        store: VectorStore,
        embedder: Embedder,
        options: SearchOptions | None = None,
        reranker: EmbeddingReranker | None = None,
    ) -> None:
        self.store = store
        self.embedder = embedder
        self.options = options or SearchOptions()
        self.reranker = reranker or EmbeddingReranker(embedder)

    async def search(self, query: SearchQuery) -> SearchResult:
        started = time.perf_counter()
        k = query.k if query.k is not None else self.options.default_k
        if k < 1:
            raise ValueError(f"k must be positive, got {k}")
        hybrid = query.hybrid if query.hybrid is not None else self.options.default_hybrid
        alpha = query.alpha if query.alpha is not None else self.options.default_alpha
        if not 0.0 <= alpha <= 1.0:
            raise ValueError(f"alpha must be within [0, 1], got {alpha}")
        rerank = should_rerank(self.options.default_rerank, query.rerank)

        vector = await self.embedder.embed_query(query.q)
        pool = k * self.options.rerank_multiplier if rerank else k
        # The min threshold applies once, after blending and reranking.
        hits = await self.store.search(vector, replace(query, k=pool, min=None))

        if hits:
            if hybrid:
                hits = hybrid_rescore(query.q, hits, alpha)
            if rerank and len(hits) > k:
                hits = await self.reranker.rerank(query.q, hits, k, query_vector=vector)
            if query.min is not None:
                hits = [hit for hit in hits if hit.score >= query.min]
            hits = [replace(hit, hl=highlight(query.q, hit.chunk.content)) for hit in hits[:k]]

        elapsed = time.perf_counter() - started
        SEARCH_LATENCY.observe(elapsed)
        SEARCH_COUNT.labels(hybrid=str(hybrid).lower(), rerank=str(rerank).lower()).inc()
        logger.debug("Search returned %d hits", len(hits), extra={"ctx_query": query.q, "ctx_ms": elapsed * 1000})
        return SearchResult(hits=hits, q=query.q, total=len(hits), ms=elapsed * 1000)

    async def search_with_context(self, query: SearchQuery, context: GraphContext) -> SearchResult:
        """Run :meth:`search` then apply graph-aware boosting as a separate pass."""
        result = await self.search(query)
        result.hits = graph_boost(result.hits, context)
        return result

    async def find_similar(self, chunk: Chunk, k: int = 5) -> list[SearchHit]:
        vector = await self.embedder.embed_query(chunk.content)
        hits = await self.store.search(vector, SearchQuery(q=chunk.content, k=k + 1, types=[chunk.type]))
        return [hit for hit in hits if hit.chunk.id != chunk.id][:k]

    async def global_search(self, q: str, k: int = 20) -> SearchResult:
        return await self.search(SearchQuery(q=q, k=k, hybrid=True, rerank=True))

    async def search_code(self, q: str, **overrides: Any) -> SearchResult:
        return await self.search(SearchQuery(q=q, **{"types": ["code"], **overrides}))

    async def search_docs(self, q: str, **overrides: Any) -> SearchResult:
        return await self.search(SearchQuery(q=q, **{"types": ["docs", "comments"], **overrides}))

    async def semantic_code(self, q: str, k: int = 10) -> SearchResult:
        return await self.search(
            SearchQuery(
                q=f"Find code that: {q}",
                k=k,
                types=["code"],
                levels=["symbol"],
                hybrid=True,
                rerank=True,
            )
        )


__all__ = ["SearchEngine", "SearchOptions"]
