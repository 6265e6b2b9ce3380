"""Reranking helpers."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Sequence

import numpy as np

from docvector.core.protocols import Embedder
from docvector.models.entities import SearchHit
from docvector.utils.vectors import cosine

logger = logging.getLogger(__name__)

RERANK_DOC_CHARS = 500


def pair_text(query: str, content: str) -> str:
    return f"Query: {query}\nDocument: {content[:RERANK_DOC_CHARS]}"


class EmbeddingReranker:
    """Second-pass scoring of query/document pairs against the query embedding."""

    def __init__(self, embedder: Embedder) -> None:
        self.embedder = embedder

    async def rerank(
        self,
        query: str,
        hits: Sequence[SearchHit],
        top_k: int,
        query_vector: np.ndarray | None = None,
    ) -> list[SearchHit]:
        if not hits:
            return []
        if query_vector is None:
            query_vector = await self.embedder.embed_query(query)
        scored: list[SearchHit] = []
        for hit in hits:
            pair_vector = await self.embedder.embed_query(pair_text(query, hit.chunk.content))
            score = cosine(query_vector, pair_vector)
            scored.append(replace(hit, rerank=score, score=score))
        scored.sort(key=lambda hit: -hit.score)
        logger.debug("Reranked %d candidates", len(scored))
        return scored[:top_k]


def should_rerank(enabled: bool, override: bool | None) -> bool:
    if override is not None:
        return override
    return enabled


__all__ = ["EmbeddingReranker", "pair_text", "should_rerank"]
