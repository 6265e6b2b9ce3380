"""Hybrid search utilities."""

from __future__ import annotations

import math
from dataclasses import replace
from typing import Sequence

from rank_bm25 import BM25Okapi

from docvector.models.entities import GraphContext, SearchHit
from docvector.utils.text import tokenize

BM25_K1 = 1.2
BM25_B = 0.75

DEPENDENT_BOOST = 0.10
DEPENDENCY_BOOST = 0.15
SIBLING_BOOST = 0.20


class LuceneBM25(BM25Okapi):
    """Okapi BM25 with the non-negative Lucene idf ``ln((N - df + 0.5) / (df + 0.5) + 1)``.

    The stock Okapi idf goes negative for terms in more than half the corpus,
    which breaks the small candidate sets BM25 is built over here.
    """

    def _calc_idf(self, nd: dict[str, int]) -> None:
        for word, freq in nd.items():
            self.idf[word] = math.log((self.corpus_size - freq + 0.5) / (freq + 0.5) + 1)


def bm25_scores(query: str, documents: Sequence[str]) -> list[float]:
    """Raw BM25 score of every document against ``query``, in input order."""
    if not documents:
        return []
    corpus = [tokenize(text) for text in documents]
    terms = tokenize(query)
    if not terms or not any(corpus):
        return [0.0] * len(documents)
    model = LuceneBM25(corpus, k1=BM25_K1, b=BM25_B)
    return [float(score) for score in model.get_scores(terms)]


def normalize_scores(scores: Sequence[float]) -> list[float]:
    top = max(scores, default=0.0)
    if top <= 0:
        return [0.0] * len(scores)
    return [score / top for score in scores]


def hybrid_score(vector_score: float, bm25: float, alpha: float) -> float:
    return alpha * vector_score + (1 - alpha) * bm25


def hybrid_rescore(query: str, hits: Sequence[SearchHit], alpha: float) -> list[SearchHit]:
    """Blend vector and normalized BM25 scores over exactly this candidate set.

    The sort is stable so ``alpha=1`` keeps the vector order and ``alpha=0``
    gives the BM25 order with vector order breaking ties.
    """
    if not 0.0 <= alpha <= 1.0:
        raise ValueError(f"alpha must be within [0, 1], got {alpha}")
    if not hits:
        return []
    normalized = normalize_scores(bm25_scores(query, [hit.chunk.content for hit in hits]))
    rescored = []
    for hit, bm in zip(hits, normalized):
        vector_score = hit.vec if hit.vec is not None else hit.score
        rescored.append(replace(hit, bm25=bm, score=hybrid_score(vector_score, bm, alpha)))
    rescored.sort(key=lambda hit: -hit.score)
    return rescored


def graph_boost(hits: Sequence[SearchHit], context: GraphContext) -> list[SearchHit]:
    """Add relationship bonuses, cap at 1.0 and re-sort."""
    dependents = set(context.dependents)
    dependencies = set(context.dependencies)
    siblings = set(context.siblings)
    boosted = []
    for hit in hits:
        boost = 0.0
        if hit.chunk.path in dependents:
            boost += DEPENDENT_BOOST
        if hit.chunk.path in dependencies:
            boost += DEPENDENCY_BOOST
        if hit.chunk.symbol and hit.chunk.symbol in siblings:
            boost += SIBLING_BOOST
        boosted.append(replace(hit, boost=boost, score=min(1.0, hit.score + boost)))
    boosted.sort(key=lambda hit: -hit.score)
    return boosted


__all__ = [
    "LuceneBM25",
    "bm25_scores",
    "normalize_scores",
    "hybrid_score",
    "hybrid_rescore",
    "graph_boost",
    "DEPENDENT_BOOST",
    "DEPENDENCY_BOOST",
    "SIBLING_BOOST",
]
