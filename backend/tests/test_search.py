"""Tests for the search engine."""

from __future__ import annotations

import pytest

from conftest import make_chunk
from docvector.db.vector_store import SQLiteVectorStore
from docvector.ingest.embeddings import HashedEmbedder
from docvector.models.entities import GraphContext, SearchQuery
from docvector.retrieval.search import SearchEngine, SearchOptions

CONTENTS = {
    "cfg": ("def load_config(path):\n    return parse yaml configuration file", "src/config.py"),
    "db": ("class Database:\n    open sqlite connection pool", "src/db.py"),
    "cli": ("def main():\n    parse command line arguments", "src/cli.py"),
    "doc": ("# Configuration\n\nThe configuration file is yaml.", "README.md"),
}


@pytest.fixture
async def engine(store: SQLiteVectorStore, hashed_embedder: HashedEmbedder) -> SearchEngine:
    chunks = [
        make_chunk(id, content, type="docs" if path.endswith(".md") else "code", path=path, lang="python")
        for id, (content, path) in CONTENTS.items()
    ]
    await store.insert(await hashed_embedder.embed(chunks))
    return SearchEngine(store, hashed_embedder, SearchOptions(default_rerank=False))


async def test_search_returns_ranked_hits_with_highlights(engine: SearchEngine) -> None:
    result = await engine.search(SearchQuery(q="yaml configuration file", k=2))
    assert result.q == "yaml configuration file"
    assert result.total == len(result.hits) == 2
    assert {hit.chunk.id for hit in result.hits} == {"cfg", "doc"}
    scores = [hit.score for hit in result.hits]
    assert scores == sorted(scores, reverse=True)
    assert all(hit.bm25 is not None for hit in result.hits)
    assert any("**configuration**" in line for hit in result.hits for line in hit.hl)
    assert result.ms >= 0


async def test_alpha_one_matches_pure_vector_order(engine: SearchEngine) -> None:
    vector_only = await engine.search(SearchQuery(q="parse configuration", k=4, hybrid=False))
    blended = await engine.search(SearchQuery(q="parse configuration", k=4, hybrid=True, alpha=1.0))
    assert [hit.chunk.id for hit in blended.hits] == [hit.chunk.id for hit in vector_only.hits]
    assert [hit.score for hit in blended.hits] == [hit.score for hit in vector_only.hits]


async def test_search_validates_arguments(engine: SearchEngine) -> None:
    with pytest.raises(ValueError):
        await engine.search(SearchQuery(q="x", k=0))
    with pytest.raises(ValueError):
        await engine.search(SearchQuery(q="x", alpha=1.5))


async def test_min_threshold_applies_after_blending(engine: SearchEngine) -> None:
    unfiltered = await engine.search(SearchQuery(q="yaml configuration"))
    scores = [hit.score for hit in unfiltered.hits]
    assert len(set(scores)) > 1
    threshold = (max(scores) + min(scores)) / 2

    result = await engine.search(SearchQuery(q="yaml configuration", min=threshold))
    assert result.hits
    assert all(hit.score >= threshold for hit in result.hits)
    assert [hit.chunk.id for hit in result.hits] == [
        hit.chunk.id for hit in unfiltered.hits if hit.score >= threshold
    ]
    assert len(result.hits) < len(unfiltered.hits)

    nothing = await engine.search(SearchQuery(q="yaml configuration", min=2.0))
    assert nothing.hits == []
    assert nothing.total == 0


async def test_filters_reach_the_store(engine: SearchEngine) -> None:
    result = await engine.search(SearchQuery(q="parse", types=["docs"]))
    assert [hit.chunk.id for hit in result.hits] == ["doc"]
    result = await engine.search(SearchQuery(q="parse", path="cli"))
    assert [hit.chunk.id for hit in result.hits] == ["cli"]


async def test_rerank_trims_to_k_and_records_scores(engine: SearchEngine) -> None:
    result = await engine.search(SearchQuery(q="parse configuration", k=1, rerank=True))
    assert len(result.hits) == 1
    assert result.hits[0].rerank is not None
    assert result.hits[0].score == result.hits[0].rerank


async def test_find_similar_excludes_the_chunk(engine: SearchEngine, store: SQLiteVectorStore) -> None:
    chunk = await store.get_by_id("cfg")
    assert chunk is not None
    hits = await engine.find_similar(chunk, k=2)
    assert hits
    assert all(hit.chunk.id != "cfg" for hit in hits)
    assert all(hit.chunk.type == "code" for hit in hits)
    assert len(hits) <= 2


async def test_search_with_context_boosts_related_paths(engine: SearchEngine) -> None:
    plain = await engine.search(SearchQuery(q="parse", k=4, hybrid=False))
    boosted = await engine.search_with_context(
        SearchQuery(q="parse", k=4, hybrid=False), GraphContext(dependencies=["src/db.py"])
    )
    db_plain = next(hit for hit in plain.hits if hit.chunk.id == "db")
    db_boosted = next(hit for hit in boosted.hits if hit.chunk.id == "db")
    assert db_boosted.boost == pytest.approx(0.15)
    assert db_boosted.score == pytest.approx(min(1.0, db_plain.score + 0.15))


async def test_scoped_helpers(engine: SearchEngine) -> None:
    code = await engine.search_code("parse configuration")
    assert code.hits and all(hit.chunk.type == "code" for hit in code.hits)
    docs = await engine.search_docs("configuration")
    assert [hit.chunk.id for hit in docs.hits] == ["doc"]
    semantic = await engine.semantic_code("parse yaml")
    assert all(hit.chunk.level == "symbol" for hit in semantic.hits)
    everything = await engine.global_search("configuration", k=3)
    assert len(everything.hits) <= 3
