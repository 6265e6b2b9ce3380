"""Tests for the collection-sharded SQLite vector store."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import numpy as np
import pytest

from conftest import embedded, make_chunk
from docvector.core.errors import DimensionMismatchError, ModelMismatchError
from docvector.db.vector_store import SQLiteVectorStore, collection_name, parse_collection_name
from docvector.models.entities import SearchQuery


def _query(**kwargs) -> SearchQuery:
    return SearchQuery(q="q", **kwargs)


def test_collection_names_round_trip() -> None:
    name = collection_name("code", "symbol")
    assert name == "docvector_code_symbol"
    assert parse_collection_name(name) == ("code", "symbol")
    assert parse_collection_name("docvector_code_galaxy") is None
    assert parse_collection_name("notes") is None
    with pytest.raises(ValueError):
        collection_name("binaries", "file")  # type: ignore[arg-type]


async def test_insert_and_search_by_cosine(store: SQLiteVectorStore) -> None:
    await store.insert(
        [
            embedded(make_chunk("a", "alpha"), [1.0, 0.0, 0.0]),
            embedded(make_chunk("b", "beta"), [0.0, 1.0, 0.0]),
            embedded(make_chunk("c", "gamma"), [1.0, 1.0, 0.0]),
        ]
    )
    hits = await store.search(np.array([1.0, 0.0, 0.0]), _query(k=2))
    assert [hit.chunk.id for hit in hits] == ["a", "c"]
    assert hits[0].score == pytest.approx(1.0, abs=1e-6)
    assert hits[1].score == pytest.approx(0.70710678, abs=1e-5)
    assert hits[0].vec == hits[0].score


async def test_min_score_filters_store_hits(store: SQLiteVectorStore) -> None:
    await store.insert(
        [
            embedded(make_chunk("a", "alpha"), [1.0, 0.0]),
            embedded(make_chunk("b", "beta"), [0.0, 1.0]),
        ]
    )
    hits = await store.search(np.array([1.0, 0.0]), _query(k=5, min=0.5))
    assert [hit.chunk.id for hit in hits] == ["a"]


async def test_dimension_mismatch_rejects_whole_batch(store: SQLiteVectorStore) -> None:
    await store.insert([embedded(make_chunk("a", "alpha"), [1.0, 0.0, 0.0])])
    batch = [
        embedded(make_chunk("d", "readme", type="docs", level="file", path="README.md"), [1.0, 0.0]),
        embedded(make_chunk("b", "beta"), [1.0, 0.0, 0.0, 0.0]),
    ]
    with pytest.raises(DimensionMismatchError) as info:
        await store.insert(batch)
    assert info.value.expected == 3
    assert info.value.actual == 4
    names = [stats.name for stats in await store.list_collections()]
    assert names == ["docvector_code_symbol"]
    assert await store.count() == 1


async def test_model_mismatch_is_rejected(store: SQLiteVectorStore) -> None:
    await store.insert([embedded(make_chunk("a", "alpha"), [1.0, 0.0], model="m1")])
    with pytest.raises(ModelMismatchError):
        await store.insert([embedded(make_chunk("b", "beta"), [0.0, 1.0], model="m2")])
    # A different collection may use another model.
    await store.insert([embedded(make_chunk("c", "doc", type="docs"), [0.0, 1.0, 0.0], model="m2")])
    stats = {item.name: item for item in await store.list_collections()}
    assert stats["docvector_code_symbol"].model == "m1"
    assert stats["docvector_docs_symbol"].dim == 3


async def test_duplicate_ids_in_batch_keep_last(store: SQLiteVectorStore) -> None:
    await store.insert(
        [
            embedded(make_chunk("a", "first"), [1.0, 0.0]),
            embedded(make_chunk("a", "second"), [0.0, 1.0]),
        ]
    )
    chunk = await store.get_by_id("a")
    assert chunk is not None
    assert chunk.content == "second"
    assert await store.count() == 1


async def test_upsert_replaces_existing_rows(store: SQLiteVectorStore) -> None:
    await store.insert([embedded(make_chunk("a", "old"), [1.0, 0.0])])
    await store.upsert([embedded(make_chunk("a", "new"), [0.0, 1.0])])
    await store.upsert([embedded(make_chunk("a", "new"), [0.0, 1.0])])
    assert await store.count() == 1
    chunk = await store.get_by_id("a")
    assert chunk is not None and chunk.content == "new"


async def test_rejected_upsert_keeps_existing_rows(store: SQLiteVectorStore) -> None:
    await store.insert([embedded(make_chunk("a", "kept"), [1.0, 0.0], model="m1")])
    with pytest.raises(ModelMismatchError):
        await store.upsert([embedded(make_chunk("a", "replacement"), [0.0, 1.0], model="m2")])
    with pytest.raises(DimensionMismatchError):
        await store.upsert([embedded(make_chunk("a", "replacement"), [0.0, 1.0, 0.0], model="m1")])
    survivor = await store.get_by_id("a")
    assert survivor is not None
    assert survivor.content == "kept"
    assert await store.count() == 1


async def test_chunk_fields_survive_storage(store: SQLiteVectorStore) -> None:
    original = make_chunk(
        "a",
        "def load(path): ...",
        symbol="load",
        kind="function",
        parent="file-1",
        lines=(3, 9),
        lang="python",
        meta={"signature": "def load(path)", "params": ["path"], "is_exported": True},
    )
    await store.insert([embedded(original, [1.0, 0.0])])
    stored = await store.get_by_id("a")
    assert stored == original
    assert await store.get_by_id("missing") is None


async def test_delete_by_path_and_ids(store: SQLiteVectorStore) -> None:
    await store.insert(
        [
            embedded(make_chunk("a", "one", path="src/a.py"), [1.0, 0.0]),
            embedded(make_chunk("b", "two", path="src/a.py"), [1.0, 0.0]),
            embedded(make_chunk("c", "doc", type="docs", path="src/a.py"), [1.0, 0.0, 0.0]),
            embedded(make_chunk("d", "four", path="src/b.py"), [1.0, 0.0]),
        ]
    )
    assert await store.delete_by_path("src/a.py") == 3
    assert await store.delete_by_ids(["d", "missing"]) == 1
    assert await store.delete_by_ids([]) == 0
    assert await store.count() == 0


async def test_path_and_lang_filters(store: SQLiteVectorStore) -> None:
    await store.insert(
        [
            embedded(make_chunk("a", "one", path="src/core/a.py", lang="python"), [1.0, 0.0]),
            embedded(make_chunk("b", "two", path="web/app.ts", lang="typescript"), [1.0, 0.0]),
            embedded(make_chunk("c", "three", path="src/ui/c.ts", lang="typescript"), [1.0, 0.0]),
        ]
    )
    vector = np.array([1.0, 0.0])
    by_path = await store.search(vector, _query(k=10, path="src/"))
    assert [hit.chunk.id for hit in by_path] == ["a", "c"]
    by_lang = await store.search(vector, _query(k=10, lang="typescript"))
    assert [hit.chunk.id for hit in by_lang] == ["b", "c"]
    both = await store.search(vector, _query(k=10, path="src/", lang="typescript"))
    assert [hit.chunk.id for hit in both] == ["c"]


async def test_type_and_level_filters(store: SQLiteVectorStore) -> None:
    await store.insert(
        [
            embedded(make_chunk("code", "x"), [1.0, 0.0]),
            embedded(make_chunk("doc", "y", type="docs", level="file"), [1.0, 0.0]),
        ]
    )
    vector = np.array([1.0, 0.0])
    docs = await store.search(vector, _query(types=["docs"]))
    assert [hit.chunk.id for hit in docs] == ["doc"]
    symbols = await store.search(vector, _query(levels=["symbol"]))
    assert [hit.chunk.id for hit in symbols] == ["code"]
    assert await store.search(vector, _query(types=["prs"])) == []


async def test_ties_resolve_by_collection_then_insertion_order(store: SQLiteVectorStore) -> None:
    await store.insert(
        [
            embedded(make_chunk("doc", "y", type="docs"), [1.0, 0.0]),
            embedded(make_chunk("second", "b"), [1.0, 0.0]),
        ]
    )
    await store.insert([embedded(make_chunk("third", "c"), [2.0, 0.0])])
    hits = await store.search(np.array([1.0, 0.0]), _query(k=10))
    assert [hit.chunk.id for hit in hits] == ["second", "third", "doc"]


async def test_search_skips_collections_with_other_dims(store: SQLiteVectorStore) -> None:
    await store.insert(
        [
            embedded(make_chunk("a", "x"), [1.0, 0.0]),
            embedded(make_chunk("b", "y", type="docs"), [1.0, 0.0, 0.0]),
        ]
    )
    hits = await store.search(np.array([1.0, 0.0, 0.0]), _query(k=10))
    assert [hit.chunk.id for hit in hits] == ["b"]


async def test_list_and_drop_collections(store: SQLiteVectorStore) -> None:
    await store.insert(
        [
            embedded(make_chunk("a", "x", path="b.py"), [1.0, 0.0]),
            embedded(make_chunk("b", "y", type="docs", level="file", path="a.md"), [1.0, 0.0]),
        ]
    )
    stats = await store.list_collections()
    assert [(s.name, s.type, s.level, s.count, s.dim) for s in stats] == [
        ("docvector_code_symbol", "code", "symbol", 1, 2),
        ("docvector_docs_file", "docs", "file", 1, 2),
    ]
    assert await store.list_paths() == ["a.md", "b.py"]
    assert await store.list_paths(types=["code"]) == ["b.py"]
    assert await store.get_by_path("a.md", types=["docs"]) != []
    assert await store.drop_collection("docvector_docs_file") is True
    assert await store.drop_collection("docvector_docs_file") is False
    assert await store.drop_collection("not_ours") is False
    assert [s.name for s in await store.list_collections()] == ["docvector_code_symbol"]
    # A dropped collection can be recreated with a new dimensionality.
    await store.insert([embedded(make_chunk("c", "z", type="docs", level="file"), [1.0, 0.0, 0.0, 0.0])])
    dims = {s.name: s.dim for s in await store.list_collections()}
    assert dims["docvector_docs_file"] == 4


async def test_foreign_tables_are_ignored(tmp_path: Path) -> None:
    db_path = tmp_path / "shared.db"
    conn = sqlite3.connect(db_path)
    conn.execute("CREATE TABLE notes (body TEXT)")
    conn.execute("CREATE TABLE docvector_unknown_file (x TEXT)")
    conn.commit()
    conn.close()
    vector_store = SQLiteVectorStore(db_path)
    try:
        await vector_store.insert([embedded(make_chunk("a", "x"), [1.0, 0.0])])
        assert [s.name for s in await vector_store.list_collections()] == ["docvector_code_symbol"]
        hits = await vector_store.search(np.array([1.0, 0.0]), _query())
        assert [hit.chunk.id for hit in hits] == ["a"]
    finally:
        await vector_store.close()


async def test_store_reopens_after_close(tmp_path: Path) -> None:
    vector_store = SQLiteVectorStore(tmp_path / "v.db")
    await vector_store.insert([embedded(make_chunk("a", "x"), [1.0, 0.0])])
    await vector_store.close()
    assert await vector_store.count() == 1
    await vector_store.close()
