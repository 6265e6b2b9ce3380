"""Collection-sharded vector storage on top of SQLite.

Each ``(type, level)`` pair gets its own table named ``docvector_<type>_<level>``.
A ``_collections`` registry row pins the vector dimensionality and embedding
model of a collection the first time it is written to.
"""

from __future__ import annotations

import asyncio
import logging
import re
import sqlite3
from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable, Sequence, TypeVar

import numpy as np
import orjson

from docvector.core.errors import DimensionMismatchError, ModelMismatchError, StoreError
from docvector.db.sqlite import SQLiteDatabase, quote_identifier
from docvector.models.entities import (
    CONTENT_TYPES,
    HIERARCHY_LEVELS,
    Chunk,
    CollectionStats,
    ContentType,
    EmbeddedChunk,
    HierarchyLevel,
    SearchHit,
    SearchQuery,
)
from docvector.utils.time import now_ms
from docvector.utils.vectors import as_vector, cosine_distances, from_blob, to_blob

logger = logging.getLogger(__name__)

TABLE_PREFIX = "docvector"
REGISTRY_TABLE = "_collections"
DEFAULT_K = 10
_DELETE_CHUNK = 500

_NAME_RE = re.compile(
    rf"^{TABLE_PREFIX}_({'|'.join(CONTENT_TYPES)})_({'|'.join(HIERARCHY_LEVELS)})$"
)

_REGISTRY_SCHEMA = f"""
CREATE TABLE IF NOT EXISTS {REGISTRY_TABLE} (
    name TEXT PRIMARY KEY,
    type TEXT NOT NULL,
    level TEXT NOT NULL,
    dim INTEGER NOT NULL,
    model TEXT NOT NULL,
    created INTEGER NOT NULL
)
"""

_COLUMNS = (
    "id",
    "content",
    "type",
    "level",
    "path",
    "symbol",
    "kind",
    "parent",
    "line_start",
    "line_end",
    "lang",
    "meta",
    "vec",
    "model",
    "created",
    "updated",
)

T = TypeVar("T")


def collection_name(type: ContentType, level: HierarchyLevel) -> str:
    if type not in CONTENT_TYPES or level not in HIERARCHY_LEVELS:
        raise ValueError(f"unknown collection key ({type!r}, {level!r})")
    return f"{TABLE_PREFIX}_{type}_{level}"


def parse_collection_name(name: str) -> tuple[ContentType, HierarchyLevel] | None:
    """Inverse of :func:`collection_name`; ``None`` for tables we do not own."""
    match = _NAME_RE.match(name)
    if match is None:
        return None
    return match.group(1), match.group(2)  # type: ignore[return-value]


@dataclass(slots=True)
class CollectionInfo:
    name: str
    type: ContentType
    level: HierarchyLevel
    dim: int | None
    model: str | None


class SQLiteVectorStore:
    """Default :class:`~docvector.core.protocols.VectorStore` backend."""

    def __init__(self, db_path: Path | str) -> None:
        self._db = SQLiteDatabase(db_path)
        self._collections: dict[str, CollectionInfo] | None = None
        self._lock = asyncio.Lock()

    # -- lifecycle -----------------------------------------------------

    async def connect(self) -> None:
        async with self._lock:
            await asyncio.to_thread(self._connect_sync)

    async def close(self) -> None:
        async with self._lock:
            await asyncio.to_thread(self._db.close)
            self._collections = None

    # -- writes ----------------------------------------------------------

    async def insert(self, chunks: Sequence[EmbeddedChunk]) -> None:
        if chunks:
            await self._run(self._insert_sync, list(chunks), None)

    async def upsert(self, chunks: Sequence[EmbeddedChunk]) -> None:
        if chunks:
            await self._run(self._upsert_sync, list(chunks))

    async def delete_by_ids(self, ids: Iterable[str]) -> int:
        id_list = list(dict.fromkeys(ids))
        if not id_list:
            return 0
        return await self._run(self._delete_by_ids_sync, id_list)

    async def delete_by_path(self, path: str) -> int:
        return await self._run(self._delete_where_sync, "path = ?", [path])

    async def drop_collection(self, name: str) -> bool:
        return await self._run(self._drop_sync, name)

    # -- reads -----------------------------------------------------------

    async def search(self, vector: np.ndarray, query: SearchQuery) -> list[SearchHit]:
        return await self._run(self._search_sync, as_vector(vector), query)

    async def get_by_id(self, chunk_id: str) -> Chunk | None:
        rows = await self._run(self._select_sync, "id = ?", [chunk_id], None, None)
        return rows[0] if rows else None

    async def get_by_path(
        self,
        path: str,
        types: Sequence[ContentType] | None = None,
        levels: Sequence[HierarchyLevel] | None = None,
    ) -> list[Chunk]:
        return await self._run(self._select_sync, "path = ?", [path], types, levels)

    async def list_collections(self) -> list[CollectionStats]:
        return await self._run(self._list_sync)

    async def list_paths(self, types: Sequence[ContentType] | None = None) -> list[str]:
        return await self._run(self._paths_sync, types)

    async def count(self) -> int:
        stats = await self.list_collections()
        return sum(item.count for item in stats)

    # -- internals -------------------------------------------------------

    async def _run(self, fn: Callable[..., T], *args: Any) -> T:
        async with self._lock:
            return await asyncio.to_thread(self._call, fn, args)

    def _call(self, fn: Callable[..., T], args: tuple[Any, ...]) -> T:
        if not self._db.is_open:
            self._connect_sync()
        return fn(*args)

    def _connect_sync(self) -> None:
        try:
            self._db.connect()
            self._db.execute(_REGISTRY_SCHEMA)
            self._db.commit()
        except sqlite3.Error as exc:
            raise StoreError(f"cannot open vector store at {self._db.db_path}: {exc}") from exc
        self._collections = None

    def _load_collections(self) -> dict[str, CollectionInfo]:
        if self._collections is not None:
            return self._collections
        registry: dict[str, tuple[int, str]] = {}
        for row in self._db.query(f"SELECT name, dim, model FROM {REGISTRY_TABLE}"):
            try:
                registry[row["name"]] = (int(row["dim"]), str(row["model"]))
            except (TypeError, ValueError):
                logger.warning("Ignoring unreadable registry row for %s", row["name"])
        collections: dict[str, CollectionInfo] = {}
        for name in self._db.table_names():
            key = parse_collection_name(name)
            if key is None:
                continue
            dim, model = registry.get(name, (None, None))
            collections[name] = CollectionInfo(name=name, type=key[0], level=key[1], dim=dim, model=model)
        self._collections = collections
        return collections

    def _candidates(
        self,
        types: Sequence[ContentType] | None,
        levels: Sequence[HierarchyLevel] | None,
    ) -> list[CollectionInfo]:
        collections = self._load_collections()
        return [
            info
            for name, info in sorted(collections.items())
            if (not types or info.type in types) and (not levels or info.level in levels)
        ]

    def _ensure_collection(self, name: str, type: ContentType, level: HierarchyLevel, dim: int, model: str) -> None:
        info = self._load_collections().get(name)
        if info is not None and info.dim is not None:
            if info.dim != dim:
                raise DimensionMismatchError(name, info.dim, dim)
            if info.model != model:
                raise ModelMismatchError(name, info.model, model)
            return
        table = quote_identifier(name)
        with self._db.transaction() as cur:
            cur.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {table} (
                    id TEXT NOT NULL,
                    content TEXT NOT NULL,
                    type TEXT NOT NULL,
                    level TEXT NOT NULL,
                    path TEXT NOT NULL,
                    symbol TEXT,
                    kind TEXT,
                    parent TEXT,
                    line_start INTEGER,
                    line_end INTEGER,
                    lang TEXT,
                    meta BLOB,
                    vec BLOB NOT NULL,
                    model TEXT NOT NULL,
                    created INTEGER NOT NULL,
                    updated INTEGER NOT NULL
                )
                """
            )
            cur.execute(f"CREATE INDEX IF NOT EXISTS {quote_identifier(name + '_id')} ON {table}(id)")
            cur.execute(f"CREATE INDEX IF NOT EXISTS {quote_identifier(name + '_path')} ON {table}(path)")
            cur.execute(
                f"INSERT OR REPLACE INTO {REGISTRY_TABLE} (name, type, level, dim, model, created) VALUES (?, ?, ?, ?, ?, ?)",
                [name, type, level, dim, model, now_ms()],
            )
        logger.info("Created collection %s", name, extra={"ctx_dim": dim, "ctx_model": model})
        self._collections = None

    def _validated_groups(self, chunks: list[EmbeddedChunk]) -> dict[str, OrderedDict[str, EmbeddedChunk]]:
        """Group a batch by collection and check dim/model of every group before any write."""
        groups: dict[str, OrderedDict[str, EmbeddedChunk]] = {}
        for chunk in chunks:
            name = collection_name(chunk.type, chunk.level)
            group = groups.setdefault(name, OrderedDict())
            group.pop(chunk.id, None)
            group[chunk.id] = chunk

        for name, group in groups.items():
            first = next(iter(group.values()))
            for chunk in group.values():
                if chunk.dim != first.dim:
                    raise DimensionMismatchError(name, first.dim, chunk.dim)
                if chunk.model != first.model:
                    raise ModelMismatchError(name, first.model, chunk.model)
            info = self._load_collections().get(name)
            if info is not None and info.dim is not None:
                if info.dim != first.dim:
                    raise DimensionMismatchError(name, info.dim, first.dim)
                if info.model != first.model:
                    raise ModelMismatchError(name, info.model, first.model)
        return groups

    def _insert_sync(self, chunks: list[EmbeddedChunk], created: dict[str, int] | None) -> None:
        groups = self._validated_groups(chunks)
        timestamp = now_ms()
        created = created or {}
        placeholders = ", ".join("?" for _ in _COLUMNS)
        try:
            for name, group in groups.items():
                first = next(iter(group.values()))
                self._ensure_collection(name, first.type, first.level, first.dim, first.model)
                rows = [_to_row(chunk, created.get(chunk.id, timestamp), timestamp) for chunk in group.values()]
                with self._db.transaction() as cur:
                    cur.executemany(
                        f"INSERT INTO {quote_identifier(name)} ({', '.join(_COLUMNS)}) VALUES ({placeholders})",
                        rows,
                    )
        except sqlite3.Error as exc:
            raise StoreError(f"insert failed: {exc}") from exc

    def _upsert_sync(self, chunks: list[EmbeddedChunk]) -> None:
        # A rejected batch must leave the stored rows untouched.
        self._validated_groups(chunks)
        ids = list(dict.fromkeys(chunk.id for chunk in chunks))
        created: dict[str, int] = {}
        for info in self._candidates(None, None):
            try:
                for batch in _batched(ids, _DELETE_CHUNK):
                    marks = ", ".join("?" for _ in batch)
                    for row in self._db.query(
                        f"SELECT id, MIN(created) AS created FROM {quote_identifier(info.name)} WHERE id IN ({marks}) GROUP BY id",
                        batch,
                    ):
                        created.setdefault(row["id"], int(row["created"]))
            except sqlite3.Error as exc:
                logger.warning("Could not read creation times from %s: %s", info.name, exc)
        # A failed delete leaves stale duplicates behind but never blocks the insert.
        self._delete_by_ids_sync(ids)
        self._insert_sync(chunks, created)

    def _delete_by_ids_sync(self, ids: list[str]) -> int:
        deleted = 0
        for batch in _batched(ids, _DELETE_CHUNK):
            marks = ", ".join("?" for _ in batch)
            deleted += self._delete_where_sync(f"id IN ({marks})", batch)
        return deleted

    def _delete_where_sync(self, where: str, params: list[Any]) -> int:
        deleted = 0
        for info in self._candidates(None, None):
            try:
                with self._db.transaction() as cur:
                    cur.execute(f"DELETE FROM {quote_identifier(info.name)} WHERE {where}", params)
                    deleted += max(cur.rowcount, 0)
            except sqlite3.Error as exc:
                logger.warning("Delete skipped for collection %s: %s", info.name, exc)
        return deleted

    def _drop_sync(self, name: str) -> bool:
        if parse_collection_name(name) is None:
            return False
        try:
            existed = self._db.table_exists(name)
            with self._db.transaction() as cur:
                cur.execute(f"DROP TABLE IF EXISTS {quote_identifier(name)}")
                cur.execute(f"DELETE FROM {REGISTRY_TABLE} WHERE name = ?", [name])
        except sqlite3.Error as exc:
            raise StoreError(f"cannot drop collection {name}: {exc}") from exc
        finally:
            self._collections = None
        return existed

    def _search_sync(self, vector: np.ndarray, query: SearchQuery) -> list[SearchHit]:
        k = query.k or DEFAULT_K
        where, params = _filters(query)
        scored: list[tuple[float, SearchHit]] = []
        for info in self._candidates(query.types, query.levels):
            try:
                rows = self._db.query(
                    f"SELECT * FROM {quote_identifier(info.name)} {where} ORDER BY rowid",
                    params,
                )
                if not rows:
                    continue
                matrix = np.vstack([from_blob(row["vec"]) for row in rows])
                if matrix.shape[1] != vector.shape[0]:
                    logger.warning(
                        "Skipping collection %s: query dim %d does not match %d",
                        info.name,
                        vector.shape[0],
                        matrix.shape[1],
                    )
                    continue
                scores = 1.0 - cosine_distances(matrix, vector)
                # Stable argsort keeps insertion order among equal scores.
                order = np.argsort(-scores, kind="stable")[:k]
                for idx in order:
                    score = float(scores[idx])
                    if query.min is not None and score < query.min:
                        continue
                    scored.append((score, SearchHit(chunk=_from_row(rows[idx]), score=score, vec=score)))
            except (sqlite3.Error, ValueError) as exc:
                logger.warning("Search skipped collection %s: %s", info.name, exc)
        scored.sort(key=lambda item: -item[0])
        return [hit for _, hit in scored[:k]]

    def _select_sync(
        self,
        where: str,
        params: list[Any],
        types: Sequence[ContentType] | None,
        levels: Sequence[HierarchyLevel] | None,
    ) -> list[Chunk]:
        results: list[Chunk] = []
        for info in self._candidates(types, levels):
            try:
                rows = self._db.query(
                    f"SELECT * FROM {quote_identifier(info.name)} WHERE {where} ORDER BY rowid",
                    params,
                )
                results.extend(_from_row(row) for row in rows)
            except (sqlite3.Error, ValueError) as exc:
                logger.warning("Lookup skipped collection %s: %s", info.name, exc)
        return results

    def _list_sync(self) -> list[CollectionStats]:
        stats: list[CollectionStats] = []
        for info in self._candidates(None, None):
            try:
                count = self._db.query(f"SELECT COUNT(*) AS n FROM {quote_identifier(info.name)}")[0]["n"]
            except sqlite3.Error as exc:
                logger.warning("Listing skipped collection %s: %s", info.name, exc)
                continue
            stats.append(
                CollectionStats(
                    name=info.name,
                    type=info.type,
                    level=info.level,
                    count=int(count),
                    dim=info.dim,
                    model=info.model,
                )
            )
        return stats

    def _paths_sync(self, types: Sequence[ContentType] | None) -> list[str]:
        paths: set[str] = set()
        for info in self._candidates(types, None):
            try:
                rows = self._db.query(f"SELECT DISTINCT path FROM {quote_identifier(info.name)}")
            except sqlite3.Error as exc:
                logger.warning("Path listing skipped collection %s: %s", info.name, exc)
                continue
            paths.update(row["path"] for row in rows)
        return sorted(paths)


def _filters(query: SearchQuery) -> tuple[str, list[Any]]:
    clauses: list[str] = []
    params: list[Any] = []
    if query.path:
        clauses.append("instr(path, ?) > 0")
        params.append(query.path)
    if query.lang:
        clauses.append("lang = ?")
        params.append(query.lang)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    return where, params


def _to_row(chunk: EmbeddedChunk, created: int, updated: int) -> tuple[Any, ...]:
    start, end = chunk.lines if chunk.lines else (None, None)
    return (
        chunk.id,
        chunk.content,
        chunk.type,
        chunk.level,
        chunk.path,
        chunk.symbol,
        chunk.kind,
        chunk.parent,
        start,
        end,
        chunk.lang,
        orjson.dumps(chunk.meta or {}, default=str),
        to_blob(chunk.vec),
        chunk.model,
        created,
        updated,
    )


def _from_row(row: sqlite3.Row) -> Chunk:
    lines = None
    if row["line_start"] is not None and row["line_end"] is not None:
        lines = (int(row["line_start"]), int(row["line_end"]))
    return Chunk(
        id=row["id"],
        content=row["content"],
        type=row["type"],
        level=row["level"],
        path=row["path"],
        symbol=row["symbol"],
        kind=row["kind"],
        parent=row["parent"],
        lines=lines,
        lang=row["lang"],
        meta=orjson.loads(row["meta"]) if row["meta"] else {},
    )


def _batched(items: list[str], size: int) -> Iterable[list[str]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


__all__ = [
    "TABLE_PREFIX",
    "CollectionInfo",
    "SQLiteVectorStore",
    "collection_name",
    "parse_collection_name",
]
