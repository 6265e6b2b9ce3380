"""Protocols for the swappable storage, embedding and source backends."""

from __future__ import annotations

from typing import Callable, Iterable, Protocol, Sequence, runtime_checkable

import numpy as np

from docvector.models.entities import (
    Chunk,
    CollectionStats,
    Commit,
    ContentType,
    EmbeddedChunk,
    EmbedProgress,
    HierarchyLevel,
    SearchHit,
    SearchQuery,
)

EmbedProgressCallback = Callable[[EmbedProgress], None]


@runtime_checkable
class VectorStore(Protocol):
    """Collection-sharded storage for embedded chunks."""

    async def connect(self) -> None:
        ...

    async def close(self) -> None:
        ...

    async def insert(self, chunks: Sequence[EmbeddedChunk]) -> None:
        """Append chunks, creating each ``(type, level)`` collection on first write."""
        ...

    async def upsert(self, chunks: Sequence[EmbeddedChunk]) -> None:
        """Best-effort delete by id followed by insert."""
        ...

    async def delete_by_ids(self, ids: Iterable[str]) -> int:
        ...

    async def delete_by_path(self, path: str) -> int:
        ...

    async def search(self, vector: np.ndarray, query: SearchQuery) -> list[SearchHit]:
        """Nearest neighbours across the candidate collections, ``score = 1 - distance``."""
        ...

    async def get_by_id(self, chunk_id: str) -> Chunk | None:
        ...

    async def get_by_path(
        self,
        path: str,
        types: Sequence[ContentType] | None = None,
        levels: Sequence[HierarchyLevel] | None = None,
    ) -> list[Chunk]:
        ...

    async def list_collections(self) -> list[CollectionStats]:
        ...

    async def drop_collection(self, name: str) -> bool:
        ...

    async def list_paths(self, types: Sequence[ContentType] | None = None) -> list[str]:
        ...

    async def count(self) -> int:
        ...


@runtime_checkable
class Embedder(Protocol):
    """Batched text to vector function with a fixed dimensionality."""

    @property
    def dim(self) -> int:
        ...

    @property
    def model_name(self) -> str:
        ...

    async def load(self, on_progress: EmbedProgressCallback | None = None) -> None:
        ...

    async def embed(
        self,
        chunks: Sequence[Chunk],
        on_progress: EmbedProgressCallback | None = None,
    ) -> list[EmbeddedChunk]:
        """Embed chunks, preserving input order."""
        ...

    async def embed_query(self, text: str) -> np.ndarray:
        ...


@runtime_checkable
class FileSystem(Protocol):
    async def glob(self, patterns: Sequence[str], ignore: Sequence[str] = ()) -> list[str]:
        ...

    async def read(self, path: str) -> str:
        ...

    async def exists(self, path: str) -> bool:
        ...

    async def mtime(self, path: str) -> float:
        ...

    def lang(self, path: str) -> str | None:
        ...


@runtime_checkable
class GitClient(Protocol):
    async def commits(self, n: int) -> list[Commit]:
        ...

    async def branch(self) -> str:
        ...

    async def is_repo(self) -> bool:
        ...


__all__ = ["VectorStore", "Embedder", "FileSystem", "GitClient", "EmbedProgressCallback"]
