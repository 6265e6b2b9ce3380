"""Embedding backends."""

from __future__ import annotations

import asyncio
import hashlib
import logging
import re
from typing import Any, Sequence

import numpy as np

from docvector.core.config import Settings
from docvector.core.errors import EmbeddingError
from docvector.core.protocols import EmbedProgressCallback
from docvector.models.entities import Chunk, EmbeddedChunk, EmbedProgress
from docvector.utils.vectors import VECTOR_DTYPE

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"\w+")
MAX_INPUT_CHARS = 2000

_ROLE_TAGS = {
    "docs": "[documentation]",
    "comments": "[code comment]",
    "commits": "[git commit]",
    "prs": "[pull request]",
}


class ModelCache:
    """Single-slot holder for a loaded model handle.

    Concurrent requests for the model wait on the same load instead of
    starting a second one. Requesting a different model evicts the current one.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._name: str | None = None
        self._handle: Any = None
        self.loads = 0

    @property
    def current(self) -> str | None:
        return self._name

    async def get(self, name: str, loader) -> Any:
        async with self._lock:
            if self._name == name and self._handle is not None:
                return self._handle
            if self._name is not None:
                logger.info("Evicting embedding model %s", self._name)
            self._name, self._handle = None, None
            handle = await loader()
            self._name, self._handle = name, handle
            self.loads += 1
            return handle

    def evict(self) -> None:
        self._name, self._handle = None, None


def prepare_text(chunk: Chunk) -> str:
    """Prefix the chunk content with its role and cap its length."""
    parts: list[str] = []
    if chunk.type == "code":
        if chunk.symbol and chunk.kind:
            parts.append(f"[{chunk.kind}] {chunk.symbol}")
        if chunk.lang:
            parts.append(f"Language: {chunk.lang}")
    elif chunk.type in _ROLE_TAGS:
        parts.append(_ROLE_TAGS[chunk.type])
    parts.append(chunk.content)
    return "\n".join(parts)[:MAX_INPUT_CHARS]


class BaseEmbedder:
    """Shared batching, progress and validation around a backend ``_encode``."""

    def __init__(
        self,
        model_name: str,
        dim: int,
        batch_size: int = 32,
        cache: ModelCache | None = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        self._model_name = model_name
        self._dim = dim
        self.batch_size = batch_size
        self._cache = cache or ModelCache()

    @property
    def dim(self) -> int:
        return self._dim

    @property
    def model_name(self) -> str:
        return self._model_name

    async def load(self, on_progress: EmbedProgressCallback | None = None) -> None:
        if on_progress:
            on_progress(EmbedProgress(done=0, total=1, stage="load", msg=f"Loading {self.model_name}"))
        await self._handle()
        if on_progress:
            on_progress(EmbedProgress(done=1, total=1, stage="load", msg="Model loaded"))

    async def embed(
        self,
        chunks: Sequence[Chunk],
        on_progress: EmbedProgressCallback | None = None,
    ) -> list[EmbeddedChunk]:
        if not chunks:
            return []
        handle = await self._handle()
        batches = -(-len(chunks) // self.batch_size)
        out: list[EmbeddedChunk] = []
        for number, start in enumerate(range(0, len(chunks), self.batch_size), start=1):
            batch = chunks[start : start + self.batch_size]
            if on_progress:
                on_progress(EmbedProgress(done=number, total=batches, msg=f"Batch {number}/{batches}"))
            vectors = await self._run(handle, [prepare_text(chunk) for chunk in batch])
            out.extend(
                EmbeddedChunk.from_chunk(chunk, vector, self.model_name)
                for chunk, vector in zip(batch, vectors)
            )
        return out

    async def embed_query(self, text: str) -> np.ndarray:
        handle = await self._handle()
        return (await self._run(handle, [text]))[0]

    async def _handle(self) -> Any:
        return await self._cache.get(self.model_name, self._load)

    async def _load(self) -> Any:
        try:
            return await asyncio.to_thread(self._load_model)
        except EmbeddingError:
            raise
        except Exception as exc:
            raise EmbeddingError(f"failed to load embedding model {self.model_name}: {exc}") from exc

    async def _run(self, handle: Any, texts: list[str]) -> np.ndarray:
        try:
            vectors = await asyncio.to_thread(self._encode, handle, texts)
        except Exception as exc:
            raise EmbeddingError(f"embedding failed with {self.model_name}: {exc}") from exc
        vectors = np.asarray(vectors, dtype=VECTOR_DTYPE)
        if vectors.ndim != 2 or vectors.shape[0] != len(texts) or vectors.shape[1] != self.dim:
            raise EmbeddingError(
                f"{self.model_name} returned shape {vectors.shape}, expected ({len(texts)}, {self.dim})"
            )
        return vectors

    def _load_model(self) -> Any:
        raise NotImplementedError

    def _encode(self, handle: Any, texts: list[str]) -> np.ndarray:
        raise NotImplementedError


class HashedEmbedder(BaseEmbedder):
    """Deterministic hashed bag-of-words embedding; no model download needed."""

    def __init__(
        self,
        model_name: str = "docvector/hashed-384",
        dim: int = 384,
        batch_size: int = 32,
        cache: ModelCache | None = None,
    ) -> None:
        super().__init__(model_name, dim, batch_size, cache)

    def _load_model(self) -> Any:
        return self.dim

    def _encode(self, handle: Any, texts: list[str]) -> np.ndarray:
        matrix = np.zeros((len(texts), self.dim), dtype=VECTOR_DTYPE)
        for row, text in enumerate(texts):
            for token in _TOKEN_RE.findall(text.lower()):
                matrix[row, _hash_token(token, self.dim)] += 1.0
        norms = np.linalg.norm(matrix, axis=1, keepdims=True)
        np.divide(matrix, norms, out=matrix, where=norms != 0)
        return matrix


class SentenceTransformerEmbedder(BaseEmbedder):
    """sentence-transformers backend, installed with the ``models`` extra."""

    def __init__(
        self,
        model_name: str,
        dim: int = 384,
        batch_size: int = 32,
        device: str | None = None,
        cache: ModelCache | None = None,
    ) -> None:
        super().__init__(model_name, dim, batch_size, cache)
        self.device = device

    def _load_model(self) -> Any:
        from sentence_transformers import SentenceTransformer

        logger.info("Loading embedding model: %s", self.model_name)
        model = SentenceTransformer(self.model_name, device=self.device)
        model_dim = model.get_sentence_embedding_dimension()
        if model_dim and model_dim != self._dim:
            logger.info("Model %s reports dim=%d; overriding configured %d", self.model_name, model_dim, self._dim)
            self._dim = int(model_dim)
        return model

    def _encode(self, handle: Any, texts: list[str]) -> np.ndarray:
        return handle.encode(
            texts,
            batch_size=self.batch_size,
            convert_to_numpy=True,
            normalize_embeddings=True,
            show_progress_bar=False,
        )


def _hash_token(token: str, dim: int) -> int:
    digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big") % dim


def build_embedder(settings: Settings, cache: ModelCache | None = None) -> BaseEmbedder:
    if settings.embedding_backend == "sentence-transformers":
        return SentenceTransformerEmbedder(
            settings.embedding_model,
            dim=settings.embedding_dim,
            batch_size=settings.embedding_batch,
            device=settings.embedding_device,
            cache=cache,
        )
    return HashedEmbedder(
        settings.embedding_model,
        dim=settings.embedding_dim,
        batch_size=settings.embedding_batch,
        cache=cache,
    )


__all__ = [
    "ModelCache",
    "BaseEmbedder",
    "HashedEmbedder",
    "SentenceTransformerEmbedder",
    "build_embedder",
    "prepare_text",
]
