"""Test fixtures for docvector."""

from __future__ import annotations

import fnmatch
import sys
from pathlib import Path
from typing import Mapping, Sequence

import numpy as np
import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from docvector.db.vector_store import SQLiteVectorStore  # noqa: E402
from docvector.ingest.embeddings import HashedEmbedder  # noqa: E402
from docvector.ingest.sources import LANGUAGES, expand_braces  # noqa: E402
from docvector.models.entities import Chunk, Commit, EmbeddedChunk  # noqa: E402


class MemoryFileSystem:
    """In-memory stand-in for :class:`LocalFileSystem`."""

    def __init__(self, files: Mapping[str, str] | None = None) -> None:
        self.files: dict[str, str] = {}
        self.mtimes: dict[str, float] = {}
        self.fail_reads: set[str] = set()
        self._clock = 1.0
        for path, content in (files or {}).items():
            self.write(path, content)

    def write(self, path: str, content: str) -> None:
        self._clock += 1.0
        self.files[path] = content
        self.mtimes[path] = self._clock

    def remove(self, path: str) -> None:
        self.files.pop(path, None)
        self.mtimes.pop(path, None)

    async def glob(self, patterns: Sequence[str], ignore: Sequence[str] = ()) -> list[str]:
        found: list[str] = []
        for raw in patterns:
            for pattern in expand_braces(raw):
                for path in sorted(self.files):
                    if path in found or not _matches(path, pattern):
                        continue
                    if any(_matches(path, skip) for skip in ignore):
                        continue
                    found.append(path)
        return found

    async def read(self, path: str) -> str:
        if path in self.fail_reads:
            raise OSError(f"cannot read {path}")
        try:
            return self.files[path]
        except KeyError:
            raise FileNotFoundError(path) from None

    async def exists(self, path: str) -> bool:
        return path in self.files

    async def mtime(self, path: str) -> float:
        try:
            return self.mtimes[path]
        except KeyError:
            raise FileNotFoundError(path) from None

    def lang(self, path: str) -> str | None:
        return LANGUAGES.get(Path(path).suffix.lower())


def _matches(path: str, pattern: str) -> bool:
    if fnmatch.fnmatch(path, pattern):
        return True
    return pattern.startswith("**/") and fnmatch.fnmatch(path, pattern[3:])


class ScriptedGit:
    """Git client returning a fixed history."""

    def __init__(self, commits: Sequence[Commit] = (), repo: bool = True, error: Exception | None = None) -> None:
        self.history = list(commits)
        self.repo = repo
        self.error = error
        self.calls = 0

    async def is_repo(self) -> bool:
        return self.repo

    async def branch(self) -> str:
        return "main"

    async def commits(self, n: int) -> list[Commit]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.history[:n]


class StaticEmbedder:
    """Embedder with hand-picked vectors per text, for exact similarity scenarios."""

    def __init__(self, vectors: Mapping[str, Sequence[float]], dim: int = 3, default: Sequence[float] | None = None) -> None:
        self.vectors = {text: np.asarray(vec, dtype=np.float32) for text, vec in vectors.items()}
        self._dim = dim
        self.default = np.asarray(default if default is not None else [0.0] * dim, dtype=np.float32)

    @property
    def dim(self) -> int:
        return self._dim

    @property
    def model_name(self) -> str:
        return "static"

    async def load(self, on_progress=None) -> None:
        return None

    async def embed(self, chunks, on_progress=None) -> list[EmbeddedChunk]:
        return [EmbeddedChunk.from_chunk(chunk, self.vector(chunk.content), self.model_name) for chunk in chunks]

    async def embed_query(self, text: str) -> np.ndarray:
        return self.vector(text)

    def vector(self, text: str) -> np.ndarray:
        return self.vectors.get(text, self.default).copy()


def make_chunk(
    id: str,
    content: str,
    type: str = "code",
    level: str = "symbol",
    path: str = "src/app.py",
    **kwargs,
) -> Chunk:
    return Chunk(id=id, content=content, type=type, level=level, path=path, **kwargs)


def embedded(chunk: Chunk, vec: Sequence[float], model: str = "static") -> EmbeddedChunk:
    return EmbeddedChunk.from_chunk(chunk, vec, model)


@pytest.fixture
async def store(tmp_path: Path):
    vector_store = SQLiteVectorStore(tmp_path / "vectors.db")
    await vector_store.connect()
    yield vector_store
    await vector_store.close()


@pytest.fixture
def hashed_embedder() -> HashedEmbedder:
    return HashedEmbedder(dim=256, batch_size=8)


@pytest.fixture
def memory_fs() -> MemoryFileSystem:
    return MemoryFileSystem()


@pytest.fixture(autouse=True)
def reset_settings(monkeypatch: pytest.MonkeyPatch):
    """Keep host configuration out of the tests."""
    monkeypatch.delenv("DOCVEC_CONFIG", raising=False)
    from docvector.core.config import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
