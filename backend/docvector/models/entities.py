"""Internal dataclasses shared by the store, indexer, search and analysis layers."""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from typing import Any, Literal

import numpy as np

from docvector.utils.hashing import sha256_text, short_hash
from docvector.utils.vectors import as_vector

ContentType = Literal["code", "docs", "comments", "commits", "prs"]
HierarchyLevel = Literal["project", "module", "file", "symbol"]
IndexerState = Literal["idle", "running", "paused", "error"]
IncoherenceType = Literal["outdated", "missing", "mismatch", "incomplete", "orphaned", "drift"]
ProgressKind = Literal["file", "progress", "complete", "paused", "error"]

CONTENT_TYPES: tuple[ContentType, ...] = ("code", "docs", "comments", "commits", "prs")
HIERARCHY_LEVELS: tuple[HierarchyLevel, ...] = ("project", "module", "file", "symbol")
INCOHERENCE_TYPES: tuple[IncoherenceType, ...] = (
    "outdated",
    "missing",
    "mismatch",
    "incomplete",
    "orphaned",
    "drift",
)


def make_chunk_id(path: str, *anchor: object, content: str | None = None) -> str:
    """Deterministic id from path, a symbol or line anchor, and the content hash."""
    parts = [path, *(str(part) for part in anchor if part is not None)]
    if content is not None:
        parts.append(sha256_text(content))
    return short_hash(*parts)


@dataclass(slots=True, kw_only=True)
class Chunk:
    id: str
    content: str
    type: ContentType
    level: HierarchyLevel
    path: str
    symbol: str | None = None
    kind: str | None = None
    parent: str | None = None
    lines: tuple[int, int] | None = None
    lang: str | None = None
    meta: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(Chunk)}


@dataclass(slots=True, kw_only=True, eq=False)
class EmbeddedChunk(Chunk):
    vec: np.ndarray
    model: str
    dim: int = 0

    def __post_init__(self) -> None:
        self.vec = as_vector(self.vec)
        self.dim = int(self.vec.shape[0])

    @classmethod
    def from_chunk(cls, chunk: Chunk, vec: Any, model: str) -> "EmbeddedChunk":
        return cls(**chunk.to_dict(), vec=vec, model=model)

    def as_chunk(self) -> Chunk:
        return Chunk(**Chunk.to_dict(self))


@dataclass(slots=True, kw_only=True)
class SearchQuery:
    """Free-text query; ``None`` fields take the engine defaults."""

    q: str
    k: int | None = None
    min: float | None = None
    types: list[ContentType] | None = None
    levels: list[HierarchyLevel] | None = None
    path: str | None = None
    lang: str | None = None
    hybrid: bool | None = None
    alpha: float | None = None
    rerank: bool | None = None


@dataclass(slots=True, kw_only=True)
class SearchHit:
    chunk: Chunk
    score: float
    vec: float | None = None
    bm25: float | None = None
    rerank: float | None = None
    boost: float | None = None
    hl: list[str] = field(default_factory=list)


@dataclass(slots=True, kw_only=True)
class SearchResult:
    hits: list[SearchHit]
    q: str
    total: int
    ms: float


@dataclass(slots=True, kw_only=True)
class IndexerStatus:
    state: IndexerState = "idle"
    file: str | None = None
    done: int = 0
    total: int = 0
    chunks: int = 0
    errors: int = 0
    started: int | None = None
    eta: float | None = None
    error: str | None = None

    def snapshot(self) -> "IndexerStatus":
        return replace(self)


@dataclass(slots=True, kw_only=True)
class ProgressEvent:
    kind: ProgressKind
    status: IndexerStatus
    file: str | None = None
    msg: str | None = None


@dataclass(slots=True, frozen=True, kw_only=True)
class Incoherence:
    id: str
    code: Chunk | None
    doc: Chunk | None
    type: IncoherenceType
    severity: float
    msg: str
    fix: str | None = None
    confidence: float = 1.0


@dataclass(slots=True, kw_only=True)
class FileReport:
    path: str
    issues: list[Incoherence]
    score: float
    at: int


@dataclass(slots=True, kw_only=True)
class ProjectSummary:
    files: int
    with_issues: int
    total: int
    by_type: dict[str, int]
    by_severity: dict[str, int]
    avg_score: float
    worst: list[FileReport]


@dataclass(slots=True, kw_only=True)
class GraphContext:
    """Related identifiers used for graph-aware boosting."""

    dependents: list[str] = field(default_factory=list)
    dependencies: list[str] = field(default_factory=list)
    siblings: list[str] = field(default_factory=list)


@dataclass(slots=True, kw_only=True)
class CollectionStats:
    name: str
    type: ContentType
    level: HierarchyLevel
    count: int
    dim: int | None
    model: str | None


@dataclass(slots=True, kw_only=True)
class Commit:
    sha: str
    msg: str
    author: str
    time: int
    diff: str


@dataclass(slots=True, kw_only=True)
class EmbedProgress:
    done: int
    total: int
    stage: Literal["load", "embed"] = "embed"
    msg: str | None = None
