"""Pydantic DTOs exposed via API."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

from docvector.models.entities import (
    Chunk,
    CollectionStats,
    ContentType,
    FileReport,
    HierarchyLevel,
    Incoherence,
    IndexerStatus,
    ProjectSummary,
    SearchHit,
)


class IndexRequest(BaseModel):
    force: bool = Field(default=False, description="Re-index files even if unchanged")
    background: bool = Field(default=False, description="Return immediately and index in the background")


class IndexFileRequest(BaseModel):
    path: str = Field(description="Project-relative path of the file to (re)index")


class StatusResponse(BaseModel):
    state: Literal["idle", "running", "paused", "error"]
    file: str | None = None
    done: int = 0
    total: int = 0
    chunks: int = 0
    errors: int = 0
    started: int | None = None
    eta: float | None = None
    error: str | None = None

    @classmethod
    def from_status(cls, status: IndexerStatus) -> "StatusResponse":
        return cls(
            state=status.state,
            file=status.file,
            done=status.done,
            total=status.total,
            chunks=status.chunks,
            errors=status.errors,
            started=status.started,
            eta=status.eta,
            error=status.error,
        )


class IndexFileResponse(BaseModel):
    path: str
    chunks: int


class GraphContextModel(BaseModel):
    dependents: list[str] = Field(default_factory=list)
    dependencies: list[str] = Field(default_factory=list)
    siblings: list[str] = Field(default_factory=list)


class SearchRequest(BaseModel):
    q: str = Field(min_length=1)
    k: int | None = Field(default=None, ge=1, le=200)
    min: float | None = None
    types: list[ContentType] | None = None
    levels: list[HierarchyLevel] | None = None
    path: str | None = None
    lang: str | None = None
    hybrid: bool | None = None
    alpha: float | None = Field(default=None, ge=0.0, le=1.0)
    rerank: bool | None = None
    context: GraphContextModel | None = None


class ChunkModel(BaseModel):
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
    meta: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_chunk(cls, chunk: Chunk) -> "ChunkModel":
        return cls(**chunk.to_dict())


class HitResponse(BaseModel):
    chunk: ChunkModel
    score: float
    vec: float | None = None
    bm25: float | None = None
    rerank: float | None = None
    boost: float | None = None
    hl: list[str] = Field(default_factory=list)

    @classmethod
    def from_hit(cls, hit: SearchHit) -> "HitResponse":
        return cls(
            chunk=ChunkModel.from_chunk(hit.chunk),
            score=hit.score,
            vec=hit.vec,
            bm25=hit.bm25,
            rerank=hit.rerank,
            boost=hit.boost,
            hl=list(hit.hl),
        )


class SearchResponse(BaseModel):
    q: str
    hits: list[HitResponse]
    total: int
    ms: float


class SimilarRequest(BaseModel):
    chunk_id: str
    k: int = Field(default=5, ge=1, le=100)


class SimilarResponse(BaseModel):
    chunk_id: str
    hits: list[HitResponse]


class IncoherenceRequest(BaseModel):
    path: str | None = Field(default=None, description="Analyze one file; the whole project when omitted")
    min_severity: float = Field(default=0.0, ge=0.0, le=1.0)
    limit: int | None = Field(default=None, ge=1)


class IssueModel(BaseModel):
    id: str
    type: str
    severity: float
    confidence: float
    msg: str
    fix: str | None = None
    path: str | None = None
    symbol: str | None = None
    lines: tuple[int, int] | None = None

    @classmethod
    def from_issue(cls, issue: Incoherence) -> "IssueModel":
        anchor = issue.code or issue.doc
        return cls(
            id=issue.id,
            type=issue.type,
            severity=issue.severity,
            confidence=issue.confidence,
            msg=issue.msg,
            fix=issue.fix,
            path=anchor.path if anchor else None,
            symbol=anchor.symbol if anchor else None,
            lines=anchor.lines if anchor else None,
        )


class FileReportModel(BaseModel):
    path: str
    score: float
    at: int
    issues: list[IssueModel]

    @classmethod
    def from_report(
        cls, report: FileReport, min_severity: float = 0.0, limit: int | None = None
    ) -> "FileReportModel":
        issues = [issue for issue in report.issues if issue.severity >= min_severity]
        issues.sort(key=lambda issue: -issue.severity)
        if limit is not None:
            issues = issues[:limit]
        return cls(
            path=report.path,
            score=report.score,
            at=report.at,
            issues=[IssueModel.from_issue(issue) for issue in issues],
        )


class ProjectSummaryModel(BaseModel):
    files: int
    with_issues: int
    total: int
    by_type: dict[str, int]
    by_severity: dict[str, int]
    avg_score: float
    worst: list[FileReportModel]

    @classmethod
    def from_summary(
        cls, summary: ProjectSummary, min_severity: float = 0.0, limit: int | None = None
    ) -> "ProjectSummaryModel":
        return cls(
            files=summary.files,
            with_issues=summary.with_issues,
            total=summary.total,
            by_type=summary.by_type,
            by_severity=summary.by_severity,
            avg_score=summary.avg_score,
            worst=[FileReportModel.from_report(report, min_severity, limit) for report in summary.worst],
        )


class IncoherenceResponse(BaseModel):
    report: FileReportModel | None = None
    summary: ProjectSummaryModel | None = None


class CollectionModel(BaseModel):
    name: str
    type: ContentType
    level: HierarchyLevel
    count: int
    dim: int | None = None
    model: str | None = None

    @classmethod
    def from_stats(cls, stats: CollectionStats) -> "CollectionModel":
        return cls(
            name=stats.name,
            type=stats.type,
            level=stats.level,
            count=stats.count,
            dim=stats.dim,
            model=stats.model,
        )


class StatsResponse(BaseModel):
    total: int
    by_type: dict[str, int]
    by_level: dict[str, int]
    collections: list[CollectionModel]
    indexed_files: int


class ClearRequest(BaseModel):
    confirm: bool = False


class ClearResponse(BaseModel):
    status: Literal["ok"]
    dropped: int


__all__ = [
    "ChunkModel",
    "ClearRequest",
    "ClearResponse",
    "CollectionModel",
    "FileReportModel",
    "GraphContextModel",
    "HitResponse",
    "IncoherenceRequest",
    "IncoherenceResponse",
    "IndexFileRequest",
    "IndexFileResponse",
    "IndexRequest",
    "IssueModel",
    "ProjectSummaryModel",
    "SearchRequest",
    "SearchResponse",
    "SimilarRequest",
    "SimilarResponse",
    "StatsResponse",
    "StatusResponse",
]
