"""Administrative routes for docvector."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from docvector.api.dependencies import ServiceContainer, get_container
from docvector.core.errors import IndexerBusyError
from docvector.core.metrics import metrics_response
from docvector.models.dto import (
    ClearRequest,
    ClearResponse,
    CollectionModel,
    FileReportModel,
    IncoherenceRequest,
    IncoherenceResponse,
    ProjectSummaryModel,
    StatsResponse,
)
from docvector.models.entities import CONTENT_TYPES, HIERARCHY_LEVELS

router = APIRouter()


@router.get("/health", summary="Liveness check")
async def health() -> dict[str, bool]:
    return {"ok": True}


@router.get("/metrics", summary="Prometheus metrics")
async def get_metrics():
    return metrics_response()


@router.get("/stats", response_model=StatsResponse, summary="Collection statistics")
async def stats(container: ServiceContainer = Depends(get_container)) -> StatsResponse:
    collections = await container.store.list_collections()
    by_type = {kind: 0 for kind in CONTENT_TYPES}
    by_level = {level: 0 for level in HIERARCHY_LEVELS}
    for collection in collections:
        by_type[collection.type] += collection.count
        by_level[collection.level] += collection.count
    return StatsResponse(
        total=sum(collection.count for collection in collections),
        by_type=by_type,
        by_level=by_level,
        collections=[CollectionModel.from_stats(collection) for collection in collections],
        indexed_files=len(container.indexer.indexed_files()),
    )


@router.post("/clear", response_model=ClearResponse, summary="Drop every collection")
async def clear(
    request: ClearRequest,
    container: ServiceContainer = Depends(get_container),
) -> ClearResponse:
    if not request.confirm:
        raise HTTPException(status_code=400, detail="Pass confirm=true to clear the index")
    try:
        dropped = await container.indexer.clear_index()
    except IndexerBusyError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return ClearResponse(status="ok", dropped=dropped)


@router.post("/incoherence", response_model=IncoherenceResponse, summary="Doc/code incoherence report")
async def incoherence(
    request: IncoherenceRequest,
    container: ServiceContainer = Depends(get_container),
) -> IncoherenceResponse:
    if request.path:
        report = await container.detector.analyze_file(request.path)
        return IncoherenceResponse(
            report=FileReportModel.from_report(report, request.min_severity, request.limit)
        )
    summary = await container.detector.analyze_project()
    return IncoherenceResponse(
        summary=ProjectSummaryModel.from_summary(summary, request.min_severity, request.limit)
    )


__all__ = ["router"]
