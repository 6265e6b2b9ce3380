"""Query API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from docvector.api.dependencies import ServiceContainer, get_container
from docvector.models.dto import (
    HitResponse,
    SearchRequest,
    SearchResponse,
    SimilarRequest,
    SimilarResponse,
)
from docvector.models.entities import GraphContext, SearchQuery

router = APIRouter()


@router.post("/search", response_model=SearchResponse, summary="Semantic and hybrid search")
async def run_search(
    request: SearchRequest,
    container: ServiceContainer = Depends(get_container),
) -> SearchResponse:
    query = SearchQuery(**request.model_dump(exclude={"context"}))
    if request.context is not None:
        context = GraphContext(**request.context.model_dump())
        result = await container.search.search_with_context(query, context)
    else:
        result = await container.search.search(query)
    return SearchResponse(
        q=result.q,
        hits=[HitResponse.from_hit(hit) for hit in result.hits],
        total=result.total,
        ms=result.ms,
    )


@router.post("/similar", response_model=SimilarResponse, summary="Chunks similar to a stored chunk")
async def find_similar(
    request: SimilarRequest,
    container: ServiceContainer = Depends(get_container),
) -> SimilarResponse:
    chunk = await container.store.get_by_id(request.chunk_id)
    if chunk is None:
        raise HTTPException(status_code=404, detail="Chunk not found")
    hits = await container.search.find_similar(chunk, k=request.k)
    return SimilarResponse(chunk_id=chunk.id, hits=[HitResponse.from_hit(hit) for hit in hits])


__all__ = ["router"]
