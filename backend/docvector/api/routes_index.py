"""Indexing API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from docvector.api.dependencies import ServiceContainer, get_container
from docvector.core.errors import IndexerBusyError, IndexerStateError
from docvector.models.dto import IndexFileRequest, IndexFileResponse, IndexRequest, StatusResponse

router = APIRouter()


@router.post("", response_model=StatusResponse, summary="Index the project")
async def trigger_index(
    request: IndexRequest,
    container: ServiceContainer = Depends(get_container),
) -> StatusResponse:
    try:
        if request.background:
            container.start_background_index(force=request.force)
            status = container.indexer.status()
        else:
            status = await container.indexer.index_all(force=request.force)
    except IndexerBusyError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return StatusResponse.from_status(status)


@router.get("/status", response_model=StatusResponse, summary="Current indexer status")
async def index_status(container: ServiceContainer = Depends(get_container)) -> StatusResponse:
    return StatusResponse.from_status(container.indexer.status())


@router.post("/pause", response_model=StatusResponse, summary="Pause a running index")
async def pause_index(container: ServiceContainer = Depends(get_container)) -> StatusResponse:
    try:
        status = container.indexer.pause()
    except IndexerStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return StatusResponse.from_status(status)


@router.post("/resume", response_model=StatusResponse, summary="Resume a paused index")
async def resume_index(container: ServiceContainer = Depends(get_container)) -> StatusResponse:
    try:
        status = await container.indexer.resume()
    except IndexerStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return StatusResponse.from_status(status)


@router.post("/file", response_model=IndexFileResponse, summary="Re-index a single file")
async def index_file(
    request: IndexFileRequest,
    container: ServiceContainer = Depends(get_container),
) -> IndexFileResponse:
    if not await container.fs.exists(request.path):
        raise HTTPException(status_code=404, detail="File not found")
    chunks = await container.indexer.index_file(request.path)
    return IndexFileResponse(path=request.path, chunks=chunks)


__all__ = ["router"]
