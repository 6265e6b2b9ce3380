"""Shared FastAPI dependencies."""

from __future__ import annotations

import asyncio
import logging

from fastapi import Request

from docvector.analysis.incoherence import IncoherenceDetector, IncoherenceOptions
from docvector.core.config import Settings
from docvector.core.errors import IndexerBusyError
from docvector.db.vector_store import SQLiteVectorStore
from docvector.ingest.embeddings import BaseEmbedder, build_embedder
from docvector.ingest.indexer import Indexer, IndexerOptions
from docvector.ingest.sources import GitRepository, LocalFileSystem
from docvector.ingest.watcher import IndexerWatcher, WatchService
from docvector.retrieval import SearchEngine, SearchOptions

logger = logging.getLogger(__name__)


class ServiceContainer:
    """Builds and owns the long-lived services behind the API."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.store = SQLiteVectorStore(settings.resolved_db_path)
        self.embedder: BaseEmbedder = build_embedder(settings)
        self.fs = LocalFileSystem(settings.project_root)
        self.git = GitRepository(settings.project_root) if settings.git_enabled else None
        self.indexer = Indexer(
            self.store,
            self.embedder,
            self.fs,
            options=IndexerOptions.from_settings(settings),
            git=self.git,
        )
        self.search = SearchEngine(self.store, self.embedder, SearchOptions.from_settings(settings))
        self.detector = IncoherenceDetector(self.store, self.embedder, IncoherenceOptions.from_settings(settings))
        self.watcher: IndexerWatcher | None = None
        self.watch_service: WatchService | None = None
        if settings.watch_enabled:
            self.watcher = IndexerWatcher(self.indexer, debounce=settings.watch_debounce_ms / 1000)
            self.watch_service = WatchService(
                self.watcher,
                settings.project_root,
                include=self.indexer.options.include,
                exclude=self.indexer.options.exclude,
            )
        self._background: asyncio.Task | None = None

    async def startup(self) -> None:
        await self.store.connect()
        if self.watch_service is not None:
            self.watch_service.start()
        logger.info("Services started", extra={"ctx_db": str(self.settings.resolved_db_path)})

    async def shutdown(self) -> None:
        if self.watch_service is not None:
            self.watch_service.stop()
        task, self._background = self._background, None
        if task is not None and not task.done():
            if self.indexer.status().state == "running":
                self.indexer.pause()
            await asyncio.wait([task])
        await self.store.close()
        logger.info("Services stopped")

    def start_background_index(self, force: bool = False) -> None:
        """Run ``index_all`` as a task; raises if a run is already in progress."""
        if self.indexer.status().state == "running" or (
            self._background is not None and not self._background.done()
        ):
            raise IndexerBusyError("indexing is already running")
        task = asyncio.create_task(self.indexer.index_all(force=force))
        task.add_done_callback(_log_background_result)
        self._background = task


def _log_background_result(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Background indexing failed: %s", exc)


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


__all__ = ["ServiceContainer", "get_container"]
