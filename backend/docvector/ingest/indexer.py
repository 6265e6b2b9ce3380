"""Incremental, cancellable indexing of a project into the vector store."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Sequence

from docvector.core.config import Settings
from docvector.core.errors import IndexerBusyError, IndexerStateError, IndexingCancelled
from docvector.core.metrics import INDEX_CHUNKS, INDEX_ERRORS, INDEXED_FILES
from docvector.core.protocols import Embedder, FileSystem, GitClient, VectorStore
from docvector.ingest.chunker import Chunker
from docvector.ingest.sources import DOC_EXTENSIONS
from docvector.models.entities import (
    Chunk,
    ContentType,
    EmbedProgress,
    IndexerState,
    IndexerStatus,
    ProgressEvent,
    ProgressKind,
)
from docvector.utils.time import now_ms

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressEvent], None]

DEFAULT_INCLUDE = ("**/*.ts", "**/*.tsx", "**/*.js", "**/*.jsx", "**/*.py", "**/*.md")
DEFAULT_EXCLUDE = ("**/node_modules/**", "**/dist/**", "**/.git/**", "**/build/**")

TRANSITIONS: dict[IndexerState, frozenset[IndexerState]] = {
    "idle": frozenset({"running"}),
    "running": frozenset({"idle", "error", "paused"}),
    "paused": frozenset({"running"}),
    "error": frozenset({"running"}),
}


@dataclass(slots=True)
class IndexerOptions:
    types: tuple[ContentType, ...] = ("code", "docs", "comments")
    include: tuple[str, ...] = DEFAULT_INCLUDE
    exclude: tuple[str, ...] = DEFAULT_EXCLUDE
    batch: int = 50
    debounce: float = 1.0
    git: bool = False
    max_commits: int = 100

    @classmethod
    def from_settings(cls, settings: Settings) -> "IndexerOptions":
        return cls(
            types=tuple(settings.index_types),
            include=tuple(settings.index_include),
            exclude=tuple(settings.index_exclude),
            batch=settings.index_batch,
            debounce=settings.watch_debounce_ms / 1000,
            git=settings.git_enabled,
            max_commits=settings.git_max_commits,
        )


def module_path(path: str) -> str:
    return re.sub(r"\.[^./]+$", "", re.sub(r"^src/", "", path))


@dataclass(slots=True)
class _RunParams:
    on_progress: ProgressCallback | None = None
    force: bool = False


class Indexer:
    """Chunk, embed and store a project's files.

    Only one ``index_all`` runs at a time. ``pause`` is cooperative: the
    cancellation token is checked at the top of each file batch and before
    each commit, so an in-flight batch always completes.
    """

    def __init__(
        self,
        store: VectorStore,
        embedder: Embedder,
        fs: FileSystem,
        options: IndexerOptions | None = None,
        git: GitClient | None = None,
        chunker: Chunker | None = None,
    ) -> None:
        self.store = store
        self.embedder = embedder
        self.fs = fs
        self.git = git
        self.options = options or IndexerOptions()
        if self.options.batch < 1:
            raise ValueError("batch must be positive")
        self.chunker = chunker or Chunker()
        self._status = IndexerStatus()
        self._indexed: dict[str, float] = {}
        self._cancel = asyncio.Event()
        self._run_lock = asyncio.Lock()
        self._params = _RunParams()

    # -- lifecycle -------------------------------------------------------

    async def index_all(
        self,
        on_progress: ProgressCallback | None = None,
        force: bool = False,
    ) -> IndexerStatus:
        if self._status.state == "running":
            raise IndexerBusyError("indexing is already running")
        async with self._run_lock:
            self._params = _RunParams(on_progress=on_progress, force=force)
            self._transition("running")
            self._cancel = asyncio.Event()
            self._status = IndexerStatus(state="running", started=now_ms())
            INDEX_CHUNKS.set(0)
            logger.info("Indexing started", extra={"ctx_force": force})
            try:
                await self.store.connect()
                await self.embedder.load(self._forward_embed_progress)
                files = await self.fs.glob(list(self.options.include), list(self.options.exclude))
                self._status.total = len(files)
                await self._index_files(files, force)
                if self.options.git and self.git is not None:
                    await self._index_git(self.git)
            except IndexingCancelled:
                if self._status.state == "running":
                    self._transition("paused")
                logger.info("Indexing paused", extra={"ctx_done": self._status.done})
                self._emit("paused")
            except Exception as exc:
                self._status.errors += 1
                self._status.error = str(exc)
                INDEX_ERRORS.labels(stage="run").inc()
                if self._status.state == "running":
                    self._transition("error")
                logger.exception("Indexing failed")
                self._emit("error", msg=self._status.error)
                raise
            else:
                if self._status.state == "running":
                    self._transition("idle")
                    self._status.file = None
                    self._status.eta = 0.0
                    logger.info(
                        "Indexing complete",
                        extra={"ctx_files": self._status.done, "ctx_chunks": self._status.chunks},
                    )
                    self._emit("complete")
                else:
                    self._emit("paused")
            return self.status()

    def pause(self) -> IndexerStatus:
        if self._status.state != "running":
            raise IndexerStateError(f"cannot pause while {self._status.state}")
        self._cancel.set()
        self._transition("paused")
        return self.status()

    async def resume(self) -> IndexerStatus:
        if self._status.state != "paused":
            raise IndexerStateError(f"cannot resume while {self._status.state}")
        return await self.index_all(self._params.on_progress, force=self._params.force)

    def status(self) -> IndexerStatus:
        return self._status.snapshot()

    def indexed_files(self) -> list[str]:
        return list(self._indexed)

    async def clear_index(self) -> int:
        if self._status.state == "running":
            raise IndexerBusyError("cannot clear the index while indexing")
        dropped = 0
        for collection in await self.store.list_collections():
            if await self.store.drop_collection(collection.name):
                dropped += 1
        self._indexed.clear()
        logger.info("Index cleared", extra={"ctx_collections": dropped})
        return dropped

    # -- single files ----------------------------------------------------

    async def index_file(self, path: str) -> int:
        mtime = await self.fs.mtime(path)
        content = await self.fs.read(path)
        await self.store.delete_by_path(path)
        chunks = self._chunk_file(path, content)
        embedded = await self.embedder.embed(chunks)
        await self.store.insert(embedded)
        self._indexed[path] = mtime
        INDEXED_FILES.inc()
        logger.debug("Indexed %s", path, extra={"ctx_chunks": len(embedded)})
        return len(embedded)

    async def remove_file(self, path: str) -> None:
        await self.store.delete_by_path(path)
        self._indexed.pop(path, None)

    async def needs_reindex(self, path: str) -> bool:
        last = self._indexed.get(path)
        if last is None:
            return True
        return await self.fs.mtime(path) > last

    # -- internals -------------------------------------------------------

    async def _index_files(self, files: Sequence[str], force: bool) -> None:
        size = self.options.batch
        for start in range(0, len(files), size):
            await asyncio.sleep(0)
            if self._cancel.is_set():
                raise IndexingCancelled()
            pending: list[Chunk] = []
            mtimes: dict[str, float] = {}
            for path in files[start : start + size]:
                self._status.file = path
                self._emit("file", file=path)
                try:
                    if not force and not await self.needs_reindex(path):
                        self._status.done += 1
                        continue
                    mtime = await self.fs.mtime(path)
                    content = await self.fs.read(path)
                    chunks = self._chunk_file(path, content)
                    await self.store.delete_by_path(path)
                except Exception as exc:
                    self._record_error(f"Error indexing {path}: {exc}", stage="file")
                    continue
                pending.extend(chunks)
                mtimes[path] = mtime
                self._status.done += 1

            stored = True
            if pending:
                try:
                    embedded = await self.embedder.embed(pending, self._forward_embed_progress)
                    await self.store.insert(embedded)
                except Exception as exc:
                    stored = False
                    self._record_error(f"Embedding batch failed: {exc}", stage="batch")
                else:
                    self._status.chunks += len(embedded)
                    INDEX_CHUNKS.set(self._status.chunks)
            if stored:
                # Recorded only once the batch is durable so failures retry next run.
                self._indexed.update(mtimes)
                INDEXED_FILES.inc(len(mtimes))
            self._update_eta()
            self._emit("progress")

    async def _index_git(self, git: GitClient) -> None:
        try:
            if not await git.is_repo():
                logger.info("Skipping git history: not a repository")
                return
            commits = await git.commits(self.options.max_commits)
        except Exception as exc:
            self._record_error(f"Reading git history failed: {exc}", stage="git")
            return
        for commit in commits:
            await asyncio.sleep(0)
            if self._cancel.is_set():
                raise IndexingCancelled()
            try:
                embedded = await self.embedder.embed(self.chunker.commit(commit))
                await self.store.upsert(embedded)
            except Exception as exc:
                self._record_error(f"Indexing commit {commit.sha[:8]} failed: {exc}", stage="git")
                continue
            self._status.chunks += len(embedded)
            INDEX_CHUNKS.set(self._status.chunks)

    def _chunk_file(self, path: str, content: str) -> list[Chunk]:
        types = set(self.options.types)
        if Path(path).suffix.lower() in DOC_EXTENSIONS:
            if "docs" not in types:
                return []
            chunks = self.chunker.docs(content, path)
        elif types & {"code", "comments"}:
            chunks = self.chunker.code(content, path, self.fs.lang(path), module_path(path))
        else:
            return []
        return [chunk for chunk in chunks if chunk.type in types]

    def _update_eta(self) -> None:
        """Estimated milliseconds remaining from the running completion rate."""
        started = self._status.started or now_ms()
        elapsed = max(now_ms() - started, 1)
        rate = self._status.done / elapsed
        self._status.eta = (self._status.total - self._status.done) / max(rate, 0.001)

    def _record_error(self, message: str, stage: str) -> None:
        self._status.errors += 1
        self._status.error = message
        INDEX_ERRORS.labels(stage=stage).inc()
        logger.warning(message)

    def _transition(self, target: IndexerState) -> None:
        current = self._status.state
        if target not in TRANSITIONS[current]:
            raise IndexerStateError(f"illegal indexer transition {current} -> {target}")
        self._status.state = target

    def _forward_embed_progress(self, progress: EmbedProgress) -> None:
        self._emit("progress", msg=progress.msg)

    def _emit(self, kind: ProgressKind, file: str | None = None, msg: str | None = None) -> None:
        callback = self._params.on_progress
        if callback is not None:
            callback(ProgressEvent(kind=kind, status=self.status(), file=file, msg=msg))


__all__ = ["Indexer", "IndexerOptions", "ProgressCallback", "TRANSITIONS", "module_path"]
