"""Debounced re-indexing driven by filesystem events."""

from __future__ import annotations

import asyncio
import logging
import threading
from pathlib import Path
from typing import Sequence

from watchdog.events import FileSystemEvent, PatternMatchingEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver

from docvector.ingest.indexer import Indexer
from docvector.ingest.sources import expand_braces, is_excluded

logger = logging.getLogger(__name__)


class IndexerWatcher:
    """Coalesce file changes and feed them to :meth:`Indexer.index_file`.

    Changed paths collect in an ordered pending set. A single timer fires
    ``debounce`` seconds after the last change and drains the set. Changes
    arriving during a drain wait for the drain to finish and then start a
    fresh debounce cycle, so two drains never overlap.
    """

    def __init__(self, indexer: Indexer, debounce: float = 1.0) -> None:
        self.indexer = indexer
        self.debounce = debounce
        self._pending: dict[str, None] = {}
        self._timer: asyncio.TimerHandle | None = None
        self._drain_task: asyncio.Task[None] | None = None
        self._draining = False
        self._stopped = False

    @property
    def pending(self) -> list[str]:
        return list(self._pending)

    @property
    def draining(self) -> bool:
        return self._draining

    def on_file_change(self, path: str) -> None:
        if self._stopped:
            return
        self._pending[path] = None
        if not self._draining:
            self._schedule()

    async def on_file_delete(self, path: str) -> None:
        self._pending.pop(path, None)
        try:
            await self.indexer.remove_file(path)
        except Exception:
            logger.exception("Removing %s from the index failed", path)

    async def flush(self) -> None:
        """Drain pending paths now instead of waiting for the timer."""
        self._cancel_timer()
        if self._drain_task is not None and not self._drain_task.done():
            await self._drain_task
            self._cancel_timer()
        await self._drain()

    def stop(self) -> None:
        self._stopped = True
        self._cancel_timer()

    def _schedule(self) -> None:
        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.debounce, self._fire)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _fire(self) -> None:
        self._timer = None
        if self._draining:
            return
        self._drain_task = asyncio.get_running_loop().create_task(self._drain())

    async def _drain(self) -> None:
        if self._draining or not self._pending:
            return
        self._draining = True
        batch = list(self._pending)
        self._pending.clear()
        try:
            for path in batch:
                if self._stopped:
                    break
                try:
                    await self.indexer.index_file(path)
                except Exception:
                    logger.exception("Index failed for %s", path)
        finally:
            self._draining = False
        # Paths added mid-drain start a fresh debounce cycle.
        if self._pending and not self._stopped:
            self._schedule()


class _ForwardingHandler(PatternMatchingEventHandler):
    """Forward watchdog events from the observer thread onto the event loop."""

    def __init__(
        self,
        service: "WatchService",
        patterns: Sequence[str],
    ) -> None:
        # Exclusion is applied by the service with fnmatch on absolute paths.
        super().__init__(
            patterns=list(patterns) or ["*"],
            ignore_directories=True,
            case_sensitive=False,
        )
        self.service = service

    def on_created(self, event: FileSystemEvent) -> None:  # pragma: no cover - requires filesystem
        self.service.dispatch_change(event.src_path)

    def on_modified(self, event: FileSystemEvent) -> None:  # pragma: no cover - requires filesystem
        self.service.dispatch_change(event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:  # pragma: no cover - requires filesystem
        self.service.dispatch_delete(event.src_path)
        self.service.dispatch_change(event.dest_path)

    def on_deleted(self, event: FileSystemEvent) -> None:  # pragma: no cover - requires filesystem
        self.service.dispatch_delete(event.src_path)


class WatchService:
    """High-level wrapper around a watchdog observer feeding an :class:`IndexerWatcher`."""

    def __init__(
        self,
        watcher: IndexerWatcher,
        root: Path,
        include: Sequence[str],
        exclude: Sequence[str],
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self.watcher = watcher
        self.root = root.expanduser().resolve()
        self.include = [p for pattern in include for p in expand_braces(pattern)]
        self.exclude = list(exclude)
        self._loop = loop
        self._observer: BaseObserver | None = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._observer is not None

    def start(self) -> None:
        with self._lock:
            if self._observer is not None:
                return
            if self._loop is None:
                self._loop = asyncio.get_running_loop()
            patterns = sorted({p.rsplit("/", 1)[-1] for p in self.include})
            observer = Observer()
            observer.schedule(_ForwardingHandler(self, patterns), str(self.root), recursive=True)
            observer.start()
            self._observer = observer
        logger.info("Watching %s", self.root)

    def stop(self) -> None:
        with self._lock:
            observer, self._observer = self._observer, None
        self.watcher.stop()
        if observer is not None:
            observer.stop()
            observer.join(timeout=5)

    def dispatch_change(self, src: str | bytes) -> None:
        path = self._relative(src)
        if path is not None and self._loop is not None:
            self._loop.call_soon_threadsafe(self.watcher.on_file_change, path)

    def dispatch_delete(self, src: str | bytes) -> None:
        path = self._relative(src)
        if path is not None and self._loop is not None:
            asyncio.run_coroutine_threadsafe(self.watcher.on_file_delete(path), self._loop)

    def _relative(self, src: str | bytes) -> str | None:
        absolute = Path(src.decode() if isinstance(src, bytes) else src)
        if is_excluded(absolute, self.exclude):
            return None
        try:
            return absolute.resolve().relative_to(self.root).as_posix()
        except ValueError:
            return None


__all__ = ["IndexerWatcher", "WatchService"]
