"""
File system watcher with per-file debouncing.

Monitors the project directory and keeps the index current: a changed file is
reindexed once it has been quiet for the debounce period, a deleted file has
its chunks removed right away.
"""

from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Coroutine

import structlog
from watchdog.events import (
    DirCreatedEvent,
    DirDeletedEvent,
    DirModifiedEvent,
    DirMovedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from codeindex.indexing.scanner import is_code_file, relative_posix
from codeindex.models import ProgressCallback, ProgressEvent, ProgressPhase

if TYPE_CHECKING:
    from codeindex.config import Config
    from codeindex.indexing.engine import IndexingEngine
    from codeindex.storage.vector_store import VectorStore

logger = structlog.get_logger(__name__)


class DebounceRegistry:
    """
    Per-key debounce timers on the running event loop.

    Re-arming a key replaces its pending timer, so the callback fires once
    after the last event in a burst.
    """

    def __init__(self, delay_seconds: float) -> None:
        self.delay_seconds = delay_seconds
        self._handles: dict[str, asyncio.TimerHandle] = {}

    def __len__(self) -> int:
        return len(self._handles)

    def __contains__(self, key: str) -> bool:
        return key in self._handles

    def arm(self, key: str, callback: Callable[[str], None]) -> None:
        """Schedule callback(key) after the delay, replacing any pending timer."""
        self.cancel(key)
        loop = asyncio.get_running_loop()
        self._handles[key] = loop.call_later(
            self.delay_seconds, self._fire, key, callback
        )

    def cancel(self, key: str) -> bool:
        """Cancel the pending timer for a key. Returns True if one existed."""
        handle = self._handles.pop(key, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def drain(self) -> int:
        """Cancel every pending timer. Returns how many were cancelled."""
        count = len(self._handles)
        for handle in self._handles.values():
            handle.cancel()
        self._handles.clear()
        return count

    def _fire(self, key: str, callback: Callable[[str], None]) -> None:
        self._handles.pop(key, None)
        callback(key)


class _ChangeHandler(FileSystemEventHandler):
    """Forwards watchdog events from the observer thread to the event loop."""

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        on_path: Callable[[Path], None],
    ) -> None:
        super().__init__()
        self._loop = loop
        self._on_path = on_path

    def _forward(self, path: str | bytes) -> None:
        self._loop.call_soon_threadsafe(self._on_path, Path(os.fsdecode(path)))

    def on_created(self, event: FileCreatedEvent | DirCreatedEvent) -> None:
        if isinstance(event, DirCreatedEvent):
            return
        self._forward(event.src_path)

    def on_modified(self, event: FileModifiedEvent | DirModifiedEvent) -> None:
        if isinstance(event, DirModifiedEvent):
            return
        self._forward(event.src_path)

    def on_deleted(self, event: FileDeletedEvent | DirDeletedEvent) -> None:
        if isinstance(event, DirDeletedEvent):
            return
        self._forward(event.src_path)

    def on_moved(self, event: FileMovedEvent | DirMovedEvent) -> None:
        if isinstance(event, DirMovedEvent):
            return
        # Source no longer exists, so it is handled as a deletion.
        self._forward(event.src_path)
        self._forward(event.dest_path)


class FileWatcher:
    """
    File system watcher for incremental indexing.

    Features:
    - Per-file debounced reindexing
    - Immediate removal of deleted files
    - Reindexes serialized one file at a time
    - Watcher state persisted in the store
    """

    def __init__(
        self,
        config: "Config",
        engine: "IndexingEngine",
        store: "VectorStore",
        progress_callback: ProgressCallback | None = None,
    ) -> None:
        """
        Initialize the file watcher.

        Args:
            config: codeindex configuration.
            engine: Engine used to reindex changed files.
            store: Vector store holding the index.
            progress_callback: Receives indexing/completed events per file.
        """
        self.config = config
        self.engine = engine
        self.store = store
        self.progress_callback = progress_callback
        self.ignore_filter = engine.scanner.ignore_filter

        self._registry = DebounceRegistry(config.watcher.debounce_seconds)
        self._observer: Any = None
        self._running = False
        self._stopped = False
        self._processing_lock = asyncio.Lock()
        self._tasks: set[asyncio.Task] = set()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def pending(self) -> int:
        """Number of files waiting for their debounce timer."""
        return len(self._registry)

    async def start(self) -> bool:
        """
        Start watching for file changes.

        Returns:
            True if the watcher is running.
        """
        if self._running:
            return True

        if not self.config.enabled:
            logger.info("Codebase indexing is disabled, watcher not started")
            return False

        root = self.config.project_root
        logger.info("Starting file watcher", path=str(root))

        await self.store.initialize()

        self._stopped = False
        handler = _ChangeHandler(asyncio.get_running_loop(), self.handle_path)
        self._observer = Observer()
        self._observer.schedule(handler, str(root), recursive=True)
        self._observer.start()
        self._running = True

        await self.store.set_watcher_enabled(True)

        logger.info("File watcher started")
        return True

    async def stop(self) -> None:
        """Stop watching and cancel all pending reindexes."""
        if not self._running:
            return

        logger.info("Stopping file watcher")
        self._stopped = True

        if self._observer is not None:
            self._observer.stop()
            await asyncio.to_thread(self._observer.join, 5.0)
            self._observer = None

        cancelled = self._registry.drain()
        await self.flush()
        self._running = False

        await self.store.set_watcher_enabled(False)

        logger.info("File watcher stopped", cancelled_pending=cancelled)

    async def flush(self) -> None:
        """Wait for reindex and removal tasks already started."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def handle_path(self, path: Path) -> None:
        """
        React to a change at an absolute path.

        Must be called on the event loop thread.
        """
        if self._stopped:
            return

        try:
            rel_path = relative_posix(path, self.config.project_root)
        except ValueError:
            return

        if not is_code_file(rel_path) or self.ignore_filter.ignores(rel_path):
            return

        if not path.exists():
            self._registry.cancel(rel_path)
            self._spawn(self._remove(rel_path))
            return

        logger.debug("File changed", path=rel_path)
        self._registry.arm(rel_path, lambda _key: self._spawn(self._reindex(path)))

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _remove(self, rel_path: str) -> None:
        async with self._processing_lock:
            try:
                removed = await self.store.delete_chunks_by_file(rel_path)
            except Exception as e:
                logger.error("Failed to remove file from index", path=rel_path, error=str(e))
                return
        logger.info("Removed file from index", path=rel_path, chunks=removed)

    async def _reindex(self, path: Path) -> None:
        rel_path = relative_posix(path, self.config.project_root)

        async with self._processing_lock:
            if not path.is_file():
                try:
                    await self.store.delete_chunks_by_file(rel_path)
                except Exception as e:
                    logger.error("Failed to remove file from index", path=rel_path, error=str(e))
                return

            self._emit(rel_path, "indexing", processed=0)
            try:
                outcome = await self.engine.index_file(path)
            except Exception as e:
                logger.error("Failed to reindex file", path=rel_path, error=str(e))
                self._emit(rel_path, "error", processed=0, error=str(e))
                return

            logger.info("Reindexed file", path=rel_path, outcome=outcome.value)
            self._emit(
                rel_path,
                "completed",
                processed=1,
                total_chunks=await self.store.get_total_chunks(),
            )

    def _emit(
        self,
        rel_path: str,
        status: ProgressPhase,
        processed: int,
        total_chunks: int = 0,
        error: str | None = None,
    ) -> None:
        if self.progress_callback is None:
            return
        try:
            self.progress_callback(
                ProgressEvent(
                    total_files=1,
                    processed_files=processed,
                    total_chunks=total_chunks,
                    current_file=rel_path,
                    status=status,
                    error=error,
                )
            )
        except Exception as e:
            logger.warning("Progress callback failed", error=str(e))
