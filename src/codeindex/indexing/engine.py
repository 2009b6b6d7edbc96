"""
Indexing engine.

Drives a full index run over the project:
scan -> (per file) hash check -> delete stale chunks -> chunk -> embed -> store.

Files are processed in waves of ``batch.concurrency`` concurrent tasks.
Progress is persisted after every wave so an interrupted run resumes where it
stopped. A circuit breaker aborts the run after too many consecutive failed
sub-batches.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from codeindex.errors import IndexingAbortedError
from codeindex.indexing.cancellation import CancellationToken
from codeindex.indexing.chunker import Chunker, compute_file_hash
from codeindex.indexing.ignore_parser import IgnoreFilter
from codeindex.indexing.retry import embedding_retry, store_retry
from codeindex.indexing.scanner import FileScanner, relative_posix
from codeindex.models import (
    CodeChunk,
    IndexProgress,
    IndexStatus,
    ProgressCallback,
    ProgressEvent,
    ProgressPhase,
    now_ms,
)

if TYPE_CHECKING:
    from codeindex.config import Config
    from codeindex.indexing.embedder import EmbeddingBackend
    from codeindex.storage.vector_store import VectorStore

logger = structlog.get_logger(__name__)


class FileOutcome(str, Enum):
    """What happened to one file during a run."""

    INDEXED = "indexed"
    SKIPPED = "skipped"
    INTERRUPTED = "interrupted"


class CircuitBreaker:
    """Counts consecutive failures across a whole run."""

    def __init__(self, threshold: int) -> None:
        self.threshold = threshold
        self.failures = 0
        self.last_error: str | None = None

    @property
    def is_open(self) -> bool:
        return self.failures >= self.threshold

    def record_success(self) -> None:
        self.failures = 0

    def record_failure(self, error: str) -> bool:
        """Record a failure. Returns True only on the failure that trips it."""
        self.failures += 1
        self.last_error = error
        return self.failures == self.threshold

    def reset(self) -> None:
        self.failures = 0
        self.last_error = None


class IndexingEngine:
    """
    Full and incremental indexing for one project.

    Features:
    - Resumable runs (progress persisted per wave)
    - Content-hash skipping of unchanged files
    - Bounded per-wave concurrency
    - Retry with backoff on embedding and store calls
    - Circuit breaker on consecutive sub-batch failures
    """

    def __init__(
        self,
        config: "Config",
        store: "VectorStore",
        embedder: "EmbeddingBackend",
        scanner: FileScanner | None = None,
        chunker: Chunker | None = None,
    ) -> None:
        """
        Initialize the engine.

        Args:
            config: codeindex configuration.
            store: Vector store for chunks and progress.
            embedder: Embedding backend.
            scanner: File scanner. Built from the project's ignore rules if
                not provided.
            chunker: Chunker. Defaults to 100-line windows with 10 lines of
                overlap.
        """
        self.config = config
        self.store = store
        self.embedder = embedder

        if scanner is None:
            ignore_filter = IgnoreFilter.for_project(
                config.project_root,
                extra_patterns=config.extra_ignore_patterns,
                data_dir=config.absolute_data_dir,
            )
            scanner = FileScanner(config.project_root, ignore_filter)
        self.scanner = scanner
        self.chunker = chunker or Chunker()

        self._breaker = CircuitBreaker(config.retry.max_consecutive_failures)
        self._cancel = CancellationToken()
        self._running = False
        self._done = asyncio.Event()
        self._done.set()
        self._callback: ProgressCallback | None = None

        self._total_files = 0
        self._processed_files = 0
        self._total_chunks = 0

    def is_indexing(self) -> bool:
        """Check whether a run is in progress."""
        return self._running

    async def get_progress(self) -> IndexProgress:
        """Get the persisted progress record."""
        await self.store.initialize()
        return await self.store.get_progress()

    async def start(self, progress_callback: ProgressCallback | None = None) -> None:
        """
        Run a full indexing pass.

        Returns when the run completes or is stopped.

        Raises:
            IndexingAbortedError: The circuit breaker tripped.
        """
        if self._running:
            logger.warning("Indexing already in progress")
            return

        if not self.config.enabled:
            logger.info("Codebase indexing is disabled")
            return

        self._running = True
        self._done.clear()
        self._cancel = CancellationToken()
        self._breaker.reset()
        self._callback = progress_callback

        try:
            await self._run()
        except IndexingAbortedError:
            raise
        except Exception as e:
            logger.error("Indexing failed", error=str(e))
            await self.store.update_progress(
                status=IndexStatus.ERROR,
                last_error=str(e),
            )
            self._emit("", "error", error=str(e))
            raise
        finally:
            self._running = False
            self._callback = None
            self._done.set()

    def request_stop(self) -> None:
        """Ask the current run to stop after in-flight calls finish."""
        if self._running:
            logger.info("Stop requested")
            self._cancel.cancel()

    async def stop(self) -> None:
        """Stop the current run and wait for it to wind down."""
        self.request_stop()
        await self._done.wait()

    async def clear(self) -> None:
        """Stop any run and drop the whole index."""
        await self.stop()
        await self.store.initialize()
        await self.store.clear()

    async def index_file(self, path: Path) -> FileOutcome:
        """
        Index one file outside of a full run.

        Used for incremental updates. Unchanged content is skipped.

        Raises:
            IndexingAbortedError: Too many consecutive failures.
        """
        await self.store.initialize()
        if not self._running:
            self._breaker.reset()
        return await self._process_file(path, None)

    async def _run(self) -> None:
        await self.store.initialize()
        progress = await self.store.get_progress()

        resuming = progress.status == IndexStatus.INDEXING
        self._total_files = progress.total_files if resuming else 0
        self._processed_files = progress.processed_files if resuming else 0
        self._total_chunks = progress.total_chunks
        self._emit("", "scanning")

        files = await asyncio.to_thread(self.scanner.scan, self._cancel)
        if self._cancel.cancelled:
            logger.info("Indexing stopped during scan")
            return

        total = len(files)
        offset = 0

        if resuming and (
            progress.total_files != total
            or progress.processed_files > progress.total_files
        ):
            logger.info(
                "Project changed since interrupted run, restarting",
                previous_total=progress.total_files,
                total=total,
            )
            self._total_chunks = await self.store.get_total_chunks()
            await self.store.update_progress(
                status=IndexStatus.INDEXING,
                total_files=total,
                processed_files=0,
                total_chunks=self._total_chunks,
                last_processed_file=None,
                last_error=None,
                started_at=now_ms(),
                completed_at=None,
            )
        elif resuming:
            offset = progress.processed_files
            logger.info("Resuming indexing", processed=offset, total=total)
            await self.store.update_progress(
                status=IndexStatus.INDEXING,
                last_error=None,
            )
        else:
            await self.store.update_progress(
                status=IndexStatus.INDEXING,
                total_files=total,
                processed_files=0,
                last_processed_file=None,
                last_error=None,
                started_at=now_ms(),
                completed_at=None,
            )

        self._total_files = total
        self._processed_files = offset

        logger.info("Indexing started", files=total, offset=offset)

        wave_size = self.config.batch.concurrency
        interrupted = False

        # Scan order can shift between runs, so files before the offset are
        # revisited without counting; finished ones are skipped by hash.
        for wave_start in range(0, offset, wave_size):
            if self._cancel.cancelled:
                break
            wave = files[wave_start : min(wave_start + wave_size, offset)]
            if not await self._process_wave(wave):
                interrupted = True
                break

        remaining = files[offset:]

        for wave_start in range(0, len(remaining), wave_size):
            if interrupted or self._cancel.cancelled:
                break

            wave = remaining[wave_start : wave_start + wave_size]
            if not await self._process_wave(wave):
                break

            self._processed_files = min(offset + wave_start + len(wave), total)
            await self.store.update_progress(processed_files=self._processed_files)
            self._emit(relative_posix(wave[-1], self.config.project_root), "indexing")

        if self._cancel.cancelled:
            logger.info(
                "Indexing stopped",
                processed=self._processed_files,
                total=total,
            )
            return

        self._total_chunks = await self.store.get_total_chunks()
        await self.store.update_progress(
            status=IndexStatus.COMPLETED,
            processed_files=total,
            total_chunks=self._total_chunks,
            completed_at=now_ms(),
        )
        self._processed_files = total
        self._emit("", "completed")

        logger.info("Indexing completed", files=total, chunks=self._total_chunks)

    async def _process_wave(self, wave: list[Path]) -> bool:
        """Process one wave of files concurrently. Returns False if interrupted."""
        outcomes = await asyncio.gather(
            *(self._process_file(path, self._cancel) for path in wave),
            return_exceptions=True,
        )

        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome

        return FileOutcome.INTERRUPTED not in outcomes

    async def _process_file(
        self,
        path: Path,
        cancel_token: CancellationToken | None,
    ) -> FileOutcome:
        if self._breaker.is_open or (cancel_token and cancel_token.cancelled):
            return FileOutcome.INTERRUPTED

        rel_path = relative_posix(path, self.config.project_root)

        try:
            content = await asyncio.to_thread(path.read_text, encoding="utf-8")
        except UnicodeDecodeError:
            logger.debug("Skipping non-UTF-8 file", path=rel_path)
            return FileOutcome.SKIPPED
        except OSError as e:
            logger.warning("Failed to read file", path=rel_path, error=str(e))
            return FileOutcome.SKIPPED

        file_hash = compute_file_hash(content)
        if await self.store.has_file_hash(file_hash):
            logger.debug("File unchanged, skipping", path=rel_path)
            return FileOutcome.SKIPPED

        await self.store.delete_chunks_by_file(rel_path)

        chunks = self.chunker.split(content, rel_path)
        batch_size = self.config.batch.max_lines

        for i in range(0, len(chunks), batch_size):
            if self._breaker.is_open:
                return FileOutcome.INTERRUPTED

            if cancel_token and cancel_token.cancelled:
                removed = await self.store.delete_chunks_by_file(rel_path)
                logger.info("File interrupted", path=rel_path, removed_chunks=removed)
                return FileOutcome.INTERRUPTED

            await self._process_sub_batch(rel_path, chunks[i : i + batch_size], file_hash)

        logger.debug("Indexed file", path=rel_path, chunks=len(chunks))
        return FileOutcome.INDEXED

    async def _process_sub_batch(
        self,
        rel_path: str,
        batch: list[CodeChunk],
        file_hash: str,
    ) -> None:
        try:
            async for attempt in embedding_retry(self.config):
                with attempt:
                    vectors = await self.embedder.embed_batch(
                        [chunk.content for chunk in batch]
                    )

            timestamp = now_ms()
            for chunk, vector in zip(batch, vectors):
                chunk.embedding = vector
                chunk.file_hash = file_hash
                chunk.created_at = timestamp
                chunk.updated_at = timestamp

            async for attempt in store_retry(self.config):
                with attempt:
                    await self.store.insert_chunks(batch)
        except Exception as e:
            message = str(e)
            tripped = self._breaker.record_failure(message)
            logger.warning(
                "Sub-batch failed",
                path=rel_path,
                start_line=batch[0].start_line,
                failures=self._breaker.failures,
                error=message,
            )
            if tripped:
                await self._abort(message)
            return

        self._breaker.record_success()
        self._total_chunks = await self.store.get_total_chunks()
        await self.store.update_progress(
            total_chunks=self._total_chunks,
            last_processed_file=rel_path,
        )

    async def _abort(self, message: str) -> None:
        error = f"Too many failures: {message}"
        logger.error(
            "Circuit breaker open, aborting indexing",
            failures=self._breaker.failures,
            error=message,
        )
        await self.store.update_progress(status=IndexStatus.ERROR, last_error=error)
        self._emit("", "error", error=error)
        raise IndexingAbortedError(self._breaker.failures, message)

    def _emit(
        self,
        current_file: str,
        status: ProgressPhase,
        error: str | None = None,
    ) -> None:
        if self._callback is None:
            return

        event = ProgressEvent(
            total_files=self._total_files,
            processed_files=self._processed_files,
            total_chunks=self._total_chunks,
            current_file=current_file,
            status=status,
            error=error,
        )
        try:
            self._callback(event)
        except Exception as e:
            logger.warning("Progress callback failed", error=str(e))
