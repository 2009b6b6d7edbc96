"""
codeindex main entry point.

Provides the CodebaseService orchestration class and CLI interface.
"""

from __future__ import annotations

import asyncio
import json
import logging
import signal
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any, AsyncIterator

import click
import structlog

from codeindex.config import Config, load_config
from codeindex.models import IndexProgress, ProgressCallback, SearchResponse

if TYPE_CHECKING:
    from codeindex.indexing.embedder import EmbeddingBackend
    from codeindex.indexing.engine import IndexingEngine
    from codeindex.indexing.watcher import FileWatcher
    from codeindex.retrieval.events import SearchEventEmitter
    from codeindex.retrieval.review import ReviewCollaborator
    from codeindex.retrieval.search import SearchEngine
    from codeindex.storage.vector_store import VectorStore

logger = structlog.get_logger(__name__)


class CodebaseService:
    """
    Main service wiring the index components for one project.

    It manages:
    - The vector store handle
    - The embedding backend
    - Full indexing runs and file watching
    - Search
    """

    def __init__(
        self,
        config: Config | None = None,
        embedder: "EmbeddingBackend | None" = None,
        reviewer: "ReviewCollaborator | None" = None,
        events: "SearchEventEmitter | None" = None,
    ) -> None:
        """
        Initialize the service.

        Args:
            config: Configuration instance. Uses default if not provided.
            embedder: Embedding backend. Built from config if not provided.
            reviewer: Optional relevance reviewer for search results.
            events: Optional emitter receiving search events.
        """
        self.config = config or Config()

        self._embedder = embedder
        self._reviewer = reviewer
        self._events = events

        self._store: VectorStore | None = None
        self._engine: IndexingEngine | None = None
        self._watcher: FileWatcher | None = None
        self._search: SearchEngine | None = None

        self._initialized = False
        self._shutdown_event = asyncio.Event()

        logger.info(
            "codeindex service created",
            project_root=str(self.config.project_root),
            data_dir=str(self.config.absolute_data_dir),
        )

    @property
    def store(self) -> "VectorStore":
        if self._store is None:
            raise RuntimeError("Service not initialized")
        return self._store

    @property
    def engine(self) -> "IndexingEngine":
        if self._engine is None:
            raise RuntimeError("Service not initialized")
        return self._engine

    @property
    def watcher(self) -> "FileWatcher":
        if self._watcher is None:
            raise RuntimeError("Service not initialized")
        return self._watcher

    @property
    def search_engine(self) -> "SearchEngine":
        if self._search is None:
            raise RuntimeError("Service not initialized")
        return self._search

    async def initialize(self) -> None:
        """
        Initialize all components.

        The database is opened lazily by the first operation that needs it,
        so a project that was never indexed keeps no index file.
        """
        if self._initialized:
            return

        logger.info("Initializing codeindex service")

        # Import here to avoid circular imports
        from codeindex.indexing.embedder import create_embedder
        from codeindex.indexing.engine import IndexingEngine
        from codeindex.indexing.watcher import FileWatcher
        from codeindex.retrieval.search import SearchEngine
        from codeindex.storage.vector_store import VectorStore

        self._store = VectorStore(self.config)

        if self._embedder is None:
            self._embedder = create_embedder(self.config)
        await self._embedder.initialize()

        self._engine = IndexingEngine(self.config, self._store, self._embedder)
        self._watcher = FileWatcher(self.config, self._engine, self._store)
        self._search = SearchEngine(
            self.config,
            self._store,
            self._embedder,
            reviewer=self._reviewer,
            events=self._events,
        )

        self._initialized = True
        logger.info("codeindex service initialized")

    async def shutdown(self) -> None:
        """Stop watching and indexing, then release the embedder and store."""
        logger.info("Shutting down codeindex service")
        self._shutdown_event.set()

        if self._watcher:
            await self._watcher.stop()

        if self._engine:
            await self._engine.stop()

        if self._embedder:
            await self._embedder.close()

        if self._store:
            await self._store.close()

        self._initialized = False
        logger.info("codeindex service shutdown complete")

    @asynccontextmanager
    async def session(self) -> AsyncIterator["CodebaseService"]:
        """Initialize on entry, shut down on exit."""
        try:
            await self.initialize()
            yield self
        finally:
            await self.shutdown()

    async def index(self, progress_callback: ProgressCallback | None = None) -> IndexProgress:
        """Run (or resume) a full indexing pass."""
        if not self._initialized:
            await self.initialize()

        await self.engine.start(progress_callback)
        return await self.engine.get_progress()

    async def reindex(self, progress_callback: ProgressCallback | None = None) -> IndexProgress:
        """Drop the index and rebuild it from scratch."""
        if not self._initialized:
            await self.initialize()

        await self.engine.clear()
        return await self.index(progress_callback)

    async def start_watching(self) -> bool:
        """Start file system watching."""
        if not self._initialized:
            await self.initialize()

        started = await self.watcher.start()
        if started:
            logger.info("File watching started")
        return started

    async def stop_watching(self) -> None:
        """Stop file system watching."""
        if self._watcher:
            await self._watcher.stop()
            logger.info("File watching stopped")

    async def search(self, query: str, top_n: int | None = None) -> SearchResponse:
        """Search the codebase."""
        if not self._initialized:
            await self.initialize()

        return await self.search_engine.search(query, top_n)

    async def get_progress(self) -> IndexProgress:
        """Get the persisted indexing progress."""
        if not self._initialized:
            await self.initialize()

        return await self.engine.get_progress()

    async def clear(self) -> None:
        """Drop the whole index."""
        if not self._initialized:
            await self.initialize()

        await self.engine.clear()

    async def get_stats(self) -> dict[str, Any]:
        """Report service state and, when an index exists, store statistics."""
        stats: dict[str, Any] = {
            "initialized": self._initialized,
            "project_root": str(self.config.project_root),
            "enabled": self.config.enabled,
        }

        if self._store and self.config.db_path.exists():
            await self._store.initialize()
            stats["store"] = await self._store.get_stats()

        if self._engine:
            stats["indexing"] = self._engine.is_indexing()

        if self._watcher:
            stats["watching"] = self._watcher.is_running

        return stats


def _print_progress(event: Any) -> None:
    if event.status == "indexing":
        click.echo(
            f"[{event.processed_files}/{event.total_files}] "
            f"{event.total_chunks} chunks ({event.current_file})"
        )
    elif event.status == "error":
        click.echo(f"Error: {event.error}", err=True)


# CLI Implementation
@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file",
)
@click.option(
    "--project",
    "-p",
    type=click.Path(exists=True, path_type=Path),
    default=Path.cwd(),
    help="Project root directory",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose logging",
)
@click.pass_context
def cli(ctx: click.Context, config: Path | None, project: Path, verbose: bool) -> None:
    """codeindex - semantic search over a local codebase."""
    ctx.ensure_object(dict)

    log_level = logging.DEBUG if verbose else logging.INFO
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
    )

    ctx.obj["config"] = load_config(config_path=config, project_root=project)


def _require_enabled(config: Config) -> None:
    if not config.enabled:
        raise click.ClickException(
            "Codebase indexing is disabled. Set enabled = true in codeindex.toml "
            "or CODEINDEX_ENABLED=true."
        )


@cli.command()
@click.pass_context
def index(ctx: click.Context) -> None:
    """Index (or resume indexing) the project."""
    config = ctx.obj["config"]
    _require_enabled(config)

    async def run_index() -> None:
        service = CodebaseService(config)
        async with service.session():
            progress = await service.index(_print_progress)
            click.echo(f"Indexed {progress.processed_files}/{progress.total_files} files")
            click.echo(f"Stored {progress.total_chunks} chunks")

    asyncio.run(run_index())


@cli.command()
@click.pass_context
def reindex(ctx: click.Context) -> None:
    """Drop the index and rebuild it."""
    config = ctx.obj["config"]
    _require_enabled(config)

    async def run_reindex() -> None:
        service = CodebaseService(config)
        async with service.session():
            progress = await service.reindex(_print_progress)
            click.echo(f"Indexed {progress.processed_files}/{progress.total_files} files")
            click.echo(f"Stored {progress.total_chunks} chunks")

    asyncio.run(run_reindex())


@cli.command()
@click.argument("query")
@click.option("--limit", "-n", type=click.IntRange(1, 50), default=10, help="Number of results")
@click.option("--json", "as_json", is_flag=True, help="Print the raw JSON response")
@click.pass_context
def search(ctx: click.Context, query: str, limit: int, as_json: bool) -> None:
    """Search the index."""
    config = ctx.obj["config"]

    async def run_search() -> None:
        service = CodebaseService(config)
        async with service.session():
            response = await service.search(query, limit)

            if as_json:
                click.echo(json.dumps(response.to_dict(), indent=2))
                return

            if not response.available:
                click.echo(response.error, err=True)
                return

            for hit in response.results:
                click.echo(f"\n--- Result {hit.rank} ({hit.similarity_score * 100:.2f}%) ---")
                click.echo(f"File: {hit.location}")
                click.echo(hit.content[:500] + "..." if len(hit.content) > 500 else hit.content)

            for suggestion in response.suggestions:
                click.echo(f"Suggestion: {suggestion}", err=True)

    asyncio.run(run_search())


@cli.command()
@click.pass_context
def watch(ctx: click.Context) -> None:
    """Index the project, then keep the index current."""
    config = ctx.obj["config"]
    _require_enabled(config)

    async def run_watch() -> None:
        service = CodebaseService(config)

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, service._shutdown_event.set)

        async with service.session():
            index_task = asyncio.create_task(service.index(_print_progress))
            await service.start_watching()
            click.echo("Watching for changes... (Ctrl+C to stop)")

            await service._shutdown_event.wait()
            service.engine.request_stop()
            await asyncio.gather(index_task, return_exceptions=True)

    asyncio.run(run_watch())


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show indexing progress and index statistics."""
    config = ctx.obj["config"]

    async def run_status() -> None:
        service = CodebaseService(config)
        async with service.session():
            if not config.db_path.exists():
                click.echo("No index found.")
                return

            progress = await service.get_progress()
            click.echo("codeindex status")
            click.echo("=" * 40)
            click.echo(f"status: {progress.status.value}")
            click.echo(f"files: {progress.processed_files}/{progress.total_files}")
            click.echo(f"chunks: {progress.total_chunks}")
            click.echo(f"watcher_enabled: {progress.watcher_enabled}")
            if progress.last_error:
                click.echo(f"last_error: {progress.last_error}")

            stats = await service.get_stats()
            for key, value in stats.get("store", {}).items():
                click.echo(f"{key}: {value}")

    asyncio.run(run_status())


@cli.command()
@click.confirmation_option(prompt="Delete the whole index?")
@click.pass_context
def clear(ctx: click.Context) -> None:
    """Delete every indexed chunk."""
    config = ctx.obj["config"]

    async def run_clear() -> None:
        service = CodebaseService(config)
        async with service.session():
            await service.clear()
            click.echo("Index cleared")

    asyncio.run(run_clear())


def main() -> None:
    """Main entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
