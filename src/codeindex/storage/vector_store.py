"""
SQLite-backed chunk and embedding store.

Provides:
- Chunk rows with float32 embeddings stored as BLOBs
- Content-hash lookup for skipping unchanged files
- Brute-force cosine similarity search over every stored vector
- The singleton indexing progress / watcher state record
- Transaction support

The database file lives inside the project (``.codeindex/embeddings.db`` by
default) so the index travels with the checkout. One writer per project.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, AsyncIterator

import aiosqlite
import numpy as np
import structlog

from codeindex.errors import StoreNotInitializedError
from codeindex.models import CodeChunk, IndexProgress, IndexStatus, ScoredChunk, now_ms

if TYPE_CHECKING:
    from codeindex.config import Config

logger = structlog.get_logger(__name__)


# Field name -> column for partial progress updates
_PROGRESS_COLUMNS = {
    "total_files": "total_files",
    "processed_files": "processed_files",
    "total_chunks": "total_chunks",
    "status": "status",
    "last_error": "last_error",
    "last_processed_file": "last_processed_file",
    "started_at": "started_at",
    "completed_at": "completed_at",
    "watcher_enabled": "watcher_enabled",
}


def encode_vector(vector: np.ndarray | list[float]) -> bytes:
    """Serialize a vector as little-endian float32 bytes."""
    return np.asarray(vector, dtype="<f4").tobytes()


def decode_vector(blob: bytes) -> np.ndarray:
    """Inverse of encode_vector."""
    return np.frombuffer(blob, dtype="<f4").astype(np.float32)


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine similarity; 0.0 when either vector has zero norm."""
    if a.shape != b.shape:
        raise ValueError("Vectors must have same length")
    denom = float(np.linalg.norm(a) * np.linalg.norm(b))
    if denom == 0.0:
        return 0.0
    return float(np.dot(a, b) / denom)


class VectorStore:
    """
    Embedded vector store for one project.

    Features:
    - WAL mode so searches can read while indexing writes
    - Atomic batch inserts
    - Exact top-k by cosine similarity (full scan, no ANN index)
    """

    SCHEMA = """
    CREATE TABLE IF NOT EXISTS code_chunks (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        file_path TEXT NOT NULL,
        content TEXT NOT NULL,
        start_line INTEGER NOT NULL,
        end_line INTEGER NOT NULL,
        embedding BLOB NOT NULL,
        file_hash TEXT NOT NULL,
        created_at INTEGER NOT NULL,
        updated_at INTEGER NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_file_path ON code_chunks(file_path);
    CREATE INDEX IF NOT EXISTS idx_file_hash ON code_chunks(file_hash);

    CREATE TABLE IF NOT EXISTS index_progress (
        id INTEGER PRIMARY KEY CHECK (id = 1),
        total_files INTEGER NOT NULL DEFAULT 0,
        processed_files INTEGER NOT NULL DEFAULT 0,
        total_chunks INTEGER NOT NULL DEFAULT 0,
        status TEXT NOT NULL DEFAULT 'idle',
        last_error TEXT,
        last_processed_file TEXT,
        started_at INTEGER,
        completed_at INTEGER,
        updated_at INTEGER NOT NULL,
        watcher_enabled INTEGER NOT NULL DEFAULT 0
    );
    """

    def __init__(self, config: "Config") -> None:
        """
        Initialize the store.

        Args:
            config: codeindex configuration.
        """
        self.config = config
        self.db_path = config.db_path
        self._db: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

    @property
    def is_initialized(self) -> bool:
        return self._db is not None

    async def initialize(self) -> None:
        """Open the database and create the schema."""
        if self._db is not None:
            return

        logger.info("Initializing vector store", db_path=str(self.db_path))

        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._db = await aiosqlite.connect(
            self.db_path,
            isolation_level=None,  # Autocommit mode for explicit transactions
        )
        await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.execute("PRAGMA synchronous=NORMAL")
        await self._db.executescript(self.SCHEMA)
        await self._db.execute(
            "INSERT OR IGNORE INTO index_progress (id, updated_at) VALUES (1, ?)",
            (now_ms(),),
        )

        logger.info("Vector store initialized")

    async def close(self) -> None:
        """Close the database connection."""
        if self._db:
            await self._db.close()
            self._db = None
            logger.info("Vector store closed")

    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise StoreNotInitializedError()
        return self._db

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Context manager for transactions."""
        db = self._conn()

        async with self._lock:
            await db.execute("BEGIN")
            try:
                yield db
                await db.execute("COMMIT")
            except BaseException:
                await db.execute("ROLLBACK")
                raise

    async def _write(self, sql: str, params: tuple | list = ()) -> int:
        """Run one write statement outside of any open transaction."""
        db = self._conn()
        async with self._lock:
            cursor = await db.execute(sql, params)
            return cursor.rowcount

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    async def insert_chunks(self, chunks: list[CodeChunk]) -> None:
        """
        Insert a batch of embedded chunks atomically.

        Args:
            chunks: Chunks with embedding, file_hash and timestamps set.
        """
        if not chunks:
            return

        rows = [
            (
                chunk.file_path,
                chunk.content,
                chunk.start_line,
                chunk.end_line,
                encode_vector(chunk.embedding),
                chunk.file_hash,
                chunk.created_at,
                chunk.updated_at,
            )
            for chunk in chunks
        ]

        async with self.transaction() as conn:
            await conn.executemany(
                """
                INSERT INTO code_chunks (
                    file_path, content, start_line, end_line,
                    embedding, file_hash, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                rows,
            )

    async def delete_chunks_by_file(self, file_path: str) -> int:
        """
        Delete all chunks for a file.

        Returns:
            Number of deleted chunks.
        """
        return await self._write(
            "DELETE FROM code_chunks WHERE file_path = ?",
            (file_path,),
        )

    async def get_chunks_by_file(self, file_path: str) -> list[CodeChunk]:
        """Get all chunks for a file ordered by start line."""
        db = self._conn()
        async with db.execute(
            "SELECT * FROM code_chunks WHERE file_path = ? ORDER BY start_line",
            (file_path,),
        ) as cursor:
            rows = await cursor.fetchall()
            return [self._row_to_chunk(row, cursor.description) for row in rows]

    async def has_file_hash(self, file_hash: str) -> bool:
        """Check whether any chunk was produced from content with this hash."""
        db = self._conn()
        async with db.execute(
            "SELECT 1 FROM code_chunks WHERE file_hash = ? LIMIT 1",
            (file_hash,),
        ) as cursor:
            return await cursor.fetchone() is not None

    async def get_total_chunks(self) -> int:
        """Get the number of stored chunks."""
        db = self._conn()
        async with db.execute("SELECT COUNT(*) FROM code_chunks") as cursor:
            row = await cursor.fetchone()
            return row[0] if row else 0

    async def search_similar(
        self,
        query_vector: np.ndarray | list[float],
        limit: int = 10,
    ) -> list[ScoredChunk]:
        """
        Find the stored chunks most similar to a query vector.

        Scans every row and ranks by cosine similarity. Ties keep insertion
        order.

        Args:
            query_vector: Query embedding.
            limit: Maximum results.

        Returns:
            Up to ``limit`` chunks by descending score.
        """
        db = self._conn()

        if limit <= 0:
            return []

        async with db.execute("SELECT * FROM code_chunks ORDER BY id") as cursor:
            rows = await cursor.fetchall()
            chunks = [self._row_to_chunk(row, cursor.description) for row in rows]

        if not chunks:
            return []

        query = np.asarray(query_vector, dtype=np.float32)
        if any(c.embedding.shape != query.shape for c in chunks):
            raise ValueError("Vectors must have same length")

        matrix = np.vstack([c.embedding for c in chunks])
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
        dots = matrix @ query
        scores = np.divide(
            dots,
            norms,
            out=np.zeros_like(dots),
            where=norms != 0,
        )

        order = np.argsort(-scores, kind="stable")[:limit]
        return [ScoredChunk(chunk=chunks[i], score=float(scores[i])) for i in order]

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    async def get_progress(self) -> IndexProgress:
        """Get the current indexing progress record."""
        db = self._conn()
        async with db.execute("SELECT * FROM index_progress WHERE id = 1") as cursor:
            row = await cursor.fetchone()
            if row is None:
                return IndexProgress()
            data = dict(zip([d[0] for d in cursor.description], row))

        return IndexProgress(
            total_files=data["total_files"],
            processed_files=data["processed_files"],
            total_chunks=data["total_chunks"],
            status=IndexStatus(data["status"]),
            last_error=data["last_error"],
            last_processed_file=data["last_processed_file"],
            started_at=data["started_at"],
            completed_at=data["completed_at"],
            watcher_enabled=bool(data["watcher_enabled"]),
            updated_at=data["updated_at"],
        )

    async def update_progress(self, **fields: Any) -> None:
        """
        Update selected progress fields.

        Only the given fields change; ``updated_at`` is always refreshed.
        Passing ``None`` clears a nullable field.
        """
        assignments: list[str] = []
        values: list[Any] = []

        for name, value in fields.items():
            column = _PROGRESS_COLUMNS.get(name)
            if column is None:
                raise ValueError(f"Unknown progress field: {name}")
            if isinstance(value, IndexStatus):
                value = value.value
            elif isinstance(value, bool):
                value = 1 if value else 0
            assignments.append(f"{column} = ?")
            values.append(value)

        assignments.append("updated_at = ?")
        values.append(now_ms())

        await self._write(
            f"UPDATE index_progress SET {', '.join(assignments)} WHERE id = 1",
            values,
        )

    async def set_watcher_enabled(self, enabled: bool) -> None:
        """Persist the watcher state."""
        await self._write(
            "UPDATE index_progress SET watcher_enabled = ? WHERE id = 1",
            (1 if enabled else 0,),
        )

    async def is_watcher_enabled(self) -> bool:
        """Read the persisted watcher state."""
        db = self._conn()
        async with db.execute(
            "SELECT watcher_enabled FROM index_progress WHERE id = 1"
        ) as cursor:
            row = await cursor.fetchone()
            return bool(row[0]) if row else False

    async def clear(self) -> None:
        """Delete every chunk and reset progress to idle."""
        async with self.transaction() as conn:
            await conn.execute("DELETE FROM code_chunks")
            await conn.execute(
                """
                UPDATE index_progress
                SET total_files = 0,
                    processed_files = 0,
                    total_chunks = 0,
                    status = 'idle',
                    last_error = NULL,
                    last_processed_file = NULL,
                    started_at = NULL,
                    completed_at = NULL,
                    updated_at = ?
                WHERE id = 1
                """,
                (now_ms(),),
            )
        logger.info("Vector store cleared")

    async def get_stats(self) -> dict[str, Any]:
        """Get storage statistics."""
        db = self._conn()
        stats: dict[str, Any] = {"db_path": str(self.db_path)}

        async with db.execute("SELECT COUNT(*) FROM code_chunks") as cursor:
            row = await cursor.fetchone()
            stats["total_chunks"] = row[0] if row else 0

        async with db.execute(
            "SELECT COUNT(DISTINCT file_path) FROM code_chunks"
        ) as cursor:
            row = await cursor.fetchone()
            stats["indexed_files"] = row[0] if row else 0

        if self.db_path.exists():
            stats["db_size_bytes"] = self.db_path.stat().st_size

        return stats

    def _row_to_chunk(self, row: tuple, description: Any) -> CodeChunk:
        """Convert a database row to CodeChunk."""
        columns = [d[0] for d in description]
        data = dict(zip(columns, row))

        return CodeChunk(
            id=data["id"],
            file_path=data["file_path"],
            content=data["content"],
            start_line=data["start_line"],
            end_line=data["end_line"],
            embedding=decode_vector(data["embedding"]),
            file_hash=data["file_hash"],
            created_at=data["created_at"],
            updated_at=data["updated_at"],
        )
