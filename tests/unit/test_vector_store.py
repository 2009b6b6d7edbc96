"""
Unit tests for the vector store.

Tests cover:
- Initialization and WAL mode
- Chunk insert / lookup / delete
- Content-hash lookup
- Cosine similarity search
- Progress record updates
- Transactions
"""

from __future__ import annotations

import numpy as np
import pytest

from codeindex.config import Config
from codeindex.errors import StoreNotInitializedError
from codeindex.models import CodeChunk, IndexStatus
from codeindex.storage.vector_store import (
    VectorStore,
    cosine_similarity,
    decode_vector,
    encode_vector,
)
from tests.conftest import MockEmbeddingBackend, make_chunk


def vector_chunk(file_path: str, vector: list[float], start_line: int = 1) -> CodeChunk:
    return CodeChunk(
        file_path=file_path,
        content=f"{file_path}:{start_line}",
        start_line=start_line,
        end_line=start_line + 9,
        embedding=np.asarray(vector, dtype=np.float32),
        file_hash=f"hash-{file_path}",
        created_at=1,
        updated_at=1,
    )


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_operations_before_initialize_raise(self, config: Config):
        store = VectorStore(config)

        with pytest.raises(StoreNotInitializedError, match="Database not initialized"):
            await store.get_total_chunks()
        with pytest.raises(StoreNotInitializedError):
            await store.search_similar([1.0, 0.0], 5)

    @pytest.mark.asyncio
    async def test_initialize_creates_database(self, config: Config):
        store = VectorStore(config)
        await store.initialize()
        try:
            assert config.db_path.exists()
            assert config.db_path.name == "embeddings.db"
            assert await store.get_total_chunks() == 0
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_wal_mode(self, store: VectorStore):
        async with store._conn().execute("PRAGMA journal_mode") as cursor:
            row = await cursor.fetchone()
        assert row[0] == "wal"

    @pytest.mark.asyncio
    async def test_data_survives_reopen(self, config: Config, mock_embedder: MockEmbeddingBackend):
        store = VectorStore(config)
        await store.initialize()
        await store.insert_chunks([make_chunk(mock_embedder, "a.py", "alpha")])
        await store.close()

        reopened = VectorStore(config)
        await reopened.initialize()
        try:
            chunks = await reopened.get_chunks_by_file("a.py")
            assert [c.content for c in chunks] == ["alpha"]
            np.testing.assert_allclose(chunks[0].embedding, mock_embedder.vector_for("alpha"))
        finally:
            await reopened.close()


class TestChunks:
    @pytest.mark.asyncio
    async def test_insert_and_get_by_file(self, store: VectorStore, mock_embedder: MockEmbeddingBackend):
        await store.insert_chunks(
            [
                make_chunk(mock_embedder, "a.py", "second", start_line=91, end_line=190),
                make_chunk(mock_embedder, "a.py", "first", start_line=1, end_line=100),
                make_chunk(mock_embedder, "b.py", "other"),
            ]
        )

        chunks = await store.get_chunks_by_file("a.py")

        assert [c.start_line for c in chunks] == [1, 91]
        assert [c.content for c in chunks] == ["first", "second"]
        assert all(c.id is not None for c in chunks)
        assert chunks[0].embedding.dtype == np.float32
        assert await store.get_total_chunks() == 3

    @pytest.mark.asyncio
    async def test_insert_empty_batch(self, store: VectorStore):
        await store.insert_chunks([])
        assert await store.get_total_chunks() == 0

    @pytest.mark.asyncio
    async def test_delete_by_file(self, store: VectorStore, mock_embedder: MockEmbeddingBackend):
        await store.insert_chunks(
            [
                make_chunk(mock_embedder, "a.py", "one"),
                make_chunk(mock_embedder, "a.py", "two", start_line=91),
                make_chunk(mock_embedder, "b.py", "three"),
            ]
        )

        assert await store.delete_chunks_by_file("a.py") == 2
        assert await store.delete_chunks_by_file("a.py") == 0
        assert await store.get_chunks_by_file("a.py") == []
        assert await store.get_total_chunks() == 1

    @pytest.mark.asyncio
    async def test_has_file_hash(self, store: VectorStore, mock_embedder: MockEmbeddingBackend):
        await store.insert_chunks([make_chunk(mock_embedder, "a.py", "x", file_hash="abc")])

        assert await store.has_file_hash("abc")
        assert not await store.has_file_hash("def")

    @pytest.mark.asyncio
    async def test_transaction_rolls_back(self, store: VectorStore, mock_embedder: MockEmbeddingBackend):
        chunk = make_chunk(mock_embedder, "a.py", "x")

        with pytest.raises(RuntimeError):
            async with store.transaction() as conn:
                await conn.execute(
                    "INSERT INTO code_chunks (file_path, content, start_line, end_line, "
                    "embedding, file_hash, created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    ("a.py", "x", 1, 1, encode_vector(chunk.embedding), "h", 1, 1),
                )
                raise RuntimeError("abort")

        assert await store.get_total_chunks() == 0


class TestSearchSimilar:
    @pytest.mark.asyncio
    async def test_ranked_by_cosine(self, store: VectorStore):
        await store.insert_chunks(
            [
                vector_chunk("x.py", [1.0, 0.0, 0.0]),
                vector_chunk("y.py", [0.0, 1.0, 0.0]),
                vector_chunk("xy.py", [1.0, 1.0, 0.0]),
            ]
        )

        results = await store.search_similar([1.0, 0.1, 0.0], 3)

        assert [r.chunk.file_path for r in results] == ["x.py", "xy.py", "y.py"]
        scores = [r.score for r in results]
        assert scores == sorted(scores, reverse=True)
        assert results[0].score == pytest.approx(cosine_similarity(
            np.array([1.0, 0.1, 0.0], dtype=np.float32),
            np.array([1.0, 0.0, 0.0], dtype=np.float32),
        ), rel=1e-5)

    @pytest.mark.asyncio
    async def test_limit(self, store: VectorStore):
        await store.insert_chunks(
            [vector_chunk(f"f{i}.py", [1.0, float(i)]) for i in range(5)]
        )

        assert len(await store.search_similar([1.0, 0.0], 2)) == 2
        assert len(await store.search_similar([1.0, 0.0], 50)) == 5
        assert await store.search_similar([1.0, 0.0], 0) == []

    @pytest.mark.asyncio
    async def test_ties_keep_insertion_order(self, store: VectorStore):
        await store.insert_chunks(
            [
                vector_chunk("first.py", [0.0, 1.0]),
                vector_chunk("second.py", [0.0, 2.0]),
            ]
        )

        results = await store.search_similar([0.0, 1.0], 2)

        assert [r.chunk.file_path for r in results] == ["first.py", "second.py"]

    @pytest.mark.asyncio
    async def test_zero_vector_scores_zero(self, store: VectorStore):
        await store.insert_chunks(
            [vector_chunk("zero.py", [0.0, 0.0]), vector_chunk("one.py", [1.0, 0.0])]
        )

        results = await store.search_similar([1.0, 0.0], 2)

        assert results[0].chunk.file_path == "one.py"
        assert results[1].score == 0.0

    @pytest.mark.asyncio
    async def test_dimension_mismatch(self, store: VectorStore):
        await store.insert_chunks([vector_chunk("a.py", [1.0, 0.0, 0.0])])

        with pytest.raises(ValueError, match="same length"):
            await store.search_similar([1.0, 0.0], 1)

    @pytest.mark.asyncio
    async def test_empty_store(self, store: VectorStore):
        assert await store.search_similar([1.0, 0.0], 10) == []


class TestProgress:
    @pytest.mark.asyncio
    async def test_initial_record(self, store: VectorStore):
        progress = await store.get_progress()

        assert progress.status == IndexStatus.IDLE
        assert progress.total_files == 0
        assert progress.processed_files == 0
        assert progress.watcher_enabled is False
        assert progress.updated_at is not None

    @pytest.mark.asyncio
    async def test_partial_update(self, store: VectorStore):
        await store.update_progress(total_files=10, status=IndexStatus.INDEXING, started_at=5)
        await store.update_progress(processed_files=3, last_processed_file="a.py")

        progress = await store.get_progress()

        assert progress.total_files == 10
        assert progress.processed_files == 3
        assert progress.status == IndexStatus.INDEXING
        assert progress.started_at == 5
        assert progress.last_processed_file == "a.py"

    @pytest.mark.asyncio
    async def test_none_clears_field(self, store: VectorStore):
        await store.update_progress(last_error="boom")
        await store.update_progress(last_error=None)

        assert (await store.get_progress()).last_error is None

    @pytest.mark.asyncio
    async def test_updated_at_refreshed(self, store: VectorStore):
        await store._write("UPDATE index_progress SET updated_at = 0 WHERE id = 1")

        await store.update_progress(processed_files=1)

        assert (await store.get_progress()).updated_at > 0

    @pytest.mark.asyncio
    async def test_unknown_field(self, store: VectorStore):
        with pytest.raises(ValueError, match="Unknown progress field"):
            await store.update_progress(bogus=1)

    @pytest.mark.asyncio
    async def test_watcher_flag(self, store: VectorStore):
        await store.set_watcher_enabled(True)
        assert await store.is_watcher_enabled()
        assert (await store.get_progress()).watcher_enabled is True

        await store.set_watcher_enabled(False)
        assert not await store.is_watcher_enabled()


class TestClearAndStats:
    @pytest.mark.asyncio
    async def test_clear(self, store: VectorStore, mock_embedder: MockEmbeddingBackend):
        await store.insert_chunks([make_chunk(mock_embedder, "a.py", "x")])
        await store.update_progress(
            status=IndexStatus.COMPLETED, total_files=1, processed_files=1, total_chunks=1
        )

        await store.clear()

        progress = await store.get_progress()
        assert await store.get_total_chunks() == 0
        assert progress.status == IndexStatus.IDLE
        assert progress.total_files == 0
        assert progress.total_chunks == 0

    @pytest.mark.asyncio
    async def test_stats(self, store: VectorStore, mock_embedder: MockEmbeddingBackend):
        await store.insert_chunks(
            [
                make_chunk(mock_embedder, "a.py", "x"),
                make_chunk(mock_embedder, "a.py", "y", start_line=91),
                make_chunk(mock_embedder, "b.py", "z"),
            ]
        )

        stats = await store.get_stats()

        assert stats["total_chunks"] == 3
        assert stats["indexed_files"] == 2
        assert stats["db_size_bytes"] > 0


class TestVectorHelpers:
    def test_encode_decode(self):
        vector = np.array([0.5, -1.25, 3.0], dtype=np.float32)
        blob = encode_vector(vector)

        assert len(blob) == 12
        np.testing.assert_array_equal(decode_vector(blob), vector)

    def test_cosine_zero_norm(self):
        assert cosine_similarity(np.zeros(3), np.ones(3)) == 0.0

    def test_cosine_length_mismatch(self):
        with pytest.raises(ValueError):
            cosine_similarity(np.ones(2), np.ones(3))
