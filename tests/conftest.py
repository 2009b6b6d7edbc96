"""
Shared fixtures for the codeindex test suite.

Provides common test fixtures including:
- Temporary project directories
- Test configuration (indexing enabled, no retry delays, short debounce)
- An initialized vector store
- Mock embedding backend
"""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import AsyncIterator

import numpy as np
import pytest

from codeindex.config import (
    BatchConfig,
    Config,
    EmbeddingConfig,
    RetryConfig,
    WatcherConfig,
)
from codeindex.indexing.embedder import EmbeddingBackend
from codeindex.models import CodeChunk, now_ms
from codeindex.storage.vector_store import VectorStore

TEST_DIMENSION = 32


# ==============================================================================
# Mock Embedding Backend
# ==============================================================================

class MockEmbeddingBackend(EmbeddingBackend):
    """
    Mock embedding backend for fast tests.

    Generates deterministic embeddings based on content hash.
    """

    def __init__(self, dimension: int = TEST_DIMENSION) -> None:
        self._dimension = dimension
        self.calls: list[list[str]] = []
        self.closed = False

    @property
    def dimension(self) -> int:
        return self._dimension

    def vector_for(self, text: str) -> np.ndarray:
        """Deterministic unit vector for a text."""
        hash_bytes = hashlib.sha256(text.encode()).digest()
        rng = np.random.default_rng(int.from_bytes(hash_bytes[:8], "little"))
        embedding = rng.standard_normal(self._dimension).astype(np.float32)
        return embedding / np.linalg.norm(embedding)

    async def embed_batch(self, texts: list[str]) -> list[np.ndarray]:
        self.calls.append(list(texts))
        return [self.vector_for(text) for text in texts]

    async def close(self) -> None:
        self.closed = True

    @property
    def call_count(self) -> int:
        """Number of embed_batch calls."""
        return len(self.calls)

    @property
    def embedded_texts(self) -> list[str]:
        return [text for call in self.calls for text in call]

    def reset(self) -> None:
        self.calls.clear()


# ==============================================================================
# Helpers
# ==============================================================================

def numbered_lines(count: int, prefix: str = "line") -> str:
    """File content with ``count`` distinct non-blank lines."""
    return "\n".join(f"{prefix} {i}" for i in range(1, count + 1))


def write_file(root: Path, rel_path: str, content: str) -> Path:
    path = root / rel_path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


def make_chunk(
    embedder: MockEmbeddingBackend,
    file_path: str,
    content: str,
    start_line: int = 1,
    end_line: int = 10,
    file_hash: str = "hash",
) -> CodeChunk:
    timestamp = now_ms()
    return CodeChunk(
        file_path=file_path,
        content=content,
        start_line=start_line,
        end_line=end_line,
        embedding=embedder.vector_for(content),
        file_hash=file_hash,
        created_at=timestamp,
        updated_at=timestamp,
    )


# ==============================================================================
# Fixtures
# ==============================================================================

@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """Create an empty project directory."""
    root = tmp_path / "project"
    root.mkdir()
    return root


def build_config(project_dir: Path, **overrides) -> Config:
    values = dict(
        project_root=project_dir,
        enabled=True,
        log_level="DEBUG",
        embedding=EmbeddingConfig(
            model_name="test-model",
            base_url="http://embeddings.test/v1",
            dimensions=TEST_DIMENSION,
        ),
        batch=BatchConfig(max_lines=10, concurrency=3),
        retry=RetryConfig(embed_base_delay=0.0, store_base_delay=0.0),
        watcher=WatcherConfig(debounce_seconds=0.05),
    )
    values.update(overrides)
    return Config(**values)


@pytest.fixture
def config(project_dir: Path) -> Config:
    """Test configuration with indexing enabled and no retry delays."""
    return build_config(project_dir)


@pytest.fixture
def mock_embedder() -> MockEmbeddingBackend:
    """Get a mock embedding backend."""
    return MockEmbeddingBackend()


@pytest.fixture
async def store(config: Config) -> AsyncIterator[VectorStore]:
    """Get an initialized vector store."""
    vector_store = VectorStore(config)
    await vector_store.initialize()
    yield vector_store
    await vector_store.close()


def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
