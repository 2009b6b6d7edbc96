"""
Embedding backend abstraction.

Provides:
- Abstract base class for embedding backends
- OpenAI-compatible backend (``POST /embeddings``, e.g. OpenAI or Jina)
- Ollama backend (``POST /embed``)
- Factory selecting the backend from configuration
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

import httpx
import numpy as np
import structlog

from codeindex.errors import EmbeddingConfigError, EmbeddingError

if TYPE_CHECKING:
    from codeindex.config import Config

logger = structlog.get_logger(__name__)


class EmbeddingBackend(ABC):
    """Abstract base class for embedding backends."""

    @property
    @abstractmethod
    def dimension(self) -> int:
        """Return the embedding dimension."""
        pass

    async def initialize(self) -> None:
        """Initialize the backend (open clients, etc.)."""
        pass

    @abstractmethod
    async def embed_batch(self, texts: list[str]) -> list[np.ndarray]:
        """
        Generate embeddings for multiple texts in one request.

        Args:
            texts: Non-empty list of input texts.

        Returns:
            One float32 vector per input, in input order.
        """
        pass

    async def embed(self, text: str) -> np.ndarray:
        """Generate embedding for a single text."""
        results = await self.embed_batch([text])
        if not results:
            raise EmbeddingError("No embedding returned from API")
        return results[0]

    async def close(self) -> None:
        """Cleanup resources."""
        pass


def _check_request(config: "Config", texts: list[str]) -> None:
    if not config.embedding.model_name:
        raise EmbeddingConfigError("Embedding model name is required")
    if not config.embedding.base_url:
        raise EmbeddingConfigError("Embedding base URL is required")
    if not texts:
        raise ValueError("Input texts are required")


def _to_vectors(raw: list[list[float]], expected: int) -> list[np.ndarray]:
    if len(raw) != expected:
        raise EmbeddingError(
            f"Embedding API returned {len(raw)} vectors for {expected} inputs"
        )
    return [np.asarray(v, dtype=np.float32) for v in raw]


class RemoteEmbeddingBackend(EmbeddingBackend):
    """
    OpenAI-compatible embedding backend.

    Works against any service exposing ``/embeddings`` with the OpenAI
    request shape (OpenAI, Jina, most self-hosted gateways).
    """

    def __init__(self, config: "Config") -> None:
        self.config = config
        self._client: Any = None

    @property
    def dimension(self) -> int:
        return self.config.embedding.dimensions

    def _base_url(self) -> str:
        base = self.config.embedding.base_url.rstrip("/")
        if base.endswith("/embeddings"):
            base = base[: -len("/embeddings")]
        return base

    async def initialize(self) -> None:
        """Initialize the API client. Deferred until a base URL is configured."""
        if self._client is not None or not self.config.embedding.base_url:
            return

        from openai import AsyncOpenAI

        self._client = AsyncOpenAI(
            # The SDK insists on a key; local deployments accept any value.
            api_key=self.config.embedding.api_key or "unused",
            base_url=self._base_url(),
            timeout=self.config.embedding.timeout_seconds,
            max_retries=0,
        )
        logger.info(
            "Remote embedding backend initialized",
            base_url=self._base_url(),
            model=self.config.embedding.model_name,
        )

    async def embed_batch(self, texts: list[str]) -> list[np.ndarray]:
        _check_request(self.config, texts)
        await self.initialize()

        extra_body: dict[str, Any] = {}
        if self.config.embedding.task:
            extra_body["task"] = self.config.embedding.task

        response = await self._client.embeddings.create(
            input=texts,
            model=self.config.embedding.model_name,
            dimensions=self.config.embedding.dimensions,
            extra_body=extra_body or None,
        )

        items = sorted(response.data, key=lambda item: item.index)
        return _to_vectors([item.embedding for item in items], len(texts))

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None


class OllamaEmbeddingBackend(EmbeddingBackend):
    """Ollama embedding backend (``POST <base>/embed``)."""

    def __init__(self, config: "Config") -> None:
        self.config = config
        self._client: httpx.AsyncClient | None = None

    @property
    def dimension(self) -> int:
        return self.config.embedding.dimensions

    def _url(self) -> str:
        base = self.config.embedding.base_url
        if base.endswith("/embed"):
            return base
        return f"{base.rstrip('/')}/embed"

    async def initialize(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.config.embedding.timeout_seconds
            )

    async def embed_batch(self, texts: list[str]) -> list[np.ndarray]:
        _check_request(self.config, texts)
        await self.initialize()
        if self._client is None:
            raise RuntimeError("Embedding client not initialized")

        headers = {"Content-Type": "application/json"}
        if self.config.embedding.api_key:
            headers["Authorization"] = f"Bearer {self.config.embedding.api_key}"

        response = await self._client.post(
            self._url(),
            json={"model": self.config.embedding.model_name, "input": texts},
            headers=headers,
        )

        if response.status_code >= 400:
            raise EmbeddingError(
                f"Embedding API error ({response.status_code}): {response.text}",
                status_code=response.status_code,
            )

        data = response.json()
        return _to_vectors(data.get("embeddings") or [], len(texts))

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def create_embedder(config: "Config") -> EmbeddingBackend:
    """
    Create an embedding backend based on configuration.

    Args:
        config: codeindex configuration.

    Returns:
        Configured EmbeddingBackend instance.
    """
    from codeindex.config import EmbeddingType

    if config.embedding.type == EmbeddingType.OLLAMA:
        return OllamaEmbeddingBackend(config)
    return RemoteEmbeddingBackend(config)
