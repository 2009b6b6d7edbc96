"""Exception hierarchy for codeindex."""

from __future__ import annotations


class CodeIndexError(Exception):
    """Base class for all codeindex errors."""


class StoreNotInitializedError(CodeIndexError, RuntimeError):
    """Raised when the vector store is used before initialize()."""

    def __init__(self) -> None:
        super().__init__("Database not initialized")


class EmbeddingError(CodeIndexError):
    """Raised when the embedding service returns an unusable response."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class EmbeddingConfigError(EmbeddingError):
    """Raised when the embedding service is not configured."""


class IndexingAbortedError(CodeIndexError):
    """Raised when the circuit breaker aborts an indexing run."""

    def __init__(self, failures: int, last_error: str) -> None:
        super().__init__(
            f"Indexing stopped after {failures} consecutive failures: {last_error}"
        )
        self.failures = failures
        self.last_error = last_error
