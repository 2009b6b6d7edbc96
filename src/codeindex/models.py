"""
Core data types shared by the indexing, storage and retrieval layers.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Literal

import numpy as np


def now_ms() -> int:
    """Current time in epoch milliseconds."""
    return int(time.time() * 1000)


class IndexStatus(str, Enum):
    """Persisted status of an indexing run."""

    IDLE = "idle"
    INDEXING = "indexing"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass
class CodeChunk:
    """A contiguous slice of one file's lines."""

    file_path: str
    content: str
    start_line: int
    end_line: int
    embedding: np.ndarray = field(
        default_factory=lambda: np.zeros(0, dtype=np.float32)
    )
    file_hash: str = ""
    created_at: int = 0
    updated_at: int = 0
    id: int | None = None

    @property
    def location(self) -> str:
        """Human-readable location, e.g. ``src/app.py:1-100``."""
        return f"{self.file_path}:{self.start_line}-{self.end_line}"


@dataclass
class ScoredChunk:
    """A stored chunk with its cosine similarity to a query."""

    chunk: CodeChunk
    score: float


@dataclass
class IndexProgress:
    """Singleton progress record for a project index."""

    total_files: int = 0
    processed_files: int = 0
    total_chunks: int = 0
    status: IndexStatus = IndexStatus.IDLE
    last_error: str | None = None
    last_processed_file: str | None = None
    started_at: int | None = None
    completed_at: int | None = None
    watcher_enabled: bool = False
    updated_at: int | None = None


ProgressPhase = Literal["scanning", "indexing", "completed", "error"]


@dataclass
class ProgressEvent:
    """Push-style progress snapshot for the UI layer."""

    total_files: int
    processed_files: int
    total_chunks: int
    current_file: str
    status: ProgressPhase
    error: str | None = None


ProgressCallback = Callable[[ProgressEvent], None]


@dataclass
class SearchHit:
    """A ranked search result."""

    rank: int
    file_path: str
    start_line: int
    end_line: int
    content: str
    similarity_score: float

    @property
    def location(self) -> str:
        return f"{self.file_path}:{self.start_line}-{self.end_line}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "rank": self.rank,
            "filePath": self.file_path,
            "startLine": self.start_line,
            "endLine": self.end_line,
            "content": self.content,
            "similarityScore": f"{self.similarity_score * 100:.2f}",
            "location": self.location,
        }


@dataclass
class SearchResponse:
    """Result of a codebase search, or an explicit "not available" answer."""

    query: str
    results: list[SearchHit] = field(default_factory=list)
    total_chunks: int = 0
    original_results_count: int = 0
    removed_count: int = 0
    review_failed: bool = False
    suggestions: list[str] = field(default_factory=list)
    search_attempts: int = 0
    error: str | None = None

    @property
    def results_count(self) -> int:
        return len(self.results)

    @property
    def available(self) -> bool:
        return self.error is None

    @classmethod
    def unavailable(cls, query: str, reason: str) -> "SearchResponse":
        return cls(query=query, error=reason)

    def to_dict(self) -> dict[str, Any]:
        if self.error is not None:
            return {"error": self.error, "results": [], "totalResults": 0}

        return {
            "query": self.query,
            "totalChunks": self.total_chunks,
            "originalResultsCount": self.original_results_count,
            "resultsCount": self.results_count,
            "removedCount": self.removed_count,
            "reviewFailed": self.review_failed,
            "results": [hit.to_dict() for hit in self.results],
            "suggestions": list(self.suggestions),
            "searchAttempts": self.search_attempts,
        }
