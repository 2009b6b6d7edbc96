"""
Semantic codebase search.

Embeds the query, ranks stored chunks by cosine similarity and optionally
passes the candidates through a relevance reviewer. When the review leaves too
few results, the candidate pool is doubled and the search repeated.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

import numpy as np
import structlog
from pydantic import BaseModel, Field, field_validator

from codeindex.indexing.retry import embedding_retry
from codeindex.models import ScoredChunk, SearchHit, SearchResponse
from codeindex.retrieval.events import SearchEvent, SearchEventEmitter, SearchEventType
from codeindex.retrieval.review import ReviewCollaborator, ReviewResult

if TYPE_CHECKING:
    from codeindex.config import Config
    from codeindex.indexing.embedder import EmbeddingBackend
    from codeindex.storage.vector_store import VectorStore

logger = structlog.get_logger(__name__)


INDEX_NOT_FOUND = "Codebase index not found. Please run codebase indexing first."
INDEX_EMPTY = "Codebase index is empty. Please run indexing to build the index."


class SearchRequest(BaseModel):
    """Validated search input."""

    query: str = Field(min_length=1, description="Natural-language query")
    top_n: int = Field(default=10, ge=1, le=50, description="Results wanted")

    @field_validator("query")
    @classmethod
    def query_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("query must not be blank")
        return v


def to_hits(scored: list[ScoredChunk]) -> list[SearchHit]:
    """Number scored chunks as 1-based ranked hits."""
    return [
        SearchHit(
            rank=i,
            file_path=s.chunk.file_path,
            start_line=s.chunk.start_line,
            end_line=s.chunk.end_line,
            content=s.chunk.content,
            similarity_score=s.score,
        )
        for i, s in enumerate(scored, start=1)
    ]


class SearchEngine:
    """
    Search over a project's vector store.

    Features:
    - Explicit "not available" answers for a missing or empty index
    - Optional relevance review
    - Widening retry when review filters out too much
    - Progress events per attempt
    """

    def __init__(
        self,
        config: "Config",
        store: "VectorStore",
        embedder: "EmbeddingBackend",
        reviewer: ReviewCollaborator | None = None,
        events: SearchEventEmitter | None = None,
    ) -> None:
        self.config = config
        self.store = store
        self.embedder = embedder
        self.reviewer = reviewer
        self.events = events or SearchEventEmitter()

    @property
    def review_enabled(self) -> bool:
        return self.config.enable_review and self.reviewer is not None

    async def check_available(self) -> str | None:
        """
        Check that an index exists and holds data.

        Returns:
            None when searchable, otherwise the reason it is not.
        """
        if not self.config.db_path.exists():
            return INDEX_NOT_FOUND

        try:
            await self.store.initialize()
            total = await self.store.get_total_chunks()
        except Exception as e:
            logger.error("Error checking codebase index", error=str(e))
            return f"Error checking codebase index: {e}"

        if total == 0:
            return INDEX_EMPTY
        return None

    async def search(self, query: str, top_n: int | None = None) -> SearchResponse:
        """
        Search the codebase.

        Args:
            query: Natural-language query.
            top_n: Number of results wanted (1-50).

        Returns:
            SearchResponse. ``error`` is set when the index is unavailable.

        Raises:
            pydantic.ValidationError: Invalid query or top_n.
        """
        request = SearchRequest(
            query=query,
            top_n=self.config.search.default_top_n if top_n is None else top_n,
        )

        reason = await self.check_available()
        if reason is not None:
            logger.info("Codebase index not available", reason=reason)
            return SearchResponse.unavailable(request.query, reason)

        total_chunks = await self.store.get_total_chunks()
        max_attempts = self.config.search.max_attempts
        threshold = math.ceil(request.top_n * self.config.search.min_results_ratio)

        query_vector = await self._embed_query(request.query)

        current_top_n = request.top_n
        attempt = 0

        while True:
            attempt += 1

            self._emit(
                "search-start" if attempt == 1 else "search-retry",
                attempt,
                current_top_n,
                f"Searching top {current_top_n} code chunks...",
                request.query,
            )
            logger.info(
                "Search attempt",
                attempt=attempt,
                max_attempts=max_attempts,
                top_n=current_top_n,
            )

            hits = to_hits(await self.store.search_similar(query_vector, current_top_n))

            if self.review_enabled:
                self._emit(
                    "search-retry",
                    attempt,
                    current_top_n,
                    f"Reviewing {len(hits)} results...",
                    request.query,
                )
                review = await self._review(request.query, hits)
            else:
                review = ReviewResult(filtered_results=hits)

            response = SearchResponse(
                query=request.query,
                results=review.filtered_results,
                total_chunks=total_chunks,
                original_results_count=len(hits),
                removed_count=review.removed_count,
                review_failed=review.review_failed,
                suggestions=review.suggestions,
                search_attempts=attempt,
            )

            if not self.review_enabled:
                return self._complete(response, current_top_n, f"Found {len(hits)} results")

            if review.review_failed:
                logger.info("Review failed, returning all results")
                return self._complete(
                    response, current_top_n, "Review failed, returning all results"
                )

            if response.results_count >= threshold:
                return self._complete(
                    response,
                    current_top_n,
                    f"Found {response.results_count} relevant results",
                )

            if attempt >= max_attempts:
                logger.warning(
                    "Search attempts exhausted",
                    attempts=attempt,
                    results=response.results_count,
                    threshold=threshold,
                )
                return self._complete(
                    response,
                    current_top_n,
                    f"Completed with {response.results_count} results",
                )

            logger.warning(
                "Too few results after review, widening search",
                kept=response.results_count,
                removed=review.removed_count,
                threshold=threshold,
            )
            current_top_n = min(current_top_n * 2, total_chunks)

    async def _embed_query(self, query: str) -> np.ndarray:
        retrying = embedding_retry(self.config, "Query embedding")
        return await retrying(self.embedder.embed, query)

    async def _review(self, query: str, hits: list[SearchHit]) -> ReviewResult:
        if self.reviewer is None:
            return ReviewResult(filtered_results=list(hits))
        try:
            return await self.reviewer.review(query, hits)
        except Exception as e:
            logger.warning("Reviewer raised, keeping all results", error=str(e))
            return ReviewResult.keep_all(hits)

    def _complete(
        self,
        response: SearchResponse,
        current_top_n: int,
        message: str,
    ) -> SearchResponse:
        self._emit(
            "search-complete",
            response.search_attempts,
            current_top_n,
            message,
            response.query,
        )
        return response

    def _emit(
        self,
        event_type: SearchEventType,
        attempt: int,
        current_top_n: int,
        message: str,
        query: str,
    ) -> None:
        self.events.emit(
            SearchEvent(
                type=event_type,
                attempt=attempt,
                max_attempts=self.config.search.max_attempts,
                current_top_n=current_top_n,
                message=message,
                query=query,
            )
        )
