"""
Relevance review of search candidates.

A reviewer looks at the query and the ranked candidates and drops the ones
that are not relevant. Any language model can act as reviewer through
ModelReviewer, which only needs an async ``complete(prompt) -> str``.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Protocol

import structlog

from codeindex.models import SearchHit

logger = structlog.get_logger(__name__)


@dataclass
class ReviewResult:
    """Outcome of reviewing one candidate list."""

    filtered_results: list[SearchHit]
    removed_count: int = 0
    review_failed: bool = False
    suggestions: list[str] = field(default_factory=list)

    @classmethod
    def keep_all(cls, candidates: list[SearchHit]) -> "ReviewResult":
        """Fallback when the review could not be performed."""
        return cls(filtered_results=list(candidates), review_failed=True)


class ReviewCollaborator(Protocol):
    """Anything that can filter search candidates for relevance."""

    async def review(self, query: str, candidates: list[SearchHit]) -> ReviewResult:
        ...


CompletionFn = Callable[[str], Awaitable[str]]


REVIEW_PROMPT = """You are reviewing code search results for relevance.

Query: {query}

Each candidate is numbered. Decide which candidates are relevant to the query.
Reply with a single JSON object and nothing else:
{{"relevant": [<candidate numbers>], "suggestions": [<short follow-up queries>]}}

Candidates:
{candidates}
"""

_FENCED_JSON = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


def parse_review_reply(reply: str, candidate_count: int) -> tuple[list[int], list[str]]:
    """
    Parse a reviewer reply.

    Args:
        reply: Raw model output, optionally wrapped in a fenced code block.
        candidate_count: Number of candidates shown to the model.

    Returns:
        Zero-based indices of relevant candidates (sorted, deduplicated) and
        suggestion strings.

    Raises:
        ValueError: The reply is not a JSON object of the expected shape.
    """
    text = reply.strip()
    fenced = _FENCED_JSON.search(text)
    if fenced:
        text = fenced.group(1).strip()
    else:
        start, end = text.find("{"), text.rfind("}")
        if start != -1 and end > start:
            text = text[start : end + 1]

    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError("Review reply is not a JSON object")

    relevant = data.get("relevant")
    if not isinstance(relevant, list):
        raise ValueError("Review reply has no 'relevant' list")

    indices = sorted(
        {
            n - 1
            for n in relevant
            if isinstance(n, int) and not isinstance(n, bool) and 1 <= n <= candidate_count
        }
    )

    suggestions = data.get("suggestions") or []
    if not isinstance(suggestions, list):
        suggestions = []

    return indices, [s for s in suggestions if isinstance(s, str) and s.strip()]


class ModelReviewer:
    """Reviews candidates with a text-completion callable."""

    def __init__(self, complete: CompletionFn, max_content_chars: int = 2000) -> None:
        self.complete = complete
        self.max_content_chars = max_content_chars

    def build_prompt(self, query: str, candidates: list[SearchHit]) -> str:
        blocks = []
        for number, hit in enumerate(candidates, start=1):
            content = hit.content[: self.max_content_chars]
            blocks.append(f"[{number}] {hit.location}\n{content}")
        return REVIEW_PROMPT.format(query=query, candidates="\n\n".join(blocks))

    async def review(self, query: str, candidates: list[SearchHit]) -> ReviewResult:
        if not candidates:
            return ReviewResult(filtered_results=[])

        try:
            reply = await self.complete(self.build_prompt(query, candidates))
        except Exception as e:
            logger.warning("Review call failed, keeping all results", error=str(e))
            return ReviewResult.keep_all(candidates)

        try:
            indices, suggestions = parse_review_reply(reply, len(candidates))
        except ValueError as e:
            logger.warning("Unparseable review reply, keeping all results", error=str(e))
            return ReviewResult.keep_all(candidates)

        filtered = [candidates[i] for i in indices]
        logger.debug(
            "Review complete",
            kept=len(filtered),
            removed=len(candidates) - len(filtered),
        )
        return ReviewResult(
            filtered_results=filtered,
            removed_count=len(candidates) - len(filtered),
            suggestions=suggestions,
        )
