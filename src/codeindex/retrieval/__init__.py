"""
Retrieval modules for codeindex.

Provides:
- Cosine-similarity search with widening retries
- Relevance review of candidates
- Search progress events
"""

from codeindex.retrieval.events import SearchEvent, SearchEventEmitter
from codeindex.retrieval.review import ModelReviewer, ReviewCollaborator, ReviewResult
from codeindex.retrieval.search import SearchEngine, SearchRequest

__all__ = [
    "SearchEngine",
    "SearchRequest",
    "SearchEvent",
    "SearchEventEmitter",
    "ModelReviewer",
    "ReviewCollaborator",
    "ReviewResult",
]
