"""
Storage modules for codeindex.

Provides persistent storage for chunk text, embeddings and indexing progress
in a single SQLite file per project.
"""

from codeindex.storage.vector_store import VectorStore

__all__ = [
    "VectorStore",
]
