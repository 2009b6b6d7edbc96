"""
codeindex - semantic codebase index

Scans a project, splits source files into overlapping line windows, embeds
them through a remote embedding service and answers natural-language queries
by cosine similarity.
"""

__version__ = "0.1.0"
__all__ = [
    "Config",
    "CodebaseService",
]

from codeindex.config import Config
from codeindex.main import CodebaseService
