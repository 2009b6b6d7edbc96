"""
Indexing modules for codeindex.

Provides:
- Ignore rules (built-in defaults, .gitignore, configured extras)
- Project scanning
- Line-window chunking
- Embedding backends with retry
- The resumable indexing engine
- File system watching with per-file debouncing
"""

from codeindex.indexing.cancellation import CancellationToken
from codeindex.indexing.chunker import Chunker, compute_file_hash, split_into_chunks
from codeindex.indexing.embedder import EmbeddingBackend, create_embedder
from codeindex.indexing.engine import CircuitBreaker, FileOutcome, IndexingEngine
from codeindex.indexing.ignore_parser import (
    IgnoreFilter,
    load_ignore_patterns,
    parse_ignore_file,
)
from codeindex.indexing.scanner import FileScanner, is_code_file
from codeindex.indexing.watcher import DebounceRegistry, FileWatcher

__all__ = [
    "CancellationToken",
    "Chunker",
    "compute_file_hash",
    "split_into_chunks",
    "EmbeddingBackend",
    "create_embedder",
    "CircuitBreaker",
    "FileOutcome",
    "IndexingEngine",
    "IgnoreFilter",
    "load_ignore_patterns",
    "parse_ignore_file",
    "FileScanner",
    "is_code_file",
    "DebounceRegistry",
    "FileWatcher",
]
