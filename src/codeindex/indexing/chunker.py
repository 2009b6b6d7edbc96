"""
Line-window code chunking.

Splits a file into fixed windows of 100 lines that overlap by 10 lines, so a
definition straddling a boundary is still seen whole by one of the two
neighbouring chunks. Deterministic: identical content always yields identical
boundaries.
"""

from __future__ import annotations

import hashlib

import structlog

from codeindex.models import CodeChunk

logger = structlog.get_logger(__name__)


MAX_LINES_PER_CHUNK = 100
OVERLAP_LINES = 10


def compute_file_hash(content: str) -> str:
    """SHA-256 hex digest of a whole file's text."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def split_into_chunks(
    content: str,
    file_path: str,
    max_lines: int = MAX_LINES_PER_CHUNK,
    overlap: int = OVERLAP_LINES,
) -> list[CodeChunk]:
    """
    Split file content into overlapping line windows.

    Args:
        content: Full file text.
        file_path: Project-relative path stored on each chunk.
        max_lines: Window size in lines.
        overlap: Lines shared with the previous window.

    Returns:
        Chunks with 1-indexed inclusive line ranges. Windows that are blank
        after trimming are dropped. Embedding, hash and timestamps are left
        empty for the caller to fill.
    """
    if overlap >= max_lines:
        raise ValueError("overlap must be smaller than max_lines")

    lines = content.split("\n")
    total = len(lines)
    stride = max_lines - overlap
    chunks: list[CodeChunk] = []

    for start in range(0, total, stride):
        end = min(start + max_lines, total)
        chunk_content = "\n".join(lines[start:end])

        if not chunk_content.strip():
            continue

        chunks.append(
            CodeChunk(
                file_path=file_path,
                content=chunk_content,
                start_line=start + 1,
                end_line=end,
            )
        )

    return chunks


class Chunker:
    """Fixed-policy chunker used by the indexing pipeline."""

    def __init__(
        self,
        max_lines: int = MAX_LINES_PER_CHUNK,
        overlap: int = OVERLAP_LINES,
    ) -> None:
        self.max_lines = max_lines
        self.overlap = overlap

    @property
    def stride(self) -> int:
        return self.max_lines - self.overlap

    def split(self, content: str, file_path: str) -> list[CodeChunk]:
        chunks = split_into_chunks(content, file_path, self.max_lines, self.overlap)
        logger.debug("Split file", path=file_path, chunks=len(chunks))
        return chunks
