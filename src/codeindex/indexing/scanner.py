"""
Project directory scanner.

Walks the tree depth-first, pruning ignored directories before descending and
keeping only files whose extension is in the source allow-list.
"""

from __future__ import annotations

import os
from pathlib import Path

import structlog

from codeindex.indexing.cancellation import CancellationToken
from codeindex.indexing.ignore_parser import IgnoreFilter

logger = structlog.get_logger(__name__)


CODE_EXTENSIONS: frozenset[str] = frozenset(
    {
        ".ts",
        ".tsx",
        ".js",
        ".jsx",
        ".py",
        ".java",
        ".cpp",
        ".c",
        ".h",
        ".hpp",
        ".cs",
        ".go",
        ".rs",
        ".rb",
        ".php",
        ".swift",
        ".kt",
        ".scala",
        ".m",
        ".mm",
        ".sh",
        ".bash",
        ".sql",
        ".graphql",
        ".proto",
        ".json",
        ".yaml",
        ".yml",
        ".toml",
        ".xml",
        ".html",
        ".css",
        ".scss",
        ".less",
        ".vue",
        ".svelte",
    }
)


def is_code_file(path: str | Path) -> bool:
    """Check the file extension against the allow-list (case-sensitive)."""
    return os.path.splitext(str(path))[1] in CODE_EXTENSIONS


def relative_posix(path: Path, root: Path) -> str:
    """Project-relative path with forward slashes."""
    return path.relative_to(root).as_posix()


class FileScanner:
    """
    Recursive scanner for indexable files.

    Each call to scan() starts from scratch. Entries are visited in name
    order so the result is stable between runs on an unchanged tree.
    """

    def __init__(self, project_root: Path, ignore_filter: IgnoreFilter) -> None:
        self.project_root = project_root
        self.ignore_filter = ignore_filter

    def scan(self, cancel_token: CancellationToken | None = None) -> list[Path]:
        """
        Scan the project for code files.

        Args:
            cancel_token: Polled between directory entries.

        Returns:
            Absolute paths in depth-first order. A cancelled scan returns
            the files found so far.
        """
        files: list[Path] = []
        self._scan_dir(self.project_root, files, cancel_token)

        if cancel_token is not None and cancel_token.cancelled:
            logger.info("Scan cancelled", found=len(files))

        return files

    def _scan_dir(
        self,
        directory: Path,
        files: list[Path],
        cancel_token: CancellationToken | None,
    ) -> None:
        try:
            with os.scandir(directory) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError as e:
            logger.warning("Cannot read directory", path=str(directory), error=str(e))
            return

        for entry in entries:
            if cancel_token is not None and cancel_token.cancelled:
                return

            full_path = Path(entry.path)
            rel_path = relative_posix(full_path, self.project_root)

            try:
                is_dir = entry.is_dir(follow_symlinks=False)
                is_file = entry.is_file(follow_symlinks=False)
            except OSError:
                continue

            if self.ignore_filter.ignores(rel_path, is_dir=is_dir):
                continue

            if is_dir:
                self._scan_dir(full_path, files, cancel_token)
            elif is_file and is_code_file(entry.name):
                files.append(full_path)
