"""
Ignore rules for .gitignore-style patterns.

Combines patterns from:
1. Built-in defaults (node_modules, .git, build output, lockfiles, caches)
2. .gitignore patterns (if present)
3. Extra patterns from configuration
"""

from __future__ import annotations

from pathlib import Path, PurePosixPath

import pathspec
import structlog

logger = structlog.get_logger(__name__)


DEFAULT_IGNORE_PATTERNS: tuple[str, ...] = (
    "node_modules",
    ".git",
    "dist",
    "build",
    "out",
    "coverage",
    ".next",
    ".nuxt",
    ".cache",
    "*.min.js",
    "*.min.css",
    "*.map",
    "package-lock.json",
    "yarn.lock",
    "pnpm-lock.yaml",
)


def parse_ignore_file(path: Path) -> list[str]:
    """
    Parse an ignore file in gitignore format.

    Args:
        path: Path to the ignore file.

    Returns:
        Pattern lines, without blanks and comments.
    """
    if not path.exists():
        return []

    patterns: list[str] = []

    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("Failed to read ignore file", path=str(path), error=str(e))
        return []

    for line in content.splitlines():
        stripped = line.rstrip()
        if not stripped.strip() or stripped.lstrip().startswith("#"):
            continue
        patterns.append(stripped)

    return patterns


def load_ignore_patterns(
    repo_root: Path,
    extra_patterns: list[str] | None = None,
    data_dir: Path | None = None,
) -> list[str]:
    """
    Load all ignore patterns for a repository.

    Args:
        repo_root: Repository root directory.
        extra_patterns: Additional patterns from configuration.
        data_dir: Index data directory to keep out of the index.

    Returns:
        Combined list of gitignore patterns; later patterns win.
    """
    patterns: list[str] = list(DEFAULT_IGNORE_PATTERNS)

    if data_dir is not None:
        try:
            rel = data_dir.resolve().relative_to(repo_root.resolve())
            patterns.append(f"/{rel.as_posix()}/")
        except ValueError:
            pass

    gitignore_patterns = parse_ignore_file(repo_root / ".gitignore")
    if gitignore_patterns:
        logger.info("Loaded .gitignore patterns", count=len(gitignore_patterns))
        patterns.extend(gitignore_patterns)

    if extra_patterns:
        patterns.extend(extra_patterns)

    return patterns


class IgnoreFilter:
    """
    Gitignore-style matcher for project-relative paths.

    Directory checks should pass ``is_dir=True`` so directory-only patterns
    (``build/``) prune whole subtrees before they are descended.
    """

    def __init__(self, patterns: list[str]) -> None:
        self.patterns = list(patterns)
        self._spec = pathspec.GitIgnoreSpec.from_lines(self.patterns)

    @classmethod
    def for_project(
        cls,
        repo_root: Path,
        extra_patterns: list[str] | None = None,
        data_dir: Path | None = None,
    ) -> "IgnoreFilter":
        """Build the filter for a project root."""
        return cls(load_ignore_patterns(repo_root, extra_patterns, data_dir))

    def add(self, patterns: list[str]) -> None:
        """Append patterns and rebuild the matcher."""
        self.patterns.extend(patterns)
        self._spec = pathspec.GitIgnoreSpec.from_lines(self.patterns)

    def ignores(self, relative_path: str | PurePosixPath, is_dir: bool = False) -> bool:
        """Check whether a project-relative path is ignored."""
        path = PurePosixPath(relative_path).as_posix()
        if path in ("", ".") or path.startswith("../") or path == "..":
            return False

        if is_dir and not path.endswith("/"):
            path += "/"

        return self._spec.match_file(path)
