"""
Configuration module for codeindex.

Settings for one indexed project. Values come from a TOML, YAML or JSON
file, overridden by CODEINDEX_* environment variables.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DB_FILENAME = "embeddings.db"


class EmbeddingType(str, Enum):
    """Supported embedding request formats."""

    OPENAI = "openai"
    OLLAMA = "ollama"


class EmbeddingConfig(BaseModel):
    """Remote embedding service configuration."""

    type: EmbeddingType = Field(
        default=EmbeddingType.OPENAI,
        description="Request format: OpenAI-compatible /embeddings or Ollama /embed",
    )
    model_name: str = Field(
        default="",
        description="Embedding model name",
    )
    base_url: str = Field(
        default="",
        description="Base URL of the embedding service",
    )
    api_key: str | None = Field(
        default=None,
        description="API key (optional for local deployments)",
    )
    dimensions: int = Field(
        default=1536,
        ge=1,
        le=8192,
        description="Requested embedding dimension",
    )
    task: str | None = Field(
        default=None,
        description="Optional task hint forwarded to the provider",
    )
    timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        le=600,
        description="HTTP request timeout in seconds",
    )


class BatchConfig(BaseModel):
    """Indexing batch configuration."""

    max_lines: int = Field(
        default=10,
        ge=1,
        le=1000,
        description="Chunks per embedding request",
    )
    concurrency: int = Field(
        default=3,
        ge=1,
        le=64,
        description="Files processed concurrently per wave",
    )


class RetryConfig(BaseModel):
    """Retry and circuit-breaker settings."""

    embed_attempts: int = Field(default=3, ge=1, le=10)
    embed_base_delay: float = Field(
        default=2.0,
        ge=0.0,
        description="First backoff delay for embedding calls, doubled per attempt",
    )
    store_attempts: int = Field(default=2, ge=1, le=10)
    store_base_delay: float = Field(default=0.5, ge=0.0)
    max_consecutive_failures: int = Field(
        default=3,
        ge=1,
        le=100,
        description="Consecutive failed sub-batches that abort a run",
    )


class WatcherConfig(BaseModel):
    """File system watcher configuration."""

    debounce_seconds: float = Field(
        default=5.0,
        ge=0.0,
        le=300.0,
        description="Quiet period before a changed file is reindexed",
    )


class SearchConfig(BaseModel):
    """Similarity search configuration."""

    max_attempts: int = Field(default=3, ge=1, le=10)
    min_results_ratio: float = Field(
        default=0.5,
        gt=0.0,
        le=1.0,
        description="Fraction of top_n that must survive review",
    )
    default_top_n: int = Field(default=10, ge=1, le=50)


class Config(BaseSettings):
    """
    Main codeindex configuration.

    Can be configured via:
    1. Configuration file (codeindex.toml, .yaml or .json)
    2. Environment variables with CODEINDEX_ prefix
    3. Programmatic overrides
    """

    model_config = SettingsConfigDict(
        env_prefix="CODEINDEX_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    project_root: Path = Field(
        default_factory=lambda: Path.cwd(),
        description="Project root directory",
    )
    data_dir: Path = Field(
        default=Path(".codeindex"),
        description="Index data directory (relative to project_root)",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )
    enabled: bool = Field(
        default=False,
        description="Enable codebase indexing",
    )
    enable_review: bool = Field(
        default=True,
        description="Filter search results through the relevance reviewer",
    )
    extra_ignore_patterns: list[str] = Field(
        default_factory=list,
        description="Additional gitignore-style patterns",
    )

    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    batch: BatchConfig = Field(default_factory=BatchConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    watcher: WatcherConfig = Field(default_factory=WatcherConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)

    @field_validator("project_root", mode="before")
    @classmethod
    def resolve_project_root(cls, v: Path | str) -> Path:
        """Resolve project root to absolute path."""
        path = Path(v) if isinstance(v, str) else v
        return path.resolve()

    @property
    def absolute_data_dir(self) -> Path:
        """Get absolute path to data directory."""
        if self.data_dir.is_absolute():
            return self.data_dir
        return self.project_root / self.data_dir

    @property
    def db_path(self) -> Path:
        """Get absolute path to the embeddings database."""
        return self.absolute_data_dir / DB_FILENAME

    def ensure_directories(self) -> None:
        """Ensure all required directories exist."""
        self.absolute_data_dir.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_file(cls, path: Path) -> "Config":
        """Load configuration from a TOML, YAML or JSON file."""
        import json

        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        suffix = path.suffix.lower()
        content = path.read_text(encoding="utf-8")

        if suffix == ".toml":
            import tomllib

            data = tomllib.loads(content)
        elif suffix in (".yaml", ".yml"):
            import yaml

            data = yaml.safe_load(content) or {}
        elif suffix == ".json":
            data = json.loads(content)
        else:
            raise ValueError(f"Unsupported config format: {suffix}")

        return cls(**data)

    def to_dict(self) -> dict:
        """Convert configuration to dictionary."""
        return self.model_dump()


def load_config(
    config_path: Path | None = None,
    project_root: Path | None = None,
) -> Config:
    """
    Load configuration with automatic discovery.

    Priority:
    1. Explicit config_path if provided
    2. codeindex.toml in project_root
    3. .codeindex/config.toml in project_root
    4. Default configuration
    """
    root = project_root or Path.cwd()

    if config_path and config_path.exists():
        config = Config.from_file(config_path)
        return config.model_copy(update={"project_root": root.resolve()})

    candidates = [
        root / "codeindex.toml",
        root / ".codeindex" / "config.toml",
        root / "codeindex.yaml",
        root / ".codeindex" / "config.yaml",
        root / ".codeindex" / "config.json",
    ]

    for candidate in candidates:
        if candidate.exists():
            config = Config.from_file(candidate)
            return config.model_copy(update={"project_root": root.resolve()})

    return Config(project_root=root)
