"""
Unit tests for the command line interface and service wiring.
"""

from __future__ import annotations

from pathlib import Path

import pytest
from click.testing import CliRunner

from codeindex.config import Config
from codeindex.main import CodebaseService, cli


def invoke(*args: str):
    return CliRunner().invoke(cli, list(args), obj={})


class TestCli:
    def test_help(self):
        result = invoke("--help")

        assert result.exit_code == 0
        for command in ("index", "reindex", "search", "watch", "status", "clear"):
            assert command in result.output

    def test_index_requires_enabled(self, tmp_path: Path):
        result = invoke("--project", str(tmp_path), "index")

        assert result.exit_code != 0
        assert "disabled" in result.output

    def test_status_without_index(self, tmp_path: Path):
        result = invoke("--project", str(tmp_path), "status")

        assert result.exit_code == 0
        assert "No index found." in result.output
        assert not (tmp_path / ".codeindex" / "embeddings.db").exists()

    def test_search_without_index(self, tmp_path: Path):
        result = invoke("--project", str(tmp_path), "search", "--json", "login handler")

        assert result.exit_code == 0
        assert "Codebase index not found" in result.output

    def test_search_limit_bounds(self, tmp_path: Path):
        result = invoke("--project", str(tmp_path), "search", "-n", "51", "q")

        assert result.exit_code != 0


class TestCodebaseService:
    @pytest.mark.parametrize("component", ["store", "engine", "watcher", "search_engine"])
    def test_components_require_initialize(self, config: Config, component: str):
        service = CodebaseService(config)

        with pytest.raises(RuntimeError, match="Service not initialized"):
            getattr(service, component)

    @pytest.mark.asyncio
    async def test_components_available_in_session(self, config: Config, mock_embedder):
        service = CodebaseService(config, embedder=mock_embedder)

        async with service.session():
            assert service.engine.store is service.store
            assert service.search_engine.store is service.store
            assert service.watcher.engine is service.engine
