"""Integration tests for CLI commands."""

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from context_curator import __version__
from context_curator.cache import EmbeddingCache, search_id
from context_curator.cli import app
from context_curator.config_manager import load_embedding_config, load_engine_config
from context_curator.storage import InMemoryKVStore, SQLiteKVStore

runner = CliRunner()
WIDE = {"COLUMNS": "200"}


def _open_cache(home: Path) -> EmbeddingCache:
    return EmbeddingCache(SQLiteKVStore(home / "cache.db"))


class ClosableStore(InMemoryKVStore):
    def __init__(self) -> None:
        super().__init__()
        self.closed = False

    def close(self) -> None:
        self.closed = True


def _search_json(project: Path, *extra: str):
    result = runner.invoke(app, ["search", str(project), "authentication login", "--json", "--model", "hash", *extra])
    assert result.exit_code == 0, result.output
    return json.loads(result.stdout)


def test_version():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert f"Context Curator v{__version__}" in result.stdout


class TestSearchCommand:
    def test_json_output(self, sample_project_path: Path, temp_home: Path):
        payload = _search_json(sample_project_path)
        files = payload["data"]["files"]
        assert payload["type"] == "keywordSearch"
        assert files[0]["file"] == "src/auth/login.ts"
        assert all(0.0 <= f["finalScore"] <= 1.0 for f in files)

    def test_entry_point_option(self, sample_project_path: Path, temp_home: Path):
        payload = _search_json(sample_project_path, "--entry-point", "src/main.ts")
        roles = {f["file"]: f["classification"] for f in payload["data"]["files"]}
        assert roles["src/main.ts"] == "entry-point"

    def test_top_limits_results(self, sample_project_path: Path, temp_home: Path):
        payload = _search_json(sample_project_path, "--top", "2")
        assert len(payload["data"]["files"]) == 2

    def test_saves_history(self, sample_project_path: Path, temp_home: Path):
        _search_json(sample_project_path)
        cache = _open_cache(temp_home)
        try:
            record = cache.get_search_results(search_id("authentication login", "sample_project"))
            assert record is not None
            assert record["results"][0]["file"] == "src/auth/login.ts"
            assert cache.stats()["file_embeddings"] == 8
        finally:
            cache.store.close()

    def test_no_cache_leaves_no_database(self, sample_project_path: Path, temp_home: Path):
        _search_json(sample_project_path, "--no-cache", "--no-save")
        assert not (temp_home / "cache.db").exists()

    def test_table_output(self, sample_project_path: Path, temp_home: Path):
        result = runner.invoke(app, ["search", str(sample_project_path), "login", "--model", "hash"], env=WIDE)
        assert result.exit_code == 0, result.output
        assert "src/auth/login.ts" in result.stdout
        assert "entry-point" in result.stdout

    def test_empty_project(self, temp_dir: Path, temp_home: Path):
        empty = temp_dir / "empty"
        empty.mkdir()
        (empty / "notes.txt").write_text("nothing to see")
        result = runner.invoke(app, ["search", str(empty), "login", "--model", "hash"], env=WIDE)
        assert result.exit_code == 1
        assert "No supported source files" in result.stdout

    def test_blank_query(self, sample_project_path: Path, temp_home: Path):
        result = runner.invoke(app, ["search", str(sample_project_path), "   ", "--model", "hash"])
        assert result.exit_code != 0

    def test_missing_project(self, temp_home: Path):
        result = runner.invoke(app, ["search", "/nonexistent/path", "login"])
        assert result.exit_code != 0

    @pytest.mark.parametrize("query, use_empty_project", [("login", True), ("   ", False)])
    def test_cache_closed_on_failed_search(
        self, sample_project_path: Path, temp_dir: Path, temp_home: Path, monkeypatch, query, use_empty_project
    ):
        store = ClosableStore()
        monkeypatch.setattr("context_curator.cli.open_cache", lambda: EmbeddingCache(store))
        project = sample_project_path
        if use_empty_project:
            project = temp_dir / "empty"
            project.mkdir()

        result = runner.invoke(app, ["search", str(project), query, "--model", "hash"])

        assert result.exit_code != 0
        assert store.closed


class TestConfigCommands:
    def test_set_embedding(self, temp_home: Path):
        result = runner.invoke(
            app, ["config", "set-embedding", "ollama", "--endpoint", "http://box:11434/api/embeddings"]
        )
        assert result.exit_code == 0, result.output
        emb = load_embedding_config()
        assert emb["model"] == "ollama"
        assert emb["endpoint"] == "http://box:11434/api/embeddings"

    def test_set_embedding_unknown_model(self, temp_home: Path):
        result = runner.invoke(app, ["config", "set-embedding", "gpt-99"])
        assert result.exit_code != 0
        assert not (temp_home / "config.toml").exists()

    def test_set_engine(self, temp_home: Path):
        result = runner.invoke(app, ["config", "set-engine", "ast_weight", "0.5"])
        assert result.exit_code == 0, result.output
        assert load_engine_config().ast_weight == 0.5

        result = runner.invoke(app, ["config", "set-engine", "max_results", "7"])
        assert result.exit_code == 0
        engine = load_engine_config()
        assert engine.max_results == 7
        assert engine.ast_weight == 0.5

    def test_set_engine_unknown_key(self, temp_home: Path):
        result = runner.invoke(app, ["config", "set-engine", "turbo", "1"])
        assert result.exit_code != 0

    def test_show(self, temp_home: Path):
        runner.invoke(app, ["config", "set-embedding", "openai", "--api-key", "sk-secret-value"])
        result = runner.invoke(app, ["config", "show"], env=WIDE)
        assert result.exit_code == 0
        assert "ast_weight" in result.stdout
        assert "openai" in result.stdout
        assert "sk-secret-value" not in result.stdout


class TestCacheCommands:
    def test_stats_and_sweep(self, temp_home: Path):
        result = runner.invoke(app, ["cache", "stats"], env=WIDE)
        assert result.exit_code == 0
        assert "file_embeddings" in result.stdout

        result = runner.invoke(app, ["cache", "sweep"])
        assert result.exit_code == 0
        assert "Removed 0" in result.stdout

    def test_history_and_forget(self, sample_project_path: Path, temp_home: Path):
        _search_json(sample_project_path)

        result = runner.invoke(app, ["cache", "history", "--project", "sample_project"], env=WIDE)
        assert result.exit_code == 0
        assert "authentication login" in result.stdout

        record_id = search_id("authentication login", "sample_project")
        assert runner.invoke(app, ["cache", "forget", record_id]).exit_code == 0
        assert runner.invoke(app, ["cache", "forget", record_id]).exit_code == 1

        result = runner.invoke(app, ["cache", "history", "--project", "sample_project"], env=WIDE)
        assert "No saved searches" in result.stdout

    def test_clear(self, sample_project_path: Path, temp_home: Path):
        _search_json(sample_project_path)

        declined = runner.invoke(app, ["cache", "clear"], input="n\n")
        assert declined.exit_code == 1

        assert runner.invoke(app, ["cache", "clear", "--yes"]).exit_code == 0
        cache = _open_cache(temp_home)
        try:
            assert set(cache.stats().values()) == {0}
        finally:
            cache.store.close()

    def test_clear_reports_store_failure(self, temp_home: Path, monkeypatch):
        class LockedStore(ClosableStore):
            def clear(self) -> None:
                raise OSError("database is locked")

        store = LockedStore()
        monkeypatch.setattr("context_curator.cli_cache.open_cache", lambda: EmbeddingCache(store))

        result = runner.invoke(app, ["cache", "clear", "--yes"])

        assert result.exit_code == 1
        assert "Could not clear the cache" in result.stdout
        assert store.closed
