"""Pytest configuration and fixtures for Context Curator tests."""

import shutil
import tempfile
from pathlib import Path
from typing import Generator, List

import pytest

from context_curator.cache import EmbeddingCache
from context_curator.embeddings import HashEmbeddingModel
from context_curator.storage import InMemoryKVStore


class CountingEmbedder:
    """Hash embedder that records every text it is asked to embed."""

    def __init__(self, identity: str = "counting") -> None:
        self.identity = identity
        self.status = "ready"
        self.calls: List[str] = []
        self._model = HashEmbeddingModel()

    def embed_text(self, text: str) -> List[float]:
        self.calls.append(text)
        return self._model.embed_text(text)

    def calls_for(self, path: str) -> int:
        """Number of file embeddings computed for *path*."""
        return sum(1 for text in self.calls if text.startswith(path + "\n"))

    @property
    def file_calls(self) -> int:
        return sum(1 for text in self.calls if "\n" in text)


class FailingEmbedder:
    """Provider that raises on every call."""

    def __init__(self) -> None:
        self.status = "ready"
        self.calls = 0

    def embed_text(self, text: str) -> List[float]:
        self.calls += 1
        raise RuntimeError("provider offline")


class FailingStore:
    """Key-value store whose every operation fails."""

    def __getattr__(self, name):
        def fail(*args, **kwargs):
            raise OSError(f"{name} failed")
        return fail


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmp = Path(tempfile.mkdtemp())
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def sample_project_path() -> Path:
    """Get path to sample test project."""
    return Path(__file__).parent / "fixtures" / "sample_project"


@pytest.fixture
def memory_cache() -> EmbeddingCache:
    return EmbeddingCache(InMemoryKVStore())


@pytest.fixture
def counting_embedder() -> CountingEmbedder:
    return CountingEmbedder()


@pytest.fixture
def failing_embedder() -> FailingEmbedder:
    return FailingEmbedder()


@pytest.fixture
def temp_home(temp_dir: Path, monkeypatch) -> Path:
    """Point config, cache and model paths at a temporary directory."""
    home = temp_dir / "home"
    monkeypatch.setattr("context_curator.config.BASE_DIR", home)
    monkeypatch.setattr("context_curator.config.CACHE_DB", home / "cache.db")
    monkeypatch.setattr("context_curator.config.CONFIG_FILE", home / "config.toml")
    monkeypatch.setattr("context_curator.config.MODEL_CACHE_DIR", home / "models")
    return home


@pytest.fixture
def login_ts() -> str:
    return """// Handles user authentication for the app
export function login(user: string, password: string) {
  // authentication against the session store
  return validateToken(user + password)
}

export function validateToken(token: string): boolean {
  return token.length > 0
}
"""


@pytest.fixture
def math_ts() -> str:
    return """export function add(a: number, b: number): number {
  return a + b
}
"""


@pytest.fixture
def sample_python_code() -> str:
    """Sample Python code for testing parsers."""
    return '''"""Sample module for testing."""

import os
from .helpers import slugify
from . import utils

MAX_ITEMS = 10
_private = 1


def hello(name: str) -> str:
    """Say hello."""
    return f"Hello, {slugify(name)}!"


class Calculator:
    """Simple calculator."""

    def add(self, a: int, b: int) -> int:
        return a + b

    def multiply(self, a: int, b: int) -> int:
        result = self.add(a, 0)
        for _ in range(b - 1):
            result = self.add(result, a)
        return result


def _internal():
    return os.getcwd()
'''
