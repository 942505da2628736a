"""Configuration paths and engine defaults for Context Curator."""

from __future__ import annotations

import os
from pathlib import Path

BASE_DIR = Path(os.environ.get("CONTEXT_CURATOR_HOME", str(Path.home() / ".context_curator"))).expanduser()
CACHE_DB = BASE_DIR / "cache.db"
CONFIG_FILE = BASE_DIR / "config.toml"
MODEL_CACHE_DIR = BASE_DIR / "models"

DEFAULT_EMBEDDING_DIM = 256

# Embedding cache
CACHE_TTL_DAYS = 7
SEARCH_HISTORY_TTL_DAYS = 30
CACHE_SWEEP_INTERVAL = 60 * 60  # seconds
CACHE_RECORD_VERSION = 2  # records without a provider identity are stale

# Text handed to the embedding provider for one file
EMBED_CONTENT_CHARS = 1000
EMBED_TEXT_BUDGET = 3000

# Weight of the file-name similarity in the semantic score
NAME_SIMILARITY_WEIGHT = 0.3

# Pipeline
DEFAULT_CONCURRENCY = 4
DEFAULT_MAX_RESULTS = 20

# Signal weights for the final score (ast, llm, syntax, flan)
AST_WEIGHT = 0.3
LLM_WEIGHT = 0.3
SYNTAX_WEIGHT = 0.3
FLAN_WEIGHT = 0.1

AGREEMENT_THRESHOLD = 0.5
RELEVANCE_FLOOR = 0.05
FUNCTION_RELEVANCE_CUTOFF = 0.3


def ensure_base_dirs() -> None:
    """Create base directories for local storage if needed."""
    BASE_DIR.mkdir(parents=True, exist_ok=True)
