"""Configuration manager for Context Curator using TOML files."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import toml

from . import config

logger = logging.getLogger(__name__)


@dataclass
class EngineConfig:
    """Tunable constants of the relevance engine.

    The signal weights are implementation-tuned; they are exposed here so a
    ``[engine]`` table in ``config.toml`` can override them.
    """

    ast_weight: float = config.AST_WEIGHT
    llm_weight: float = config.LLM_WEIGHT
    syntax_weight: float = config.SYNTAX_WEIGHT
    flan_weight: float = config.FLAN_WEIGHT
    agreement_threshold: float = config.AGREEMENT_THRESHOLD
    relevance_floor: float = config.RELEVANCE_FLOOR
    function_relevance_cutoff: float = config.FUNCTION_RELEVANCE_CUTOFF
    max_results: int = config.DEFAULT_MAX_RESULTS
    concurrency: int = config.DEFAULT_CONCURRENCY

    @classmethod
    def from_mapping(cls, values: Optional[Mapping[str, Any]]) -> "EngineConfig":
        """Build a config from *values*, ignoring unknown keys."""
        known = {f.name: f.type for f in fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, value in (values or {}).items():
            if key not in known:
                logger.warning("Ignoring unknown engine setting '%s'", key)
                continue
            kwargs[key] = int(value) if key in ("max_results", "concurrency") else float(value)
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


DEFAULT_EMBEDDING_CONFIG: Dict[str, Any] = {
    "model": "hash",
    "model_name": "",
    "endpoint": "",
    "api_key": "",
}

DEFAULT_CACHE_CONFIG: Dict[str, Any] = {
    "ttl_days": config.CACHE_TTL_DAYS,
    "sweep_interval": config.CACHE_SWEEP_INTERVAL,
}


def load_full_config(path: Optional[Path] = None) -> Dict[str, Any]:
    """Return every section of ``config.toml``, or an empty dict if it is missing or unreadable."""
    path = path or config.CONFIG_FILE
    if not path.exists():
        return {}
    try:
        with open(path, "r") as f:
            return toml.load(f)
    except (OSError, toml.TomlDecodeError) as exc:
        logger.warning("Could not read %s: %s", path, exc)
        return {}


def _save_full_config(data: Dict[str, Any], path: Optional[Path] = None) -> bool:
    """Persist *data* to ``config.toml``, creating the home directory if needed."""
    path = path or config.CONFIG_FILE
    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        with open(path, "w") as f:
            toml.dump(data, f)
        return True
    except OSError as exc:
        logger.warning("Could not write %s: %s", path, exc)
        return False


def load_engine_config(path: Optional[Path] = None) -> EngineConfig:
    return EngineConfig.from_mapping(load_full_config(path).get("engine"))


def load_embedding_config(path: Optional[Path] = None) -> Dict[str, Any]:
    """Return the ``[embeddings]`` section merged over defaults."""
    merged = dict(DEFAULT_EMBEDDING_CONFIG)
    merged.update(load_full_config(path).get("embeddings", {}))
    return merged


def load_cache_config(path: Optional[Path] = None) -> Dict[str, Any]:
    merged = dict(DEFAULT_CACHE_CONFIG)
    merged.update(load_full_config(path).get("cache", {}))
    return merged


def save_embedding_config(
    model: str,
    endpoint: str = "",
    api_key: str = "",
    model_name: str = "",
    path: Optional[Path] = None,
) -> bool:
    """Save the ``[embeddings]`` section, preserving the other sections.

    Args:
        model: Embedding model key (see :data:`~context_curator.embeddings.EMBEDDING_MODELS`).
        endpoint: Custom endpoint for HTTP providers.
        api_key: API key for hosted providers.
        model_name: Model served by an HTTP provider (e.g. ``nomic-embed-text``).

    Returns:
        True if saved successfully, False otherwise.
    """
    data = load_full_config(path)
    section: Dict[str, Any] = {"model": model}
    if endpoint:
        section["endpoint"] = endpoint
    if api_key:
        section["api_key"] = api_key
    if model_name:
        section["model_name"] = model_name
    data["embeddings"] = section
    return _save_full_config(data, path)


def save_engine_config(engine: EngineConfig, path: Optional[Path] = None) -> bool:
    data = load_full_config(path)
    data["engine"] = engine.to_dict()
    return _save_full_config(data, path)
