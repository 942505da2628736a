"""Embedding providers for the semantic signal.

Model keys accepted by ``ccur config set-embedding``:

- ``hash``: token hashing, no downloads (default).
- ``jina-code``, ``bge-base``, ``minilm``: Hugging Face encoders, need the
  ``embeddings`` extra.
- ``ollama``: a local Ollama server (``/api/embeddings``).
- ``openai``: any OpenAI-compatible ``/v1/embeddings`` endpoint.

Every provider exposes ``embed_text(text) -> list[float]`` and a ``status``
attribute (``"ready"`` or ``"unavailable"``). Providers raise on failure; the
semantic scorer turns a failure into a zero score for that file.
"""

from __future__ import annotations

import json
import logging
import math
import re
import urllib.error
import urllib.request
from hashlib import blake2b
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from .config import DEFAULT_EMBEDDING_DIM, MODEL_CACHE_DIR

logger = logging.getLogger(__name__)

STATUS_READY = "ready"
STATUS_UNAVAILABLE = "unavailable"

_TOKEN_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_CAMEL_RE = re.compile(r"[A-Z]+(?=[A-Z][a-z])|[A-Z]?[a-z]+|[A-Z]+|[0-9]+")

DEFAULT_OLLAMA_ENDPOINT = "http://localhost:11434/api/embeddings"
DEFAULT_OPENAI_ENDPOINT = "https://api.openai.com/v1/embeddings"


# ===================================================================
# Model Registry
# ===================================================================

EMBEDDING_MODELS: Dict[str, Dict[str, Any]] = {
    "jina-code": {
        "name": "Jina Embeddings v2 Code",
        "backend": "transformers",
        "hf_id": "jinaai/jina-embeddings-v2-base-code",
        "dim": 768,
        "max_tokens": 8192,
        "size": "~550 MB",
        "description": "Code-aware, lightweight",
        "pooling": "mean",
        "trust_remote_code": True,
    },
    "bge-base": {
        "name": "BGE Base EN v1.5",
        "backend": "transformers",
        "hf_id": "BAAI/bge-base-en-v1.5",
        "dim": 768,
        "max_tokens": 512,
        "size": "~440 MB",
        "description": "Solid general-purpose, fast",
        "pooling": "cls",
        "trust_remote_code": False,
    },
    "minilm": {
        "name": "MiniLM L6 v2",
        "backend": "transformers",
        "hf_id": "sentence-transformers/all-MiniLM-L6-v2",
        "dim": 384,
        "max_tokens": 256,
        "size": "~80 MB",
        "description": "Tiny and fast, decent quality",
        "pooling": "mean",
        "trust_remote_code": False,
    },
    "ollama": {
        "name": "Ollama",
        "backend": "ollama",
        "default_model": "nomic-embed-text",
        "size": "n/a",
        "description": "Local Ollama server",
    },
    "openai": {
        "name": "OpenAI-compatible",
        "backend": "openai",
        "default_model": "text-embedding-3-small",
        "size": "n/a",
        "description": "Hosted embeddings API (needs api_key)",
    },
    "hash": {
        "name": "Hash Embedding",
        "backend": "hash",
        "dim": DEFAULT_EMBEDDING_DIM,
        "size": "0 bytes",
        "description": "Zero-dependency default, keyword-level similarity",
    },
}

DEFAULT_MODEL = "hash"


# ===================================================================
# HashEmbeddingModel  (zero-dependency default)
# ===================================================================

class HashEmbeddingModel:
    """Deterministic token-hashing embedder, no ML dependencies.

    Identifiers are hashed whole and split into their camelCase / snake_case
    parts, so ``getUserProfile`` lands near a query for ``user profile``.
    """

    model_key = "hash"

    def __init__(self, dim: int = DEFAULT_EMBEDDING_DIM) -> None:
        self.dim = dim
        self.status = STATUS_READY

    @property
    def identity(self) -> str:
        return f"hash:{self.dim}"

    def embed_text(self, text: str) -> List[float]:
        vec = [0.0] * self.dim
        for token in _hash_tokens(text):
            bucket = int.from_bytes(blake2b(token.encode("utf-8"), digest_size=8).digest(), "little")
            # low bits pick the slot, the top bit picks the sign
            vec[bucket % self.dim] += -1.0 if bucket >> 63 else 1.0
        return _l2_normalize(vec)

    def embed_many(self, texts: Iterable[str]) -> List[List[float]]:
        return [self.embed_text(text) for text in texts]


def _hash_tokens(text: str) -> List[str]:
    tokens: List[str] = []
    for raw in _TOKEN_RE.findall(text):
        lowered = raw.lower()
        tokens.append(lowered)
        parts = [p.lower() for p in _CAMEL_RE.findall(raw.replace("_", " "))]
        if len(parts) > 1:
            tokens.extend(p for p in parts if len(p) > 1)
    return tokens


# ===================================================================
# TransformerEmbedder  (HuggingFace models, optional extra)
# ===================================================================

class TransformerEmbedder:
    """Hugging Face encoder for the semantic signal.

    Weights load on the first embedding request and are cached under
    ``~/.context_curator/models/``. Token states are pooled as the registry
    entry says (``cls`` or ``mean``) and L2-normalised.
    """

    def __init__(
        self,
        model_key: str,
        cache_dir: Optional[Path] = None,
        device: str = "cpu",
    ) -> None:
        entry = EMBEDDING_MODELS.get(model_key)
        if entry is None or entry["backend"] != "transformers":
            choices = ", ".join(k for k, v in EMBEDDING_MODELS.items() if v["backend"] == "transformers")
            raise ValueError(f"'{model_key}' is not a transformer model. Available: {choices}")

        self.model_key = model_key
        self.entry = entry
        self.dim: int = entry["dim"]
        self.device = device
        self.cache_dir = Path(cache_dir or MODEL_CACHE_DIR)
        self.status = STATUS_READY
        self._model: Any = None
        self._tokenizer: Any = None

    @property
    def identity(self) -> str:
        return f"{self.model_key}:{self.entry['hf_id']}:{self.dim}"

    def _ensure_loaded(self) -> None:
        if self._model is not None:
            return
        try:
            from transformers import AutoModel, AutoTokenizer
        except ImportError as exc:
            self.status = STATUS_UNAVAILABLE
            raise ImportError(
                "Neural embeddings need torch and transformers.\n"
                "Install with:  pip install context-curator[embeddings]"
            ) from exc

        self.cache_dir.mkdir(parents=True, exist_ok=True)
        options = {"cache_dir": str(self.cache_dir), "trust_remote_code": self.entry["trust_remote_code"]}
        logger.info(
            "Loading embedding model %s (%s); the first run downloads %s",
            self.model_key, self.entry["hf_id"], self.entry["size"],
        )
        try:
            tokenizer = AutoTokenizer.from_pretrained(self.entry["hf_id"], **options)
            model = AutoModel.from_pretrained(self.entry["hf_id"], **options)
        except Exception as exc:
            self.status = STATUS_UNAVAILABLE
            raise RuntimeError(f"Could not load embedding model '{self.model_key}': {exc}") from exc
        model.eval()
        self._model = model.to(self.device)
        self._tokenizer = tokenizer

    def embed_many(self, texts: Iterable[str], batch_size: int = 16) -> List[List[float]]:
        import torch
        import torch.nn.functional as F

        self._ensure_loaded()
        items = list(texts)
        vectors: List[List[float]] = []
        for start in range(0, len(items), batch_size):
            batch = self._tokenizer(
                items[start:start + batch_size],
                max_length=self.entry["max_tokens"],
                padding=True,
                truncation=True,
                return_tensors="pt",
            ).to(self.device)
            with torch.no_grad():
                hidden = self._model(**batch).last_hidden_state
            if self.entry["pooling"] == "cls":
                pooled = hidden[:, 0]
            else:
                mask = batch["attention_mask"].unsqueeze(-1).to(hidden.dtype)
                pooled = (hidden * mask).sum(dim=1) / mask.sum(dim=1).clamp(min=1e-9)
            vectors.extend(F.normalize(pooled, p=2, dim=1).cpu().tolist())
        return vectors

    def embed_text(self, text: str) -> List[float]:
        return self.embed_many([text])[0]


# ===================================================================
# HTTP providers
# ===================================================================

class OllamaEmbedder:
    """Embeddings from a local Ollama server."""

    def __init__(self, model: str = "nomic-embed-text", endpoint: str = "", timeout: float = 30) -> None:
        self.model_key = "ollama"
        self.model = model
        self.endpoint = endpoint or DEFAULT_OLLAMA_ENDPOINT
        self.timeout = timeout
        self.status = STATUS_READY

    @property
    def identity(self) -> str:
        return f"ollama:{self.model}"

    def embed_text(self, text: str) -> List[float]:
        payload = json.dumps({"model": self.model, "prompt": text}).encode("utf-8")
        req = urllib.request.Request(
            self.endpoint,
            data=payload,
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                parsed = json.loads(resp.read().decode("utf-8"))
        except (urllib.error.URLError, TimeoutError, json.JSONDecodeError) as exc:
            raise RuntimeError(f"Ollama embedding request failed: {exc}") from exc
        embedding = parsed.get("embedding")
        if not embedding:
            raise RuntimeError("Ollama returned no embedding")
        return [float(v) for v in embedding]


class OpenAIEmbedder:
    """OpenAI-compatible ``/v1/embeddings`` provider (OpenAI, OpenRouter, vLLM...)."""

    def __init__(
        self,
        model: str = "text-embedding-3-small",
        api_key: str = "",
        endpoint: str = "",
        timeout: float = 20,
    ) -> None:
        self.model_key = "openai"
        self.model = model
        self.api_key = api_key
        self.endpoint = endpoint or DEFAULT_OPENAI_ENDPOINT
        self.timeout = timeout
        self.status = STATUS_READY if api_key else STATUS_UNAVAILABLE

    @property
    def identity(self) -> str:
        return f"openai:{self.model}"

    def embed_text(self, text: str) -> List[float]:
        if not self.api_key:
            raise RuntimeError("No API key configured for the embeddings endpoint")

        import requests

        response = requests.post(
            self.endpoint,
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self.api_key}",
            },
            json={"model": self.model, "input": text},
            timeout=self.timeout,
        )
        response.raise_for_status()
        return [float(v) for v in response.json()["data"][0]["embedding"]]


# ===================================================================
# Factory
# ===================================================================

def get_embedder(
    model_key: Optional[str] = None,
    endpoint: str = "",
    api_key: str = "",
    model_name: str = "",
    cache_dir: Optional[Path] = None,
    device: str = "cpu",
) -> Any:
    """Return the configured embedding provider.

    Resolution order:

    1. Explicit ``model_key`` argument.
    2. ``[embeddings].model`` from ``~/.context_curator/config.toml``.
    3. ``"hash"``.

    A transformer model whose dependencies are missing falls back to hash
    with a warning.
    """
    if model_key is None:
        from .config_manager import load_embedding_config

        emb_cfg = load_embedding_config()
        model_key = emb_cfg.get("model") or DEFAULT_MODEL
        endpoint = endpoint or emb_cfg.get("endpoint", "")
        api_key = api_key or emb_cfg.get("api_key", "")
        model_name = model_name or emb_cfg.get("model_name", "")

    spec = EMBEDDING_MODELS.get(model_key)
    if spec is None:
        logger.warning("Unknown embedding model '%s', falling back to hash.", model_key)
        return HashEmbeddingModel()

    backend = spec["backend"]
    if backend == "hash":
        return HashEmbeddingModel()
    if backend == "ollama":
        return OllamaEmbedder(model=model_name or spec["default_model"], endpoint=endpoint)
    if backend == "openai":
        return OpenAIEmbedder(model=model_name or spec["default_model"], api_key=api_key, endpoint=endpoint)

    try:
        import torch  # noqa: F401
        import transformers  # noqa: F401
    except ImportError:
        logger.warning(
            "Embedding model '%s' requires torch + transformers. "
            "Falling back to hash embeddings. Install with: pip install context-curator[embeddings]",
            model_key,
        )
        return HashEmbeddingModel()
    return TransformerEmbedder(model_key=model_key, cache_dir=cache_dir, device=device)


# ===================================================================
# Utility
# ===================================================================

def provider_identity(embedder: Any) -> str:
    """Name of the vector space *embedder* produces; cache records are scoped by it.

    Providers expose an ``identity`` attribute (model key, model name and, where
    fixed, the dimension). Anything else is identified by its class name.
    """
    identity = getattr(embedder, "identity", None)
    if isinstance(identity, str) and identity:
        return identity
    return type(embedder).__name__


def cosine_similarity(vec_a: List[float], vec_b: List[float]) -> float:
    """Cosine similarity in ``[-1, 1]``; empty, mismatched or zero vectors give 0.0."""
    if not vec_a or len(vec_a) != len(vec_b):
        return 0.0
    norms = math.sqrt(sum(a * a for a in vec_a)) * math.sqrt(sum(b * b for b in vec_b))
    if norms < 1e-12:
        return 0.0
    return max(-1.0, min(1.0, sum(a * b for a, b in zip(vec_a, vec_b)) / norms))


def _l2_normalize(vec: List[float]) -> List[float]:
    norm = math.sqrt(sum(v * v for v in vec))
    if norm < 1e-12:
        return vec
    return [v / norm for v in vec]
