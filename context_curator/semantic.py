"""Semantic signal: cosine similarity between query and file embeddings.

A file's similarity blends its content vector with a vector of its name::

    similarity = 0.7 * cos(query, content) + 0.3 * cos(query, "file named <name words>")

and maps to ``[0, 1]`` as ``(similarity + 1) / 2``. A file whose name could not
be embedded uses the content similarity alone.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any, Dict, List, NamedTuple, Optional

from .cache import EmbeddingCache, project_hash
from .config import DEFAULT_CONCURRENCY, EMBED_CONTENT_CHARS, EMBED_TEXT_BUDGET, NAME_SIMILARITY_WEIGHT
from .embeddings import STATUS_READY, cosine_similarity, provider_identity
from .models import SourceFile

logger = logging.getLogger(__name__)


def embedding_text(file: SourceFile) -> str:
    """Text embedded for *file*: its path plus the head of its content."""
    return f"{file.path}\n{file.content[:EMBED_CONTENT_CHARS]}"[:EMBED_TEXT_BUDGET]


def name_text(path: str) -> str:
    """Text embedded for a file's name: ``src/user_login.ts`` -> ``file named user login``."""
    stem = PurePosixPath(path.replace("\\", "/")).stem
    return "file named " + re.sub(r"[_-]", " ", stem)


def blend_similarity(
    query_vec: List[float],
    content_vec: List[float],
    name_vec: Optional[List[float]] = None,
) -> float:
    similarity = cosine_similarity(query_vec, content_vec)
    if name_vec is None:
        return similarity
    name_similarity = cosine_similarity(query_vec, name_vec)
    return (1.0 - NAME_SIMILARITY_WEIGHT) * similarity + NAME_SIMILARITY_WEIGHT * name_similarity


def similarity_to_score(cosine: float) -> float:
    return max(0.0, min(1.0, (cosine + 1.0) / 2.0))


class FileVectors(NamedTuple):
    content: Optional[List[float]]
    name: Optional[List[float]]
    calls: int = 0
    content_cached: bool = False


@dataclass
class SemanticResult:
    scores: Dict[str, float] = field(default_factory=dict)
    provider_calls: int = 0
    cache_hits: int = 0
    from_snapshot: bool = False
    available: bool = True


class SemanticScorer:
    """Embeds the query once and every file at most once per content hash.

    Lookups go project snapshot first, then the per-file cache, then the
    provider, all scoped to the provider's identity so vectors from another
    model are never compared with this one's query. Provider calls run in
    worker threads, at most *concurrency* at a time. A provider that is
    missing, not ready or failing yields a zero score for the affected files;
    the search itself never fails here.
    """

    def __init__(
        self,
        embedder: Any,
        cache: Optional[EmbeddingCache] = None,
        concurrency: int = DEFAULT_CONCURRENCY,
    ) -> None:
        self.embedder = embedder
        self.cache = cache
        self.concurrency = max(1, concurrency)

    @property
    def available(self) -> bool:
        return self.embedder is not None and getattr(self.embedder, "status", STATUS_READY) == STATUS_READY

    async def score_files(self, query: str, files: List[SourceFile]) -> SemanticResult:
        result = SemanticResult(scores={f.path: 0.0 for f in files})
        if not self.available:
            logger.warning("Embedding provider unavailable; semantic scores are 0")
            result.available = False
            return result

        try:
            query_vec = await asyncio.to_thread(self.embedder.embed_text, query)
            result.provider_calls += 1
        except Exception as exc:
            logger.warning("Query embedding failed, semantic scores are 0: %s", exc)
            result.available = False
            return result

        model = provider_identity(self.embedder)
        vectors: Dict[str, List[float]] = {}
        names: Dict[str, List[float]] = {}
        key = project_hash(files, model) if self.cache is not None else ""
        snapshot = self.cache.get_project(key, model) if self.cache is not None else None
        if snapshot is not None and all(f.path in snapshot.file_embeddings for f in files):
            vectors = {f.path: snapshot.file_embeddings[f.path] for f in files}
            names = {f.path: snapshot.name_embeddings[f.path] for f in files if f.path in snapshot.name_embeddings}
            result.from_snapshot = True
            logger.info("Loaded %d embeddings from project snapshot %s", len(vectors), key[:8])
        else:
            semaphore = asyncio.Semaphore(self.concurrency)
            outcomes = await asyncio.gather(*(self._file_vectors(f, semaphore, model) for f in files))
            calls = 0
            for file, outcome in zip(files, outcomes):
                calls += outcome.calls
                if outcome.content is None:
                    continue
                vectors[file.path] = outcome.content
                if outcome.name is not None:
                    names[file.path] = outcome.name
                if outcome.content_cached:
                    result.cache_hits += 1
            result.provider_calls += calls
            if self.cache is not None and calls and len(vectors) == len(files):
                self.cache.put_project(key, vectors, model, names)
            logger.info(
                "Semantic vectors: %d cached, %d computed, %d failed",
                result.cache_hits, len(vectors) - result.cache_hits, len(files) - len(vectors),
            )

        for path, vec in vectors.items():
            result.scores[path] = similarity_to_score(blend_similarity(query_vec, vec, names.get(path)))
        return result

    async def _file_vectors(self, file: SourceFile, semaphore: asyncio.Semaphore, model: str) -> FileVectors:
        content = name = None
        if self.cache is not None:
            content = self.cache.get(file.path, file.content_hash, model)
            name = self.cache.get_name_vector(file.path, model)
            if content is not None and name is not None:
                return FileVectors(content, name, 0, True)
        async with semaphore:
            try:
                return await asyncio.to_thread(self._embed_and_store, file, model, content, name)
            except Exception as exc:
                logger.warning("Embedding failed for %s: %s", file.path, exc)
                return FileVectors(None, None)

    def _embed_and_store(
        self,
        file: SourceFile,
        model: str,
        content: Optional[List[float]],
        name: Optional[List[float]],
    ) -> FileVectors:
        cached = content is not None
        calls = 0
        if content is None:
            content = [float(v) for v in self.embedder.embed_text(embedding_text(file))]
            calls += 1
        if name is None:
            try:
                name = [float(v) for v in self.embedder.embed_text(name_text(file.path))]
                calls += 1
            except Exception as exc:
                logger.debug("File-name embedding failed for %s, using content only: %s", file.path, exc)
        if self.cache is not None:
            self.cache.put(file.path, file.content_hash, content, model, name)
        return FileVectors(content, name, calls, cached)
