"""Content-addressed embedding cache with TTL eviction and search history.

File vectors are keyed by path and are valid only while the stored content
hash equals the file's current hash. A whole-project snapshot, keyed by
:func:`project_hash`, lets an unchanged project skip per-file lookups.

Every embedding record carries the identity of the provider that produced it
(see :func:`~context_curator.embeddings.provider_identity`); a record made by
another provider, written by another record version or no longer decodable
is a miss.

Storage failures never propagate: reads degrade to a miss and writes return
``False``, both with a warning in the log.
"""

from __future__ import annotations

import hashlib
import logging
import re
import threading
import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

from . import config
from .models import CachedEmbedding, CachedProjectEmbeddings, SourceFile, content_hash
from .storage import FILE_EMBEDDINGS, PROJECT_EMBEDDINGS, SEARCH_RESULTS, TABLES, SQLiteKVStore

logger = logging.getLogger(__name__)

_DAY = 24 * 60 * 60

FileLike = Union[SourceFile, Mapping[str, Any]]


def project_hash(files: Sequence[FileLike], model: str = "") -> str:
    """Hash identifying a project's exact set of paths and contents.

    The project directory is the second segment of the first path, so
    ``/myapp/src/a.ts`` scopes to ``myapp``. A non-empty *model* (provider
    identity) is mixed in, giving every provider its own snapshot.
    """
    entries: List[str] = []
    first_path = ""
    for index, item in enumerate(files):
        if isinstance(item, SourceFile):
            path, digest = item.path, item.content_hash
        else:
            path = item["path"]
            digest = item.get("content_hash") or content_hash(item["content"])
        if index == 0:
            first_path = path
        entries.append(f"{path}:{digest}")

    parts = first_path.split("/")
    project_dir = parts[1] if len(parts) > 1 else "unknown"
    descriptor = f"project:{project_dir}|files:{len(entries)}|" + "|".join(sorted(entries))
    if model:
        descriptor += f"|model:{model}"
    return hashlib.sha256(descriptor.encode("utf-8")).hexdigest()


def search_id(keyword: str, project_name: str) -> str:
    """Stable id for a keyword search within a project."""
    return "search_{}_{}".format(
        re.sub(r"[^a-zA-Z0-9]", "_", keyword),
        re.sub(r"[^a-zA-Z0-9]", "_", project_name),
    )


def _vector(raw: Any) -> List[float]:
    if not isinstance(raw, list) or not raw:
        raise ValueError("embedding is not a non-empty list")
    return [float(v) for v in raw]


def _vectors(raw: Any) -> Dict[str, List[float]]:
    if not isinstance(raw, dict):
        raise ValueError("embeddings are not a mapping")
    return {str(path): _vector(vec) for path, vec in raw.items()}


class EmbeddingCache:
    """Embedding cache over an injected key-value store.

    Args:
        store: Any object with the :class:`~context_curator.storage.InMemoryKVStore`
            interface. Defaults to the persisted SQLite store.
        ttl_days: Age after which embedding records are swept.
        clock: Time source, seconds since the epoch.
    """

    def __init__(
        self,
        store: Any = None,
        ttl_days: float = config.CACHE_TTL_DAYS,
        history_ttl_days: float = config.SEARCH_HISTORY_TTL_DAYS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store if store is not None else SQLiteKVStore()
        self.ttl_days = ttl_days
        self.history_ttl_days = history_ttl_days
        self._clock = clock
        self._sweeper: Optional[CacheSweeper] = None

    def _read(self, table: str, key: str, model: Optional[str]) -> Optional[Dict[str, Any]]:
        """Raw record, or None on a miss, a read failure or a stale record.

        *model* None skips the provider check.
        """
        try:
            record = self.store.get(table, key)
        except Exception as exc:
            logger.warning("Failed to read %s entry %s: %s", table, key[:64], exc)
            return None
        if not isinstance(record, dict):
            return None
        if record.get("version") != config.CACHE_RECORD_VERSION:
            logger.debug("Ignoring %s entry %s with record version %r", table, key[:64], record.get("version"))
            return None
        if model is not None and record.get("model", "") != model:
            logger.debug("Ignoring %s entry %s from provider %r", table, key[:64], record.get("model"))
            return None
        return record

    # ------------------------------------------------------------------
    # File embeddings
    # ------------------------------------------------------------------

    def get(self, path: str, file_hash: str, model: str = "") -> Optional[List[float]]:
        """Cached vector for *path*, or None unless both its hash and provider match."""
        record = self._read(FILE_EMBEDDINGS, path, model)
        if record is None or record.get("hash") != file_hash:
            return None
        try:
            return _vector(record.get("embedding"))
        except (TypeError, ValueError) as exc:
            logger.warning("Discarding malformed cached embedding for %s: %s", path, exc)
            return None

    def get_name_vector(self, path: str, model: str = "") -> Optional[List[float]]:
        """Cached file-name vector for *path*; valid whatever the content hash."""
        record = self._read(FILE_EMBEDDINGS, path, model)
        if record is None or record.get("nameEmbedding") is None:
            return None
        try:
            return _vector(record["nameEmbedding"])
        except (TypeError, ValueError) as exc:
            logger.warning("Discarding malformed file-name embedding for %s: %s", path, exc)
            return None

    def get_record(self, path: str) -> Optional[CachedEmbedding]:
        record = self._read(FILE_EMBEDDINGS, path, None)
        if record is None:
            return None
        try:
            name_vec = record.get("nameEmbedding")
            return CachedEmbedding(
                path=record["path"],
                hash=record["hash"],
                embedding=_vector(record["embedding"]),
                timestamp=float(record["timestamp"]),
                model=record.get("model", ""),
                name_embedding=_vector(name_vec) if name_vec is not None else None,
            )
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Discarding malformed cached embedding for %s: %s", path, exc)
            return None

    def put(
        self,
        path: str,
        file_hash: str,
        embedding: Sequence[float],
        model: str = "",
        name_embedding: Optional[Sequence[float]] = None,
    ) -> bool:
        record: Dict[str, Any] = {
            "path": path,
            "hash": file_hash,
            "embedding": [float(v) for v in embedding],
            "model": model,
            "timestamp": self._clock(),
            "version": config.CACHE_RECORD_VERSION,
        }
        if name_embedding is not None:
            record["nameEmbedding"] = [float(v) for v in name_embedding]
        try:
            self.store.put(FILE_EMBEDDINGS, path, record)
            return True
        except Exception as exc:
            logger.warning("Failed to store embedding for %s: %s", path, exc)
            return False

    # ------------------------------------------------------------------
    # Project snapshots
    # ------------------------------------------------------------------

    def get_project(self, project_key: str, model: str = "") -> Optional[CachedProjectEmbeddings]:
        record = self._read(PROJECT_EMBEDDINGS, project_key, model)
        if record is None:
            return None
        try:
            return CachedProjectEmbeddings(
                project_hash=record["projectHash"],
                file_embeddings=_vectors(record["fileEmbeddings"]),
                timestamp=float(record["timestamp"]),
                model=record.get("model", ""),
                name_embeddings=_vectors(record.get("nameEmbeddings", {})),
            )
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Discarding malformed project embeddings %s: %s", project_key[:8], exc)
            return None

    def put_project(
        self,
        project_key: str,
        file_embeddings: Mapping[str, Sequence[float]],
        model: str = "",
        name_embeddings: Optional[Mapping[str, Sequence[float]]] = None,
    ) -> bool:
        record = {
            "projectHash": project_key,
            "fileEmbeddings": {path: [float(v) for v in vec] for path, vec in file_embeddings.items()},
            "nameEmbeddings": {path: [float(v) for v in vec] for path, vec in (name_embeddings or {}).items()},
            "model": model,
            "timestamp": self._clock(),
            "version": config.CACHE_RECORD_VERSION,
        }
        try:
            self.store.put(PROJECT_EMBEDDINGS, project_key, record)
            return True
        except Exception as exc:
            logger.warning("Failed to store project embeddings: %s", exc)
            return False

    # ------------------------------------------------------------------
    # Search history
    # ------------------------------------------------------------------

    def store_search_results(
        self,
        keyword: str,
        project_name: str,
        results: List[Dict[str, Any]],
        entry_point_file: Optional[str] = None,
    ) -> Optional[str]:
        """Persist a search; returns its id, or None if the write failed."""
        record_id = search_id(keyword, project_name)
        record: Dict[str, Any] = {
            "id": record_id,
            "keyword": keyword,
            "projectName": project_name,
            "results": results,
            "timestamp": self._clock(),
            "version": config.CACHE_RECORD_VERSION,
        }
        if entry_point_file:
            record["entryPointFile"] = entry_point_file
        try:
            self.store.put(SEARCH_RESULTS, record_id, record)
            return record_id
        except Exception as exc:
            logger.warning("Failed to store search results: %s", exc)
            return None

    def get_search_results(self, record_id: str) -> Optional[Dict[str, Any]]:
        try:
            return self.store.get(SEARCH_RESULTS, record_id)
        except Exception as exc:
            logger.warning("Failed to get search results %s: %s", record_id, exc)
            return None

    def get_search_results_by_project(self, project_name: str) -> List[Dict[str, Any]]:
        """Saved searches of *project_name*, newest first."""
        try:
            records = self.store.values(SEARCH_RESULTS)
        except Exception as exc:
            logger.warning("Failed to get search results for project %s: %s", project_name, exc)
            return []
        matching = [r for r in records if r.get("projectName") == project_name]
        matching.sort(key=lambda r: r.get("timestamp", 0), reverse=True)
        return matching

    def delete_search_results(self, record_id: str) -> bool:
        try:
            return bool(self.store.delete(SEARCH_RESULTS, record_id))
        except Exception as exc:
            logger.warning("Failed to delete search results %s: %s", record_id, exc)
            return False

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def sweep_expired(self, now: Optional[float] = None) -> int:
        """Delete records older than their TTL; returns the number removed."""
        now = self._clock() if now is None else now
        cutoffs = {
            FILE_EMBEDDINGS: now - self.ttl_days * _DAY,
            PROJECT_EMBEDDINGS: now - self.ttl_days * _DAY,
            SEARCH_RESULTS: now - self.history_ttl_days * _DAY,
        }
        removed = 0
        for table, cutoff in cutoffs.items():
            try:
                removed += self.store.delete_older_than(table, cutoff)
            except Exception as exc:
                logger.warning("Failed to clean expired entries from %s: %s", table, exc)
        if removed:
            logger.info("Cache sweep removed %d expired records", removed)
        return removed

    def stats(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for table in TABLES:
            try:
                counts[table] = self.store.count(table)
            except Exception as exc:
                logger.warning("Failed to count %s: %s", table, exc)
                counts[table] = 0
        return counts

    def clear(self) -> bool:
        try:
            self.store.clear()
            return True
        except Exception as exc:
            logger.warning("Failed to clear the cache: %s", exc)
            return False

    def start_background_sweep(self, interval: float = config.CACHE_SWEEP_INTERVAL) -> "CacheSweeper":
        """Start (or return the running) sweeper thread."""
        if self._sweeper is None or not self._sweeper.is_alive():
            self._sweeper = CacheSweeper(self, interval)
            self._sweeper.start()
        return self._sweeper

    def stop_background_sweep(self) -> None:
        if self._sweeper is not None:
            self._sweeper.stop()
            self._sweeper = None


class CacheSweeper(threading.Thread):
    """Daemon thread evicting expired cache records on a fixed interval.

    Runs one sweep immediately, then one per *interval* seconds until
    :meth:`stop` is called. Independent of query activity.
    """

    def __init__(self, cache: EmbeddingCache, interval: float) -> None:
        super().__init__(name="context-curator-cache-sweeper", daemon=True)
        self.cache = cache
        self.interval = interval
        self._stop_event = threading.Event()
        self.sweeps = 0

    def run(self) -> None:
        while True:
            try:
                self.cache.sweep_expired()
            except Exception as exc:
                logger.warning("Cache sweep failed: %s", exc)
            self.sweeps += 1
            if self._stop_event.wait(self.interval):
                break

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop_event.set()
        if self.is_alive() and threading.current_thread() is not self:
            self.join(timeout)
