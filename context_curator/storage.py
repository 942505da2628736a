"""Key-value persistence for the embedding cache.

Records are JSON-serialisable dicts carrying a ``timestamp`` field, grouped in
logical tables. Two stores share the same interface:

- :class:`InMemoryKVStore` for tests and throwaway sessions.
- :class:`SQLiteKVStore`, one SQLite table per logical table, persisted under
  ``~/.context_curator/cache.db``.

Both are safe to call from worker threads and the background sweeper.
"""

from __future__ import annotations

import copy
import json
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from . import config

logger = logging.getLogger(__name__)

FILE_EMBEDDINGS = "file_embeddings"
PROJECT_EMBEDDINGS = "project_embeddings"
SEARCH_RESULTS = "search_results"
TABLES = (FILE_EMBEDDINGS, PROJECT_EMBEDDINGS, SEARCH_RESULTS)


def _check_table(table: str) -> None:
    if table not in TABLES:
        raise ValueError(f"Unknown table: '{table}'. Available: {', '.join(TABLES)}")


class InMemoryKVStore:
    """Dict-backed store; records are deep-copied on the way in and out."""

    def __init__(self) -> None:
        self._tables: Dict[str, Dict[str, Dict[str, Any]]] = {t: {} for t in TABLES}
        self._lock = threading.Lock()

    def get(self, table: str, key: str) -> Optional[Dict[str, Any]]:
        _check_table(table)
        with self._lock:
            record = self._tables[table].get(key)
            return copy.deepcopy(record) if record is not None else None

    def put(self, table: str, key: str, record: Dict[str, Any]) -> None:
        _check_table(table)
        with self._lock:
            self._tables[table][key] = copy.deepcopy(record)

    def delete(self, table: str, key: str) -> bool:
        _check_table(table)
        with self._lock:
            return self._tables[table].pop(key, None) is not None

    def clear(self, table: Optional[str] = None) -> None:
        with self._lock:
            for name in ([table] if table else TABLES):
                _check_table(name)
                self._tables[name].clear()

    def count(self, table: str) -> int:
        _check_table(table)
        with self._lock:
            return len(self._tables[table])

    def values(self, table: str) -> List[Dict[str, Any]]:
        _check_table(table)
        with self._lock:
            return [copy.deepcopy(r) for r in self._tables[table].values()]

    def delete_older_than(self, table: str, cutoff: float) -> int:
        _check_table(table)
        with self._lock:
            rows = self._tables[table]
            stale = [k for k, r in rows.items() if float(r.get("timestamp", 0)) < cutoff]
            for key in stale:
                del rows[key]
            return len(stale)

    def close(self) -> None:
        pass


class SQLiteKVStore:
    """SQLite-backed store with a ``timestamp`` index for TTL sweeps."""

    def __init__(self, db_path: Optional[Path] = None) -> None:
        if db_path is None:
            config.ensure_base_dirs()
            db_path = config.CACHE_DB
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self.conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._init_schema()

    def close(self) -> None:
        with self._lock:
            self.conn.close()

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def _init_schema(self) -> None:
        with self._lock:
            cur = self.conn.cursor()
            for table in TABLES:
                cur.execute(f"""
                    CREATE TABLE IF NOT EXISTS {table} (
                        key       TEXT PRIMARY KEY,
                        value     TEXT NOT NULL,
                        timestamp REAL NOT NULL
                    )
                """)
                cur.execute(f"CREATE INDEX IF NOT EXISTS idx_{table}_timestamp ON {table}(timestamp)")
            self.conn.commit()

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def get(self, table: str, key: str) -> Optional[Dict[str, Any]]:
        _check_table(table)
        with self._lock:
            row = self.conn.execute(f"SELECT value FROM {table} WHERE key = ?", (key,)).fetchone()
        if row is None:
            return None
        return json.loads(row["value"])

    def put(self, table: str, key: str, record: Dict[str, Any]) -> None:
        _check_table(table)
        payload = json.dumps(record)
        with self._lock:
            self.conn.execute(
                f"INSERT OR REPLACE INTO {table} (key, value, timestamp) VALUES (?, ?, ?)",
                (key, payload, float(record.get("timestamp", 0))),
            )
            self.conn.commit()

    def delete(self, table: str, key: str) -> bool:
        _check_table(table)
        with self._lock:
            cur = self.conn.execute(f"DELETE FROM {table} WHERE key = ?", (key,))
            self.conn.commit()
            return cur.rowcount > 0

    def clear(self, table: Optional[str] = None) -> None:
        with self._lock:
            for name in ([table] if table else TABLES):
                _check_table(name)
                self.conn.execute(f"DELETE FROM {name}")
            self.conn.commit()

    def count(self, table: str) -> int:
        _check_table(table)
        with self._lock:
            row = self.conn.execute(f"SELECT COUNT(*) AS n FROM {table}").fetchone()
        return int(row["n"])

    def values(self, table: str) -> List[Dict[str, Any]]:
        _check_table(table)
        with self._lock:
            rows = self.conn.execute(f"SELECT value FROM {table}").fetchall()
        return [json.loads(row["value"]) for row in rows]

    def delete_older_than(self, table: str, cutoff: float) -> int:
        _check_table(table)
        with self._lock:
            cur = self.conn.execute(f"DELETE FROM {table} WHERE timestamp < ?", (cutoff,))
            self.conn.commit()
            removed = cur.rowcount
        if removed:
            logger.debug("Removed %d expired rows from %s", removed, table)
        return removed
