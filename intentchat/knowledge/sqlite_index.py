# ==============================
# Local Vector Index (SQLite)
# ==============================
"""
SQLite-backed vector collections, the default local index.

Choices:
- One file holds both collections; rows keyed by (collection, chunk_id).
- Vectors stored as float32 BLOBs; scoring is a numpy pass over the collection.
- Each upsert is one transaction, so readers never see a half-written vector.
- Writes are serialized per collection; last writer wins.

Table schema:
  collections(name TEXT PRIMARY KEY, dimension INTEGER, metric TEXT, created_at INTEGER)
  vectors(
    collection TEXT, chunk_id TEXT, vector BLOB, metadata_json TEXT,
    source_mtime REAL, updated_at INTEGER,
    PRIMARY KEY (collection, chunk_id)
  )
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import threading
import time
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from intentchat.contracts.chunk_schema import CollectionInfo, QueryResultItem
from intentchat.contracts.errors import SchemaMismatchError, VectorIndexError
from intentchat.knowledge.vector_index import METRICS, VectorIndex, passes_filter, rank_items, validate_vector

logger = logging.getLogger("intentchat.index")

SCORE_DECIMALS = 6


def _now_ts() -> int:
    return int(time.time())


def _loads(s: Optional[str]) -> Dict[str, Any]:
    if not s:
        return {}
    try:
        value = json.loads(s)
    except json.JSONDecodeError:
        return {}
    return value if isinstance(value, dict) else {}


def score_matrix(matrix: np.ndarray, query: np.ndarray, metric: str) -> np.ndarray:
    if metric == "dot":
        return matrix @ query
    if metric == "euclidean":
        return -np.linalg.norm(matrix - query, axis=1)
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
    dots = matrix @ query
    return np.divide(dots, norms, out=np.zeros_like(dots), where=norms > 0)


class SqliteVectorIndex(VectorIndex):
    def __init__(self, db_path: str, *, timeout_seconds: float = 10.0) -> None:
        self.db_path = db_path
        self.timeout_seconds = timeout_seconds
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._ensure_dir()
        self._ensure_schema()

    def _ensure_dir(self) -> None:
        parent = os.path.dirname(self.db_path)
        if parent:
            os.makedirs(parent, exist_ok=True)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=self.timeout_seconds, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        conn.execute(f"PRAGMA busy_timeout={int(self.timeout_seconds * 1000)};")
        return conn

    def _ensure_schema(self) -> None:
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS collections (
                        name TEXT PRIMARY KEY,
                        dimension INTEGER NOT NULL,
                        metric TEXT NOT NULL,
                        created_at INTEGER NOT NULL
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS vectors (
                        collection TEXT NOT NULL,
                        chunk_id TEXT NOT NULL,
                        vector BLOB NOT NULL,
                        metadata_json TEXT NOT NULL,
                        source_mtime REAL NOT NULL DEFAULT 0,
                        updated_at INTEGER NOT NULL,
                        PRIMARY KEY (collection, chunk_id)
                    )
                    """
                )
                conn.commit()
        except sqlite3.Error as exc:
            raise VectorIndexError(f"cannot open vector index at {self.db_path}: {exc}") from exc

    def _lock_for(self, collection: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(collection)
            if lock is None:
                lock = threading.Lock()
                self._locks[collection] = lock
            return lock

    def _schema(self, conn: sqlite3.Connection, name: str) -> Optional[sqlite3.Row]:
        return conn.execute("SELECT name, dimension, metric FROM collections WHERE name=?", (name,)).fetchone()

    def _require(self, conn: sqlite3.Connection, name: str) -> sqlite3.Row:
        row = self._schema(conn, name)
        if row is None:
            raise VectorIndexError(f"collection '{name}' does not exist", collection=name)
        return row

    # ------------------------------
    # Collections
    # ------------------------------

    def ensure_collection(self, name: str, dimension: int, metric: str = "cosine") -> CollectionInfo:
        if metric not in METRICS:
            raise ValueError(f"Unsupported metric: {metric}")
        with self._lock_for(name):
            try:
                with self._connect() as conn:
                    row = self._schema(conn, name)
                    if row is None:
                        conn.execute(
                            "INSERT INTO collections(name, dimension, metric, created_at) VALUES (?, ?, ?, ?)",
                            (name, int(dimension), metric, _now_ts()),
                        )
                        conn.commit()
                        logger.info(f"created collection {name} dim={dimension} metric={metric}", extra={"collection": name})
                    elif int(row["dimension"]) != int(dimension) or row["metric"] != metric:
                        raise SchemaMismatchError(
                            f"collection '{name}' exists with dimension={row['dimension']} metric={row['metric']}, "
                            f"configured dimension={dimension} metric={metric}",
                            collection=name,
                        )
            except sqlite3.Error as exc:
                raise VectorIndexError(f"ensure_collection failed: {exc}", collection=name) from exc
        return CollectionInfo(name=name, dimension=int(dimension), metric=metric, count=self.count(name))

    def collection_info(self, name: str) -> Optional[CollectionInfo]:
        try:
            with self._connect() as conn:
                row = self._schema(conn, name)
                if row is None:
                    return None
                count = conn.execute("SELECT COUNT(1) FROM vectors WHERE collection=?", (name,)).fetchone()[0]
        except sqlite3.Error as exc:
            raise VectorIndexError(f"collection_info failed: {exc}", collection=name) from exc
        return CollectionInfo(name=name, dimension=int(row["dimension"]), metric=row["metric"], count=int(count))

    def count(self, collection: str) -> int:
        try:
            with self._connect() as conn:
                return int(conn.execute("SELECT COUNT(1) FROM vectors WHERE collection=?", (collection,)).fetchone()[0])
        except sqlite3.Error as exc:
            raise VectorIndexError(f"count failed: {exc}", collection=collection) from exc

    def drop_collection(self, name: str) -> None:
        with self._lock_for(name):
            try:
                with self._connect() as conn:
                    conn.execute("DELETE FROM vectors WHERE collection=?", (name,))
                    conn.execute("DELETE FROM collections WHERE name=?", (name,))
                    conn.commit()
            except sqlite3.Error as exc:
                raise VectorIndexError(f"drop_collection failed: {exc}", collection=name) from exc
        logger.info(f"dropped collection {name}", extra={"collection": name})

    # ------------------------------
    # Points
    # ------------------------------

    def upsert(self, collection: str, chunk_id: str, vector: Sequence[float], metadata: Dict[str, Any]) -> None:
        with self._lock_for(collection):
            try:
                with self._connect() as conn:
                    row = self._require(conn, collection)
                    try:
                        validate_vector(vector, int(row["dimension"]))
                    except ValueError as exc:
                        raise SchemaMismatchError(str(exc), collection=collection) from exc
                    blob = np.asarray(vector, dtype=np.float32).tobytes()
                    conn.execute(
                        """
                        INSERT INTO vectors(collection, chunk_id, vector, metadata_json, source_mtime, updated_at)
                        VALUES (?, ?, ?, ?, ?, ?)
                        ON CONFLICT(collection, chunk_id) DO UPDATE SET
                            vector=excluded.vector,
                            metadata_json=excluded.metadata_json,
                            source_mtime=excluded.source_mtime,
                            updated_at=excluded.updated_at
                        """,
                        (
                            collection,
                            chunk_id,
                            blob,
                            json.dumps(metadata, ensure_ascii=False, sort_keys=True),
                            float(metadata.get("source_mtime") or 0.0),
                            _now_ts(),
                        ),
                    )
                    conn.commit()
            except sqlite3.Error as exc:
                raise VectorIndexError(f"upsert failed: {exc}", collection=collection) from exc

    def delete(self, collection: str, chunk_id: str) -> None:
        with self._lock_for(collection):
            try:
                with self._connect() as conn:
                    conn.execute("DELETE FROM vectors WHERE collection=? AND chunk_id=?", (collection, chunk_id))
                    conn.commit()
            except sqlite3.Error as exc:
                raise VectorIndexError(f"delete failed: {exc}", collection=collection) from exc

    def query(
        self,
        collection: str,
        vector: Sequence[float],
        k: int,
        filters: Optional[Dict[str, Any]] = None,
    ) -> List[QueryResultItem]:
        if k <= 0:
            return []
        try:
            with self._connect() as conn:
                schema = self._require(conn, collection)
                rows = conn.execute(
                    "SELECT chunk_id, vector, metadata_json, source_mtime FROM vectors WHERE collection=?",
                    (collection,),
                ).fetchall()
        except sqlite3.Error as exc:
            raise VectorIndexError(f"query failed: {exc}", collection=collection) from exc

        dimension = int(schema["dimension"])
        try:
            validate_vector(vector, dimension)
        except ValueError as exc:
            raise SchemaMismatchError(str(exc), collection=collection) from exc

        kept = []
        for row in rows:
            meta = _loads(row["metadata_json"])
            if passes_filter(meta, filters):
                kept.append((row, meta))
        if not kept:
            return []

        matrix = np.frombuffer(b"".join(r["vector"] for r, _ in kept), dtype=np.float32).reshape(len(kept), dimension)
        q = np.asarray(vector, dtype=np.float32)
        scores = score_matrix(matrix, q, schema["metric"])

        items = [
            QueryResultItem(
                chunk_id=row["chunk_id"],
                score=round(float(score), SCORE_DECIMALS),
                source_ref=str(meta.get("source_ref", "")),
                text=str(meta.get("text", "")),
                source_mtime=float(row["source_mtime"] or 0.0),
                metadata=meta,
            )
            for (row, meta), score in zip(kept, scores)
        ]
        return rank_items(items, k)
