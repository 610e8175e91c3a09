# ==============================
# Sync State (change-detection side table)
# ==============================
"""
Last-known content hash per chunk, plus per-collection sync markers.

The Indexer consults this table before embedding: a chunk whose hash is
unchanged is skipped. Content hashing (not embedding equality) drives change
detection, so nondeterministic embedding backends are harmless.

Tables:
- chunk_hashes(collection, chunk_id, source_ref, content_hash, updated_at)
- collection_state(collection, model_version, catalog_hash, last_sync_at)
"""

from __future__ import annotations

import os
import sqlite3
import time
from dataclasses import dataclass
from typing import Dict, Optional

from intentchat.config.schema import Settings
from intentchat.contracts.errors import VectorIndexError


@dataclass(frozen=True)
class ChunkState:
    chunk_id: str
    source_ref: str
    content_hash: str


class SyncStateStore:
    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        parent = os.path.dirname(db_path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        self._init_db()

    @classmethod
    def from_settings(cls, settings: Settings) -> "SyncStateStore":
        cfg = settings.index
        path = settings.resolve_path(cfg.state_path) if cfg.state_path else settings.storage_path() / "index" / "sync_state.sqlite"
        return cls(str(path))

    def _connect(self) -> sqlite3.Connection:
        con = sqlite3.connect(self.db_path, check_same_thread=False)
        con.row_factory = sqlite3.Row
        con.execute("PRAGMA journal_mode=WAL;")
        con.execute("PRAGMA busy_timeout=5000;")
        return con

    def _init_db(self) -> None:
        try:
            with self._connect() as con:
                con.execute(
                    """
                    CREATE TABLE IF NOT EXISTS chunk_hashes (
                      collection TEXT NOT NULL,
                      chunk_id TEXT NOT NULL,
                      source_ref TEXT NOT NULL,
                      content_hash TEXT NOT NULL,
                      updated_at INTEGER NOT NULL,
                      PRIMARY KEY (collection, chunk_id)
                    )
                    """
                )
                con.execute("CREATE INDEX IF NOT EXISTS idx_chunk_hashes_source ON chunk_hashes(collection, source_ref)")
                con.execute(
                    """
                    CREATE TABLE IF NOT EXISTS collection_state (
                      collection TEXT PRIMARY KEY,
                      model_version TEXT,
                      catalog_hash TEXT,
                      last_sync_at INTEGER
                    )
                    """
                )
                con.commit()
        except sqlite3.Error as exc:
            raise VectorIndexError(f"cannot open sync state at {self.db_path}: {exc}") from exc

    # ------------------------------
    # Chunk hashes
    # ------------------------------

    def chunk_states(self, collection: str) -> Dict[str, ChunkState]:
        with self._connect() as con:
            rows = con.execute(
                "SELECT chunk_id, source_ref, content_hash FROM chunk_hashes WHERE collection=?",
                (collection,),
            ).fetchall()
        return {r["chunk_id"]: ChunkState(r["chunk_id"], r["source_ref"], r["content_hash"]) for r in rows}

    def record(self, collection: str, chunk_id: str, source_ref: str, content_hash: str) -> None:
        with self._connect() as con:
            con.execute(
                """
                INSERT INTO chunk_hashes(collection, chunk_id, source_ref, content_hash, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(collection, chunk_id) DO UPDATE SET
                  source_ref=excluded.source_ref,
                  content_hash=excluded.content_hash,
                  updated_at=excluded.updated_at
                """,
                (collection, chunk_id, source_ref, content_hash, int(time.time())),
            )
            con.commit()

    def forget(self, collection: str, chunk_id: str) -> None:
        with self._connect() as con:
            con.execute("DELETE FROM chunk_hashes WHERE collection=? AND chunk_id=?", (collection, chunk_id))
            con.commit()

    def forget_collection(self, collection: str) -> None:
        with self._connect() as con:
            con.execute("DELETE FROM chunk_hashes WHERE collection=?", (collection,))
            con.execute("DELETE FROM collection_state WHERE collection=?", (collection,))
            con.commit()

    # ------------------------------
    # Collection markers
    # ------------------------------

    def _state(self, collection: str) -> Optional[sqlite3.Row]:
        with self._connect() as con:
            return con.execute("SELECT * FROM collection_state WHERE collection=?", (collection,)).fetchone()

    def model_version(self, collection: str) -> Optional[str]:
        row = self._state(collection)
        return row["model_version"] if row else None

    def catalog_hash(self, collection: str) -> Optional[str]:
        row = self._state(collection)
        return row["catalog_hash"] if row else None

    def mark_synced(self, collection: str, *, model_version: str, catalog_hash: Optional[str] = None) -> None:
        with self._connect() as con:
            con.execute(
                """
                INSERT INTO collection_state(collection, model_version, catalog_hash, last_sync_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(collection) DO UPDATE SET
                  model_version=excluded.model_version,
                  catalog_hash=COALESCE(excluded.catalog_hash, collection_state.catalog_hash),
                  last_sync_at=excluded.last_sync_at
                """,
                (collection, model_version, catalog_hash, int(time.time())),
            )
            con.commit()
