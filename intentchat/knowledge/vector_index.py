# ==============================
# Vector Index Contracts
# ==============================
"""
Vector Index Client interface.

Guarantees every backend must provide:
- ensure_collection is idempotent; a dimension/metric mismatch with an existing
  collection raises SchemaMismatchError (never silently migrated).
- upsert is atomic per chunk_id; same id twice leaves the same observable state.
- delete of an unknown id is a no-op.
- query returns at most k items, score descending, ties broken by most recent
  source_mtime then chunk_id ascending.

Only the Indexer writes; the Query Resolver only reads.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Sequence

from intentchat.config.schema import Settings
from intentchat.contracts.chunk_schema import CollectionInfo, QueryResultItem

METRICS = ("cosine", "dot", "euclidean")


def rank_items(items: Iterable[QueryResultItem], k: int) -> List[QueryResultItem]:
    ordered = sorted(items, key=lambda it: it.sort_key())
    return ordered[: max(0, int(k))]


def passes_filter(metadata: Dict[str, Any], filters: Optional[Dict[str, Any]]) -> bool:
    if not filters:
        return True
    for key, value in filters.items():
        if key not in metadata or metadata.get(key) != value:
            return False
    return True


def validate_vector(vector: Sequence[float], dimension: int) -> None:
    if len(vector) != dimension:
        raise ValueError(f"vector has dimension {len(vector)}, collection expects {dimension}")
    if any(not math.isfinite(float(x)) for x in vector):
        raise ValueError("vector contains non-finite values")


class VectorIndex(ABC):
    """Backend-neutral vector collection client."""

    @abstractmethod
    def ensure_collection(self, name: str, dimension: int, metric: str = "cosine") -> CollectionInfo:
        raise NotImplementedError

    @abstractmethod
    def upsert(self, collection: str, chunk_id: str, vector: Sequence[float], metadata: Dict[str, Any]) -> None:
        raise NotImplementedError

    @abstractmethod
    def delete(self, collection: str, chunk_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def query(
        self,
        collection: str,
        vector: Sequence[float],
        k: int,
        filters: Optional[Dict[str, Any]] = None,
    ) -> List[QueryResultItem]:
        raise NotImplementedError

    @abstractmethod
    def count(self, collection: str) -> int:
        raise NotImplementedError

    @abstractmethod
    def collection_info(self, name: str) -> Optional[CollectionInfo]:
        raise NotImplementedError

    @abstractmethod
    def drop_collection(self, name: str) -> None:
        raise NotImplementedError

    def close(self) -> None:
        return None


def build_vector_index(settings: Settings) -> VectorIndex:
    """
    Instantiate the configured backend.
    """
    cfg = settings.index
    if cfg.backend == "qdrant":
        from intentchat.knowledge.qdrant_index import QdrantVectorIndex

        return QdrantVectorIndex(url=cfg.qdrant_url, timeout_seconds=cfg.timeout_seconds, prefer_grpc=cfg.qdrant_prefer_grpc)

    from intentchat.knowledge.sqlite_index import SqliteVectorIndex

    db_path = settings.resolve_path(cfg.db_path) if cfg.db_path else settings.storage_path() / "index" / "vectors.sqlite"
    return SqliteVectorIndex(str(db_path), timeout_seconds=cfg.timeout_seconds)
