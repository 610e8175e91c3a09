# ==============================
# Qdrant Vector Index
# ==============================
"""
Vector Index Client over a local Qdrant service (loopback gRPC/HTTP).

Notes:
- Qdrant point ids must be integers or UUIDs; chunk ids are mapped with uuid5
  and the original chunk_id is kept in the payload.
- Qdrant's own ranking is re-applied through rank_items so ties are broken the
  same way as the SQLite backend (source_mtime desc, chunk_id asc). The fetch
  widens until every point tied with the k-th score is a candidate.
- Euclidean scores are negated distances so "higher is better" holds for
  every metric.
- qdrant-client is imported lazily; the SQLite backend does not need it.
"""

from __future__ import annotations

import logging
import math
import uuid
from typing import Any, Dict, List, Optional, Sequence

from intentchat.contracts.chunk_schema import CollectionInfo, QueryResultItem
from intentchat.contracts.errors import SchemaMismatchError, VectorIndexError
from intentchat.knowledge.vector_index import METRICS, VectorIndex, rank_items, validate_vector

logger = logging.getLogger("intentchat.index")

_POINT_NAMESPACE = uuid.UUID("6f1d8a52-7c1e-4f0e-9b3a-2d5c8e4a1f70")
_OVERFETCH = 2


def point_id(chunk_id: str) -> str:
    return str(uuid.uuid5(_POINT_NAMESPACE, chunk_id))


class QdrantVectorIndex(VectorIndex):
    def __init__(self, *, url: str, timeout_seconds: float = 10.0, prefer_grpc: bool = True, client: Any = None) -> None:
        self.url = url
        self.timeout_seconds = timeout_seconds
        try:
            from qdrant_client import QdrantClient, models
        except ImportError as exc:
            raise VectorIndexError("qdrant-client is not installed; install qdrant-client to use index.backend=qdrant") from exc
        self._models = models
        self._distances = {
            "cosine": models.Distance.COSINE,
            "dot": models.Distance.DOT,
            "euclidean": models.Distance.EUCLID,
        }
        self._client = client or QdrantClient(url=url, timeout=math.ceil(timeout_seconds), prefer_grpc=prefer_grpc)
        self._dimensions: Dict[str, int] = {}
        self._metrics: Dict[str, str] = {}

    def _metric_name(self, distance: Any) -> str:
        for name, value in self._distances.items():
            if value == distance:
                return name
        return str(distance).lower()

    def _params(self, name: str) -> Optional[CollectionInfo]:
        try:
            if not self._client.collection_exists(collection_name=name):
                return None
            info = self._client.get_collection(collection_name=name)
        except Exception as exc:
            raise VectorIndexError(f"qdrant unreachable at {self.url}: {exc}", collection=name) from exc
        vectors = info.config.params.vectors
        if isinstance(vectors, dict):
            raise SchemaMismatchError(f"collection '{name}' uses named vectors, expected a single vector", collection=name)
        metric = self._metric_name(vectors.distance)
        self._dimensions[name] = int(vectors.size)
        self._metrics[name] = metric
        return CollectionInfo(name=name, dimension=int(vectors.size), metric=metric, count=int(info.points_count or 0))

    # ------------------------------
    # Collections
    # ------------------------------

    def ensure_collection(self, name: str, dimension: int, metric: str = "cosine") -> CollectionInfo:
        if metric not in METRICS:
            raise ValueError(f"Unsupported metric: {metric}")
        existing = self._params(name)
        if existing is not None:
            if existing.dimension != int(dimension) or existing.metric != metric:
                raise SchemaMismatchError(
                    f"collection '{name}' exists with dimension={existing.dimension} metric={existing.metric}, "
                    f"configured dimension={dimension} metric={metric}",
                    collection=name,
                )
            return existing
        try:
            self._client.create_collection(
                collection_name=name,
                vectors_config=self._models.VectorParams(size=int(dimension), distance=self._distances[metric]),
            )
        except Exception as exc:
            # a concurrent creator may have won the race
            existing = self._params(name)
            if existing is None:
                raise VectorIndexError(f"create_collection failed: {exc}", collection=name) from exc
            return self.ensure_collection(name, dimension, metric)
        self._dimensions[name] = int(dimension)
        self._metrics[name] = metric
        logger.info(f"created collection {name} dim={dimension} metric={metric}", extra={"collection": name})
        return CollectionInfo(name=name, dimension=int(dimension), metric=metric, count=0)

    def collection_info(self, name: str) -> Optional[CollectionInfo]:
        return self._params(name)

    def count(self, collection: str) -> int:
        try:
            return int(self._client.count(collection_name=collection, exact=True).count)
        except Exception as exc:
            raise VectorIndexError(f"count failed: {exc}", collection=collection) from exc

    def drop_collection(self, name: str) -> None:
        try:
            if self._client.collection_exists(collection_name=name):
                self._client.delete_collection(collection_name=name)
        except Exception as exc:
            raise VectorIndexError(f"drop_collection failed: {exc}", collection=name) from exc
        self._dimensions.pop(name, None)
        self._metrics.pop(name, None)

    def _dimension(self, collection: str) -> int:
        if collection not in self._dimensions:
            if self._params(collection) is None:
                raise VectorIndexError(f"collection '{collection}' does not exist", collection=collection)
        return self._dimensions[collection]

    # ------------------------------
    # Points
    # ------------------------------

    def upsert(self, collection: str, chunk_id: str, vector: Sequence[float], metadata: Dict[str, Any]) -> None:
        try:
            validate_vector(vector, self._dimension(collection))
        except ValueError as exc:
            raise SchemaMismatchError(str(exc), collection=collection) from exc
        payload = dict(metadata)
        payload["chunk_id"] = chunk_id
        point = self._models.PointStruct(id=point_id(chunk_id), vector=[float(x) for x in vector], payload=payload)
        try:
            self._client.upsert(collection_name=collection, points=[point], wait=True)
        except Exception as exc:
            raise VectorIndexError(f"upsert failed: {exc}", collection=collection) from exc

    def delete(self, collection: str, chunk_id: str) -> None:
        try:
            self._client.delete(
                collection_name=collection,
                points_selector=self._models.PointIdsList(points=[point_id(chunk_id)]),
                wait=True,
            )
        except Exception as exc:
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
            validate_vector(vector, self._dimension(collection))
        except ValueError as exc:
            raise SchemaMismatchError(str(exc), collection=collection) from exc

        query_filter = None
        if filters:
            m = self._models
            query_filter = m.Filter(
                must=[m.FieldCondition(key=key, match=m.MatchValue(value=value)) for key, value in filters.items()]
            )
        query = [float(x) for x in vector]
        limit = int(k) * _OVERFETCH
        while True:
            try:
                points = self._client.query_points(
                    collection_name=collection,
                    query=query,
                    limit=limit,
                    with_payload=True,
                    query_filter=query_filter,
                ).points
            except Exception as exc:
                raise VectorIndexError(f"query failed: {exc}", collection=collection) from exc
            # widen while the last candidate still ties the k-th score
            if len(points) < limit or points[-1].score != points[k - 1].score:
                break
            limit *= 2

        negate = self._metrics.get(collection) == "euclidean"
        items: List[QueryResultItem] = []
        for point in points:
            payload = dict(point.payload or {})
            score = float(point.score)
            items.append(
                QueryResultItem(
                    chunk_id=str(payload.pop("chunk_id", point.id)),
                    score=-score if negate else score,
                    source_ref=str(payload.get("source_ref", "")),
                    text=str(payload.get("text", "")),
                    source_mtime=float(payload.get("source_mtime") or 0.0),
                    metadata=payload,
                )
            )
        return rank_items(items, k)

    def close(self) -> None:
        self._client.close()
