# ==============================
# Embedder Adapter
# ==============================
"""
Turns text into fixed-dimension vectors through a local embedding backend.

Contract:
- embed(texts) returns one vector per input, in input order. Inputs are never
  dropped or reordered; a malformed backend response is an EmbeddingError.
- Backend calls are capped at max_batch_size texts and carry a timeout.
- submit(text) micro-batches concurrent callers: texts accumulate until
  max_batch_size is reached or max_wait_ms elapses, then one backend call
  resolves every caller's future.
- No zero-vector substitution on failure.

Backends:
- FastEmbedBackend wraps fastembed.TextEmbedding (ONNX, runs locally).
  The model is loaded lazily on first use.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Iterable, List, Optional, Sequence, Tuple

from intentchat.config.schema import Settings
from intentchat.contracts.errors import EmbeddingError
from intentchat.utils.cancellation import CancellationToken, check

logger = logging.getLogger("intentchat.embedder")

Vector = List[float]


class EmbeddingBackend(ABC):
    """Local embedding runtime. Implementations may block."""

    name: str = "backend"

    @abstractmethod
    def embed(self, texts: List[str]) -> Sequence[Sequence[float]]:
        raise NotImplementedError


class FastEmbedBackend(EmbeddingBackend):
    name = "fastembed"

    def __init__(self, *, model_name: str, cache_dir: Optional[str] = None, threads: Optional[int] = None) -> None:
        self.model_name = model_name
        self.cache_dir = cache_dir
        self.threads = threads
        self._model = None
        self._lock = threading.Lock()

    def _ensure_model(self) -> None:
        if self._model is not None:
            return
        try:
            from fastembed import TextEmbedding
        except ImportError as exc:
            raise EmbeddingError("fastembed is not installed; install fastembed to use the local embedder") from exc

        self._model = TextEmbedding(model_name=self.model_name, cache_dir=self.cache_dir, threads=self.threads)
        logger.info(f"embedding model loaded: {self.model_name}")

    def embed(self, texts: List[str]) -> Sequence[Sequence[float]]:
        # ONNX session is shared; one batch at a time
        with self._lock:
            self._ensure_model()
            return [v.tolist() for v in self._model.embed(texts, batch_size=len(texts))]


class EmbedderAdapter:
    def __init__(
        self,
        backend: EmbeddingBackend,
        *,
        model_version: str,
        dimension: int,
        max_batch_size: int = 32,
        max_wait_ms: int = 20,
        timeout_seconds: float = 30.0,
        query_prefix: str = "",
    ) -> None:
        self.backend = backend
        self.model_version = model_version
        self.dimension = dimension
        self.max_batch_size = max(1, int(max_batch_size))
        self.max_wait_ms = max(0, int(max_wait_ms))
        self.timeout_seconds = timeout_seconds
        self.query_prefix = query_prefix

        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="embed")
        self._calls = 0
        self._calls_lock = threading.Lock()
        self._pending: List[Tuple[str, Future]] = []
        self._pending_lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None

    @classmethod
    def from_settings(cls, settings: Settings, *, backend: Optional[EmbeddingBackend] = None) -> "EmbedderAdapter":
        cfg = settings.embedding
        if backend is None:
            if cfg.backend != "fastembed":
                raise ValueError(f"Unknown embedding backend: {cfg.backend}")
            cache_dir = str(settings.resolve_path(cfg.cache_dir)) if cfg.cache_dir else None
            backend = FastEmbedBackend(model_name=cfg.model_name, cache_dir=cache_dir, threads=cfg.threads)
        version = cfg.model_name if not cfg.model_revision else f"{cfg.model_name}@{cfg.model_revision}"
        return cls(
            backend,
            model_version=version,
            dimension=cfg.dimension,
            max_batch_size=cfg.max_batch_size,
            max_wait_ms=cfg.max_wait_ms,
            timeout_seconds=cfg.timeout_seconds,
            query_prefix=cfg.query_prefix,
        )

    @property
    def calls(self) -> int:
        """Number of backend invocations so far."""
        return self._calls

    # ------------------------------
    # Direct path
    # ------------------------------

    def embed(self, texts: Iterable[str], *, cancel: Optional[CancellationToken] = None) -> List[Vector]:
        items = list(texts)
        out: List[Vector] = []
        for i in range(0, len(items), self.max_batch_size):
            check(cancel)
            out.extend(self._call_backend(items[i : i + self.max_batch_size]))
        return out

    def embed_query(self, text: str, *, cancel: Optional[CancellationToken] = None) -> Vector:
        return self.embed([f"{self.query_prefix}{text}"], cancel=cancel)[0]

    def _call_backend(self, batch: List[str]) -> List[Vector]:
        with self._calls_lock:
            self._calls += 1
        fut = self._executor.submit(self.backend.embed, batch)
        try:
            raw = fut.result(timeout=self.timeout_seconds)
        except FutureTimeout as exc:
            fut.cancel()
            raise EmbeddingError(
                f"embedding backend timed out after {self.timeout_seconds}s", timeout=True
            ) from exc
        except EmbeddingError:
            raise
        except Exception as exc:
            raise EmbeddingError(f"embedding backend failed: {exc}") from exc

        vectors = [[float(x) for x in v] for v in raw]
        if len(vectors) != len(batch):
            raise EmbeddingError(f"embedding backend returned {len(vectors)} vectors for {len(batch)} inputs")
        for v in vectors:
            if len(v) != self.dimension:
                raise EmbeddingError(f"embedding dimension {len(v)} does not match configured {self.dimension}")
        return vectors

    # ------------------------------
    # Micro-batching path
    # ------------------------------

    def submit(self, text: str) -> "Future[Vector]":
        fut: Future = Future()
        ready: List[Tuple[str, Future]] = []
        with self._pending_lock:
            self._pending.append((text, fut))
            if len(self._pending) >= self.max_batch_size:
                ready = self._take_pending()
            elif self._timer is None:
                self._timer = threading.Timer(self.max_wait_ms / 1000.0, self.flush)
                self._timer.daemon = True
                self._timer.start()
        if ready:
            self._run_batch(ready)
        return fut

    def flush(self) -> None:
        with self._pending_lock:
            batch = self._take_pending()
        if batch:
            self._run_batch(batch)

    def _take_pending(self) -> List[Tuple[str, Future]]:
        batch, self._pending = self._pending, []
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        return batch

    def _run_batch(self, batch: List[Tuple[str, Future]]) -> None:
        try:
            vectors = self.embed([text for text, _ in batch])
        except EmbeddingError as exc:
            for _, fut in batch:
                fut.set_exception(exc)
            return
        for (_, fut), vec in zip(batch, vectors):
            fut.set_result(vec)

    def close(self) -> None:
        self.flush()
        self._executor.shutdown(wait=False)
