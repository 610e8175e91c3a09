# ==============================
# Indexer (hash-gated incremental sync)
# ==============================
"""
The only writer of the vector index.

Algorithm (both collections):
1) Guard model_version: a collection embedded with another model is dropped
   and fully re-embedded, never mixed.
2) Chunk every source; compare each chunk's content_hash with the side table.
3) Embed and upsert only new or changed chunks (retry with backoff).
4) Delete chunks whose id no longer appears under the synced roots.

Rules:
- A source that fails to read is skipped and reported; its previously indexed
  chunks are kept.
- An unchanged corpus costs zero embedding calls.
- Queries may run concurrently and can see a mix of old and new chunks while a
  sync is in progress; each upsert is atomic on its own.
"""

from __future__ import annotations

import logging
import os
import queue
import time
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path, PurePosixPath
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple, Union

from intentchat.config.schema import Settings
from intentchat.contracts.chunk_schema import Chunk, CollectionName, Embedding, check_collection
from intentchat.contracts.command_schema import CommandCatalog
from intentchat.contracts.errors import ChunkSourceError, EmbeddingError
from intentchat.contracts.sync_schema import SyncCompleted, SyncFailed, SyncSummary
from intentchat.knowledge.chunker import Chunker
from intentchat.knowledge.embedder import EmbedderAdapter, Vector
from intentchat.knowledge.retry_policy import RetryPolicy, evaluate_retry
from intentchat.knowledge.sync_state import ChunkState, SyncStateStore
from intentchat.knowledge.vector_index import VectorIndex, build_vector_index
from intentchat.utils.cancellation import CancellationToken, check

logger = logging.getLogger("intentchat.indexer")

PathLike = Union[str, Path]


def iter_files(
    roots: Sequence[Path],
    *,
    extensions: Iterable[str],
    ignore_dirs: Iterable[str],
    max_bytes: int,
) -> Tuple[List[Path], List[str]]:
    """
    Collect candidate files under the roots.

    Returns (files, skipped) where skipped holds human-readable reasons.
    Explicit file roots bypass the extension filter but not the size cap.
    """
    exts = {e.lower() for e in extensions}
    ignored = set(ignore_dirs)
    files: List[Path] = []
    skipped: List[str] = []

    for root in roots:
        if root.is_file():
            files.append(root)
            continue
        if not root.is_dir():
            skipped.append(f"{root} (not found)")
            continue
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames[:] = sorted(d for d in dirnames if d not in ignored)
            for fn in filenames:
                if os.path.splitext(fn)[1].lower() in exts:
                    files.append(Path(dirpath) / fn)

    filtered: List[Path] = []
    for path in sorted(set(files)):
        try:
            size = path.stat().st_size
        except OSError:
            skipped.append(f"{path} (unreadable)")
            continue
        if size > max_bytes:
            skipped.append(f"{path} (>{max_bytes} bytes)")
            continue
        filtered.append(path)
    return filtered, skipped


def _under_any(source_ref: str, roots: Sequence[Path]) -> bool:
    ref = PurePosixPath(source_ref)
    for root in roots:
        r = PurePosixPath(root.as_posix())
        if ref == r or r in ref.parents:
            return True
    return False


class Indexer:
    def __init__(
        self,
        *,
        chunker: Chunker,
        embedder: EmbedderAdapter,
        index: VectorIndex,
        state: SyncStateStore,
        metric: str = "cosine",
        include_extensions: Optional[Iterable[str]] = None,
        ignore_dirs: Optional[Iterable[str]] = None,
        max_file_bytes: int = 500_000,
        retry: Optional[RetryPolicy] = None,
        sleep_fn: Callable[[float], None] = time.sleep,
    ) -> None:
        self.chunker = chunker
        self.embedder = embedder
        self.index = index
        self.state = state
        self.metric = metric
        self.include_extensions = list(include_extensions or [".txt", ".md", ".py"])
        self.ignore_dirs = list(ignore_dirs or [".git"])
        self.max_file_bytes = max_file_bytes
        self.retry = retry or RetryPolicy()
        self._sleep = sleep_fn

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        embedder: EmbedderAdapter,
        index: Optional[VectorIndex] = None,
        state: Optional[SyncStateStore] = None,
        sleep_fn: Callable[[float], None] = time.sleep,
    ) -> "Indexer":
        c = settings.chunking
        return cls(
            chunker=Chunker.from_settings(settings),
            embedder=embedder,
            index=index or build_vector_index(settings),
            state=state or SyncStateStore.from_settings(settings),
            metric=settings.index.metric,
            include_extensions=c.include_extensions,
            ignore_dirs=c.ignore_dirs,
            max_file_bytes=c.max_file_bytes,
            retry=RetryPolicy.from_settings(settings),
            sleep_fn=sleep_fn,
        )

    # ==============================
    # Public API
    # ==============================

    def sync(self, root_paths: Iterable[PathLike], *, cancel: Optional[CancellationToken] = None) -> SyncSummary:
        started = time.monotonic()
        collection = CollectionName.CONTENT.value
        summary = SyncSummary(collection=collection)
        summary.reindexed = self._prepare(collection)

        roots = [Path(p).expanduser().resolve() for p in root_paths]
        files, skipped = iter_files(
            roots,
            extensions=self.include_extensions,
            ignore_dirs=self.ignore_dirs,
            max_bytes=self.max_file_bytes,
        )
        summary.skipped += len(skipped)
        summary.errors.extend(skipped)

        known = self.state.chunk_states(collection)
        in_scope = {cid: st for cid, st in known.items() if _under_any(st.source_ref, roots)}
        retained: Set[str] = set()
        chunks: List[Chunk] = []
        for path in files:
            check(cancel)
            try:
                chunks.extend(self.chunker.chunk(path))
            except ChunkSourceError as exc:
                logger.warning(f"skipped source: {exc}", extra={"collection": collection})
                summary.skipped += 1
                summary.errors.append(str(exc))
                ref = path.as_posix()
                retained.update(cid for cid, st in in_scope.items() if st.source_ref == ref)

        self._reconcile(collection, chunks, known, in_scope, retained, summary, cancel)
        self.state.mark_synced(collection, model_version=self.embedder.model_version)
        return self._finish(summary, started)

    def sync_commands(self, catalog: CommandCatalog, *, cancel: Optional[CancellationToken] = None) -> SyncSummary:
        started = time.monotonic()
        collection = CollectionName.COMMANDS.value
        summary = SyncSummary(collection=collection)
        summary.reindexed = self._prepare(collection)

        if (
            not summary.reindexed
            and self.state.catalog_hash(collection) == catalog.content_hash
            and self.index.count(collection) == len(catalog.commands)
        ):
            summary.unchanged = len(catalog.commands)
            logger.debug("command catalog unchanged", extra={"collection": collection})
            return self._finish(summary, started)

        known = self.state.chunk_states(collection)
        chunks = list(self.chunker.chunk_commands(catalog))
        self._reconcile(collection, chunks, known, known, set(), summary, cancel)
        self.state.mark_synced(
            collection,
            model_version=self.embedder.model_version,
            catalog_hash=catalog.content_hash if not summary.errors else None,
        )
        return self._finish(summary, started)

    # ==============================
    # Internals
    # ==============================

    def _prepare(self, collection: str) -> bool:
        """
        Enforce one model_version per collection, then ensure the collection.

        Returns True when the collection was dropped for a full reindex.
        """
        stored = self.state.model_version(collection)
        info = self.index.collection_info(collection)
        reindexed = False
        if info is None:
            # index lost or never built; hashes would wrongly gate everything
            self.state.forget_collection(collection)
        elif stored != self.embedder.model_version and (stored is not None or info.count > 0):
            logger.warning(
                f"model_version changed ({stored} -> {self.embedder.model_version}); reindexing",
                extra={"collection": collection},
            )
            self.index.drop_collection(collection)
            self.state.forget_collection(collection)
            reindexed = True
        self.index.ensure_collection(collection, self.embedder.dimension, self.metric)
        return reindexed

    def _reconcile(
        self,
        collection: str,
        chunks: List[Chunk],
        known: Dict[str, ChunkState],
        scope: Dict[str, ChunkState],
        retained: Set[str],
        summary: SyncSummary,
        cancel: Optional[CancellationToken],
    ) -> None:
        seen: Set[str] = set(retained)
        pending: List[Tuple[Chunk, bool]] = []
        for chunk in chunks:
            check_collection(chunk.kind, CollectionName(collection))
            if chunk.chunk_id in seen:
                continue
            seen.add(chunk.chunk_id)
            prev = known.get(chunk.chunk_id)
            if prev is not None and prev.content_hash == chunk.content_hash:
                summary.unchanged += 1
                continue
            pending.append((chunk, prev is None))

        self._write(collection, pending, summary, cancel)

        for chunk_id in sorted(set(scope) - seen):
            check(cancel)
            self.index.delete(collection, chunk_id)
            self.state.forget(collection, chunk_id)
            summary.removed += 1

    def _write(
        self,
        collection: str,
        pending: List[Tuple[Chunk, bool]],
        summary: SyncSummary,
        cancel: Optional[CancellationToken],
    ) -> None:
        size = self.embedder.max_batch_size
        for i in range(0, len(pending), size):
            check(cancel)
            batch = pending[i : i + size]
            try:
                vectors = self._embed_with_retry([chunk.text for chunk, _ in batch], summary, cancel)
            except EmbeddingError as exc:
                logger.error(f"embedding failed for {len(batch)} chunks: {exc}", extra={"collection": collection})
                summary.skipped += len(batch)
                summary.errors.append(f"embedding failed for {len(batch)} chunks: {exc}")
                continue
            for (chunk, is_new), vector in zip(batch, vectors):
                embedding = Embedding(
                    chunk_id=chunk.chunk_id, vector=vector, model_version=self.embedder.model_version
                )
                self.index.upsert(
                    collection,
                    embedding.chunk_id,
                    embedding.vector,
                    chunk.index_metadata(model_version=embedding.model_version),
                )
                self.state.record(collection, chunk.chunk_id, chunk.source_ref, chunk.content_hash)
                if is_new:
                    summary.added += 1
                else:
                    summary.updated += 1

    def _embed_with_retry(
        self,
        texts: List[str],
        summary: SyncSummary,
        cancel: Optional[CancellationToken],
    ) -> List[Vector]:
        attempt = 0
        while True:
            attempt += 1
            summary.embed_calls += 1
            try:
                return self.embedder.embed(texts, cancel=cancel)
            except EmbeddingError as exc:
                decision = evaluate_retry(attempt_index=attempt, policy=self.retry, timeout=exc.timeout)
                if not decision.should_retry:
                    raise
                logger.info(f"embedding attempt {attempt} failed ({decision.reason}); retrying in {decision.next_backoff_seconds}s")
                self._sleep(decision.next_backoff_seconds)
                check(cancel)

    def _finish(self, summary: SyncSummary, started: float) -> SyncSummary:
        summary.duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            f"sync {summary.collection}: added={summary.added} updated={summary.updated} "
            f"removed={summary.removed} skipped={summary.skipped} unchanged={summary.unchanged} "
            f"embed_calls={summary.embed_calls}",
            extra={"collection": summary.collection, "op": "sync"},
        )
        return summary


# ==============================
# Background sync
# ==============================


class BackgroundSync:
    """
    Runs syncs on one worker thread and reports completion by message.

    Consumers poll `drain()`; nothing in-process is shared with the query
    path except the index itself.
    """

    def __init__(self, indexer: Indexer, *, messages: Optional["queue.Queue"] = None) -> None:
        self.indexer = indexer
        self.messages: "queue.Queue" = messages if messages is not None else queue.Queue()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="sync")

    def submit(self, root_paths: Iterable[PathLike] = (), *, catalog: Optional[CommandCatalog] = None) -> Future:
        return self._executor.submit(self._run, list(root_paths), catalog)

    def _run(self, roots: List[PathLike], catalog: Optional[CommandCatalog]) -> List[SyncSummary]:
        summaries: List[SyncSummary] = []
        try:
            if catalog is not None:
                summaries.append(self.indexer.sync_commands(catalog))
            if roots:
                summaries.append(self.indexer.sync(roots))
        except Exception as exc:
            logger.error(f"background sync failed: {exc}", exc_info=True)
            self.messages.put(SyncFailed(error=str(exc)))
            raise
        self.messages.put(SyncCompleted(summaries=summaries))
        return summaries

    def drain(self) -> List[Union[SyncCompleted, SyncFailed]]:
        out: List[Union[SyncCompleted, SyncFailed]] = []
        while True:
            try:
                out.append(self.messages.get_nowait())
            except queue.Empty:
                return out

    def shutdown(self, *, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
