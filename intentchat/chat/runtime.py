# ==============================
# Runtime Wiring
# ==============================
"""
Builds the object graph once from Settings.

Ownership:
- Indexer (and BackgroundSync) is the only index writer.
- QueryResolver reads the same index.
- SessionRouter owns the turn log.

Every collaborator can be injected, which is how tests swap in a deterministic
embedding backend, an in-memory session store or a stub completion provider.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

from intentchat.chat.orchestrator import ChatOrchestrator
from intentchat.commands.catalog import load_catalog
from intentchat.config.schema import Settings
from intentchat.contracts.command_schema import CommandCatalog
from intentchat.knowledge.embedder import EmbedderAdapter, EmbeddingBackend
from intentchat.knowledge.indexer import BackgroundSync, Indexer
from intentchat.knowledge.sync_state import SyncStateStore
from intentchat.knowledge.vector_index import VectorIndex, build_vector_index
from intentchat.memory.base import SessionStore
from intentchat.memory.router import SessionRouter
from intentchat.models.providers.completion_provider import CompletionProvider
from intentchat.resolver.query_resolver import QueryResolver


@dataclass
class Runtime:
    settings: Settings
    catalog: CommandCatalog
    embedder: EmbedderAdapter
    index: VectorIndex
    indexer: Indexer
    background: BackgroundSync
    resolver: QueryResolver
    store: SessionStore
    orchestrator: ChatOrchestrator

    def close(self) -> None:
        self.background.shutdown(wait=True)
        self.embedder.close()
        self.index.close()


def build_runtime(
    settings: Settings,
    *,
    embedding_backend: Optional[EmbeddingBackend] = None,
    index: Optional[VectorIndex] = None,
    store: Optional[SessionStore] = None,
    provider: Optional[CompletionProvider] = None,
    catalog: Optional[CommandCatalog] = None,
    read_input: Optional[Callable[[str], str]] = None,
) -> Runtime:
    catalog = catalog if catalog is not None else load_catalog(settings)
    embedder = EmbedderAdapter.from_settings(settings, backend=embedding_backend)
    index = index or build_vector_index(settings)
    indexer = Indexer.from_settings(settings, embedder=embedder, index=index, state=SyncStateStore.from_settings(settings))
    background = BackgroundSync(indexer)
    resolver = QueryResolver.from_settings(settings, embedder=embedder, index=index, catalog=catalog)
    store = store or SessionRouter.from_settings(settings)
    orchestrator = ChatOrchestrator(
        resolver=resolver,
        store=store,
        provider=provider or CompletionProvider.from_settings(settings),
        catalog=catalog,
        settings=settings,
        background=background,
        read_input=read_input,
    )
    return Runtime(
        settings=settings,
        catalog=catalog,
        embedder=embedder,
        index=index,
        indexer=indexer,
        background=background,
        resolver=resolver,
        store=store,
        orchestrator=orchestrator,
    )
