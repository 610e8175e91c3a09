from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import pytest

from intentchat.config.schema import ResolverConfig, Settings
from intentchat.contracts.chunk_schema import CollectionInfo, QueryResultItem
from intentchat.contracts.command_schema import CommandCatalog, CommandDescriptor
from intentchat.contracts.errors import (
    EmbeddingError,
    EmptyInputError,
    ResolutionCancelled,
    VectorIndexError,
)
from intentchat.contracts.resolution_schema import CommandInvocation, ContextBundle
from intentchat.knowledge.embedder import EmbedderAdapter
from intentchat.knowledge.indexer import Indexer
from intentchat.knowledge.sqlite_index import SqliteVectorIndex
from intentchat.knowledge.vector_index import VectorIndex
from intentchat.resolver.query_resolver import QueryResolver, estimate_tokens, split_slash_token
from intentchat.utils.cancellation import CancellationToken
from tests.fakes import DIM, BagOfWordsBackend


class _ScriptedIndex(VectorIndex):
    """Read-only index returning canned content hits."""

    def __init__(self, items: List[QueryResultItem], *, fail_on: Optional[str] = None) -> None:
        self.items = items
        self.fail_on = fail_on

    def _maybe_fail(self, name: str) -> None:
        if self.fail_on == name:
            raise VectorIndexError(f"{name} unreachable", collection=name)

    def ensure_collection(self, name: str, dimension: int, metric: str = "cosine") -> CollectionInfo:
        raise AssertionError("resolver must not create collections")

    def upsert(self, collection: str, chunk_id: str, vector: Sequence[float], metadata: Dict[str, Any]) -> None:
        raise AssertionError("resolver must not write")

    def delete(self, collection: str, chunk_id: str) -> None:
        raise AssertionError("resolver must not write")

    def query(self, collection: str, vector: Sequence[float], k: int, filters: Optional[Dict[str, Any]] = None) -> List[QueryResultItem]:
        self._maybe_fail(collection)
        return list(self.items[:k]) if collection == "content" else []

    def count(self, collection: str) -> int:
        return len(self.items) if collection == "content" else 0

    def collection_info(self, name: str) -> Optional[CollectionInfo]:
        self._maybe_fail(name)
        if name == "content":
            return CollectionInfo(name=name, dimension=DIM, metric="cosine", count=len(self.items))
        return CollectionInfo(name=name, dimension=DIM, metric="cosine", count=1)

    def drop_collection(self, name: str) -> None:
        raise AssertionError("resolver must not write")


def _items(n: int, chars: int) -> List[QueryResultItem]:
    return [
        QueryResultItem(chunk_id=f"c{i}", score=round(0.9 - i * 0.05, 2), source_ref=f"f{i}.txt", text="x" * chars)
        for i in range(n)
    ]


def test_intent_phrase_resolves_to_command(resolver: QueryResolver) -> None:
    result = resolver.resolve("summarize this file please")

    assert isinstance(result, CommandInvocation)
    assert result.name == "slash-summarize"
    assert result.handler_ref == "builtin.prompt"
    assert result.raw_args == "summarize this file please"
    assert result.score == pytest.approx(3 / (2 * 8 ** 0.5), abs=1e-4)


def test_unrelated_question_resolves_to_context(resolver: QueryResolver) -> None:
    result = resolver.resolve("what's the weather like")

    assert isinstance(result, ContextBundle)
    assert result.items == []
    assert result.degraded is False


def test_exact_slash_command_skips_embedding(resolver: QueryResolver, backend: BagOfWordsBackend) -> None:
    calls_before = backend.calls

    result = resolver.resolve("  /slash-translate hola mundo ")

    assert isinstance(result, CommandInvocation)
    assert result.name == "slash-translate"
    assert result.raw_args == "hola mundo"
    assert result.score is None
    assert backend.calls == calls_before


def test_close_scores_fall_back_to_context(
    settings: Settings, embedder: EmbedderAdapter, vector_index: SqliteVectorIndex, indexer: Indexer
) -> None:
    catalog = CommandCatalog.from_descriptors(
        [
            CommandDescriptor(name="alpha-report", description="generate the weekly report", handler_ref="builtin.prompt"),
            CommandDescriptor(name="beta-report", description="generate the monthly report", handler_ref="builtin.prompt"),
        ]
    )
    indexer.sync_commands(catalog)
    resolver = QueryResolver.from_settings(settings, embedder=embedder, index=vector_index, catalog=catalog)

    result = resolver.resolve("generate report")

    assert isinstance(result, ContextBundle)


def test_content_hits_above_threshold_are_returned(
    resolver: QueryResolver, indexer: Indexer, tmp_path: Path, write_files
) -> None:
    root = tmp_path / "project"
    write_files(
        root,
        {
            "setup.md": "install the toolchain then run the build script\n",
            "usage.md": "start a chat session and ask questions about files\n",
        },
    )
    indexer.sync([root])

    result = resolver.resolve("install toolchain build")

    assert isinstance(result, ContextBundle)
    assert [item.source_ref.rsplit("/", 1)[-1] for item in result.items] == ["setup.md"]
    assert result.total_token_budget_used == estimate_tokens(result.items[0].text, 4)


def test_context_is_cut_at_token_budget(embedder: EmbedderAdapter) -> None:
    index = _ScriptedIndex(_items(10, 40))
    config = ResolverConfig(k_ctx=10, content_threshold=0.2, context_budget_tokens=45, chars_per_token=4)
    resolver = QueryResolver(embedder=embedder, index=index, catalog=CommandCatalog(), config=config)

    result = resolver.resolve("anything at all")

    assert [i.chunk_id for i in result.items] == ["c0", "c1", "c2", "c3"]
    assert result.total_token_budget_used == 40


def test_items_below_content_threshold_are_dropped(embedder: EmbedderAdapter) -> None:
    index = _ScriptedIndex(_items(10, 4))
    config = ResolverConfig(k_ctx=10, content_threshold=0.75)
    resolver = QueryResolver(embedder=embedder, index=index, catalog=CommandCatalog(), config=config)

    result = resolver.resolve("anything")

    assert [i.score for i in result.items] == [0.9, 0.85, 0.8, 0.75]


def test_empty_command_catalog_never_yields_a_command(embedder: EmbedderAdapter) -> None:
    resolver = QueryResolver(embedder=embedder, index=_ScriptedIndex(_items(2, 8)), catalog=CommandCatalog())
    result = resolver.resolve("/retry")
    assert isinstance(result, ContextBundle)


def test_blank_input_is_rejected(resolver: QueryResolver) -> None:
    with pytest.raises(EmptyInputError):
        resolver.resolve("   \n\t")


def test_embedding_failure_is_surfaced_when_commands_exist(resolver: QueryResolver, backend: BagOfWordsBackend) -> None:
    backend.fail_next = 1
    with pytest.raises(EmbeddingError):
        resolver.resolve("summarize this file please")


def test_embedding_failure_degrades_without_commands(embedder: EmbedderAdapter, backend: BagOfWordsBackend) -> None:
    resolver = QueryResolver(embedder=embedder, index=_ScriptedIndex(_items(2, 8)), catalog=CommandCatalog())
    backend.fail_next = 1

    result = resolver.resolve("hello")

    assert isinstance(result, ContextBundle)
    assert result.degraded is True
    assert result.items == []


def test_content_index_failure_degrades(embedder: EmbedderAdapter, demo_catalog: CommandCatalog) -> None:
    index = _ScriptedIndex(_items(2, 8), fail_on="content")
    resolver = QueryResolver(embedder=embedder, index=index, catalog=demo_catalog)

    result = resolver.resolve("what's the weather like")

    assert isinstance(result, ContextBundle)
    assert result.degraded is True
    assert "content unreachable" in (result.degraded_reason or "")


def test_unreachable_commands_collection_is_fatal(embedder: EmbedderAdapter, demo_catalog: CommandCatalog) -> None:
    index = _ScriptedIndex(_items(2, 8), fail_on="commands")
    resolver = QueryResolver(embedder=embedder, index=index, catalog=demo_catalog)

    with pytest.raises(VectorIndexError):
        resolver.resolve("summarize this file please")


def test_cancelled_resolution_raises(resolver: QueryResolver) -> None:
    token = CancellationToken()
    token.cancel("user interrupt")
    with pytest.raises(ResolutionCancelled):
        resolver.resolve("summarize this file please", cancel=token)


def test_split_slash_token() -> None:
    assert split_slash_token("/Hint be brief") == ("hint", "be brief")
    assert split_slash_token("/retry") == ("retry", "")
    assert split_slash_token("plain text") == (None, "plain text")
    assert split_slash_token("/") == (None, "")
