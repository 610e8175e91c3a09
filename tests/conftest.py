# ==============================
# Testing Fixtures
# ==============================
from __future__ import annotations

import sys
from pathlib import Path
from typing import Callable, Dict, Iterator, List

import pytest

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from intentchat.config.schema import Settings
from intentchat.contracts.command_schema import CommandCatalog, CommandDescriptor
from intentchat.knowledge.embedder import EmbedderAdapter
from intentchat.knowledge.indexer import Indexer
from intentchat.knowledge.sqlite_index import SqliteVectorIndex
from intentchat.knowledge.sync_state import SyncStateStore
from intentchat.memory.in_memory import InMemorySessionStore
from intentchat.resolver.query_resolver import QueryResolver
from tests.fakes import DIM, BagOfWordsBackend, StubCompletionProvider


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings.model_validate(
        {
            "app": {"paths": {"repo_root": str(tmp_path), "storage_dir": "storage"}},
            "embedding": {
                "dimension": DIM,
                "query_prefix": "",
                "max_batch_size": 8,
                "max_wait_ms": 5,
                "timeout_seconds": 5,
                "retry_attempts": 3,
            },
            "resolver": {"command_threshold": 0.45, "margin": 0.05, "content_threshold": 0.2},
            "sessions": {"backend": "memory"},
            "logging": {"console": False},
        }
    )


@pytest.fixture
def backend() -> BagOfWordsBackend:
    return BagOfWordsBackend()


@pytest.fixture
def embedder(settings: Settings, backend: BagOfWordsBackend) -> Iterator[EmbedderAdapter]:
    adapter = EmbedderAdapter.from_settings(settings, backend=backend)
    yield adapter
    adapter.close()


@pytest.fixture
def vector_index(tmp_path: Path) -> SqliteVectorIndex:
    return SqliteVectorIndex(str(tmp_path / "index" / "vectors.sqlite"))


@pytest.fixture
def sync_state(tmp_path: Path) -> SyncStateStore:
    return SyncStateStore(str(tmp_path / "index" / "sync_state.sqlite"))


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def indexer(
    settings: Settings,
    embedder: EmbedderAdapter,
    vector_index: SqliteVectorIndex,
    sync_state: SyncStateStore,
    sleeps: List[float],
) -> Indexer:
    return Indexer.from_settings(
        settings,
        embedder=embedder,
        index=vector_index,
        state=sync_state,
        sleep_fn=sleeps.append,
    )


@pytest.fixture
def demo_catalog() -> CommandCatalog:
    return CommandCatalog.from_descriptors(
        [
            CommandDescriptor(
                name="slash-summarize",
                description="summarize the current file",
                handler_ref="builtin.prompt",
                prompt_template="Summarize:\n{{ args }}",
            ),
            CommandDescriptor(
                name="slash-translate",
                description="translate text to another language",
                handler_ref="builtin.prompt",
                prompt_template="Translate:\n{{ args }}",
            ),
        ]
    )


@pytest.fixture
def resolver(
    settings: Settings,
    embedder: EmbedderAdapter,
    vector_index: SqliteVectorIndex,
    indexer: Indexer,
    demo_catalog: CommandCatalog,
) -> QueryResolver:
    indexer.sync_commands(demo_catalog)
    return QueryResolver.from_settings(settings, embedder=embedder, index=vector_index, catalog=demo_catalog)


@pytest.fixture
def session_store() -> InMemorySessionStore:
    """In-memory session store for deterministic persistence during tests."""
    return InMemorySessionStore()


@pytest.fixture
def stub_provider() -> StubCompletionProvider:
    return StubCompletionProvider()


def _write_files(root: Path, files: Dict[str, str]) -> Dict[str, Path]:
    out: Dict[str, Path] = {}
    for rel, text in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        out[rel] = path
    return out


@pytest.fixture
def write_files() -> Callable[[Path, Dict[str, str]], Dict[str, Path]]:
    """Writes {relative_path: text} under a root and returns the paths."""
    return _write_files
