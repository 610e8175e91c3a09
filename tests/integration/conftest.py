# ==============================
# Integration fixtures
# ==============================
from __future__ import annotations

from typing import Iterator

import pytest

from intentchat.chat.runtime import Runtime, build_runtime
from intentchat.commands.catalog import BUILTIN_COMMANDS
from intentchat.config.schema import Settings
from intentchat.contracts.command_schema import CommandCatalog
from intentchat.memory.in_memory import InMemorySessionStore
from tests.fakes import BagOfWordsBackend, StubCompletionProvider


@pytest.fixture
def full_catalog(demo_catalog: CommandCatalog) -> CommandCatalog:
    """Built-ins plus the demo prompt commands."""
    return CommandCatalog.from_descriptors(list(BUILTIN_COMMANDS) + list(demo_catalog.commands))


@pytest.fixture
def runtime(
    settings: Settings,
    backend: BagOfWordsBackend,
    session_store: InMemorySessionStore,
    stub_provider: StubCompletionProvider,
    full_catalog: CommandCatalog,
) -> Iterator[Runtime]:
    """
    Fully wired runtime on tmp storage: real Indexer, resolver and sqlite
    index; deterministic embedding backend and completion stub.
    """
    rt = build_runtime(
        settings,
        embedding_backend=backend,
        store=session_store,
        provider=stub_provider,
        catalog=full_catalog,
    )
    rt.indexer.sync_commands(full_catalog)
    yield rt
    rt.close()
