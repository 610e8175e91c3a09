from __future__ import annotations

# ==============================
# Integration: index -> resolve -> answer
# ==============================

from pathlib import Path

import pytest

from intentchat.chat.runtime import Runtime
from intentchat.contracts.resolution_schema import ContextBundle
from tests.fakes import StubCompletionProvider

PROJECT = {
    "docs/deploy.md": "deploy the service with the release script after tagging\n",
    "docs/database.md": "the database migrations run with alembic upgrade head before the service starts\n",
    "src/cache.py": "def warm_cache():\n    return 'cache warmed at startup'\n",
}


@pytest.mark.integration
def test_most_relevant_file_ranks_first_and_reaches_the_prompt(
    runtime: Runtime, stub_provider: StubCompletionProvider, tmp_path: Path, write_files
) -> None:
    root = tmp_path / "project"
    write_files(root, PROJECT)
    first = runtime.indexer.sync([root])
    assert first.added == 3

    outcome = runtime.orchestrator.handle_turn("e2e", "how do database migrations run")

    bundle = outcome.resolution
    assert isinstance(bundle, ContextBundle)
    assert bundle.items, "expected retrieved context"
    assert bundle.items[0].source_ref.endswith("docs/database.md")
    scores = [i.score for i in bundle.items]
    assert scores == sorted(scores, reverse=True)
    assert bundle.total_token_budget_used <= runtime.settings.resolver.context_budget_tokens

    context_message = stub_provider.requests[0].messages[1]
    assert context_message.role == "system"
    assert "alembic upgrade head" in context_message.content


@pytest.mark.integration
def test_edit_then_resync_changes_what_is_retrieved(runtime: Runtime, tmp_path: Path, write_files) -> None:
    root = tmp_path / "project"
    paths = write_files(root, PROJECT)
    runtime.indexer.sync([root])

    paths["docs/deploy.md"].write_text("rollbacks use the previous image tag\n", encoding="utf-8")
    summary = runtime.indexer.sync([root])
    assert (summary.updated, summary.unchanged, summary.embed_calls) == (1, 2, 1)

    bundle = runtime.resolver.resolve("previous image tag rollbacks")
    assert isinstance(bundle, ContextBundle)
    assert bundle.items[0].source_ref.endswith("docs/deploy.md")
    assert "rollbacks" in bundle.items[0].text
