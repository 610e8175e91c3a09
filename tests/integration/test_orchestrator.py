from __future__ import annotations

# ==============================
# Integration: Chat Orchestrator
# ==============================

from pathlib import Path

import pytest

from intentchat.chat.runtime import Runtime
from intentchat.contracts.errors import EmbeddingError, EmptyInputError, ResolutionCancelled
from intentchat.contracts.resolution_schema import CommandInvocation, ContextBundle
from intentchat.contracts.session_schema import Role
from intentchat.contracts.sync_schema import SyncCompleted
from intentchat.utils.cancellation import CancellationToken
from tests.fakes import BagOfWordsBackend, StubCompletionProvider

SESSION = "work"


def _roles(runtime: Runtime):
    return [(t.role, t.text) for t in runtime.store.load(SESSION)]


@pytest.mark.integration
def test_chat_turn_persists_user_and_assistant(runtime: Runtime, stub_provider: StubCompletionProvider) -> None:
    stub_provider.replies = ["It is sunny."]

    outcome = runtime.orchestrator.handle_turn(SESSION, "what's the weather like")

    assert isinstance(outcome.resolution, ContextBundle)
    assert outcome.reply == "It is sunny."
    assert _roles(runtime) == [(Role.USER, "what's the weather like"), (Role.ASSISTANT, "It is sunny.")]
    (request,) = stub_provider.requests
    assert [(m.role, m.content) for m in request.messages] == [
        ("system", runtime.settings.app.system_prompt),
        ("user", "what's the weather like"),
    ]


@pytest.mark.integration
def test_retrieved_context_precedes_the_new_user_message(
    runtime: Runtime, stub_provider: StubCompletionProvider, tmp_path: Path, write_files
) -> None:
    root = tmp_path / "project"
    write_files(root, {"setup.md": "install the toolchain then run the build script\n"})
    runtime.indexer.sync([root])

    outcome = runtime.orchestrator.handle_turn(SESSION, "install toolchain build")

    assert isinstance(outcome.resolution, ContextBundle)
    assert len(outcome.resolution.items) == 1
    roles = [m.role for m in stub_provider.requests[0].messages]
    assert roles == ["system", "system", "user"]
    context = stub_provider.requests[0].messages[1].content
    assert context.startswith("Relevant local context:")
    assert "setup.md:1-1" in context
    assert "install the toolchain" in context
    # the stored user turn remembers what was retrieved
    stored = runtime.store.load(SESSION)[0]
    assert isinstance(stored.resolution_used, ContextBundle)
    assert stored.resolution_used.items[0].chunk_id == outcome.resolution.items[0].chunk_id


@pytest.mark.integration
def test_history_is_sent_in_order(runtime: Runtime, stub_provider: StubCompletionProvider) -> None:
    stub_provider.replies = ["first", "second"]
    runtime.orchestrator.handle_turn(SESSION, "hello there")
    runtime.orchestrator.handle_turn(SESSION, "tell me more")

    contents = [m.content for m in stub_provider.requests[1].messages]
    assert contents[1:] == ["hello there", "first", "tell me more"]


@pytest.mark.integration
def test_hint_adds_system_turn_without_calling_the_model(runtime: Runtime, stub_provider: StubCompletionProvider) -> None:
    outcome = runtime.orchestrator.handle_turn(SESSION, "/hint answer in French")

    assert isinstance(outcome.resolution, CommandInvocation)
    assert outcome.command_result.message == "hint added"
    assert stub_provider.requests == []
    assert _roles(runtime) == [(Role.USER, "/hint answer in French"), (Role.SYSTEM, "answer in French")]

    runtime.orchestrator.handle_turn(SESSION, "hello there")

    messages = [(m.role, m.content) for m in stub_provider.requests[0].messages]
    assert messages[1:] == [("system", "answer in French"), ("user", "hello there")]


@pytest.mark.integration
def test_system_command_replaces_the_system_prompt(runtime: Runtime, stub_provider: StubCompletionProvider) -> None:
    runtime.orchestrator.handle_turn(SESSION, "/system You are terse.")
    runtime.orchestrator.handle_turn(SESSION, "hello there")

    assert runtime.store.get_system_prompt(SESSION) == "You are terse."
    assert stub_provider.requests[0].messages[0].content == "You are terse."


@pytest.mark.integration
def test_retry_replaces_the_last_reply(runtime: Runtime, stub_provider: StubCompletionProvider) -> None:
    stub_provider.replies = ["first answer", "second answer"]
    runtime.orchestrator.handle_turn(SESSION, "what's the weather like")

    outcome = runtime.orchestrator.handle_turn(SESSION, "/retry")

    assert outcome.reply == "second answer"
    assert _roles(runtime) == [
        (Role.USER, "what's the weather like"),
        (Role.USER, "/retry"),
        (Role.ASSISTANT, "second answer"),
    ]
    retried = [(m.role, m.content) for m in stub_provider.requests[1].messages]
    assert retried[1:] == [("user", "what's the weather like")]


@pytest.mark.integration
def test_consecutive_retries_keep_only_the_newest_reply(
    runtime: Runtime, stub_provider: StubCompletionProvider
) -> None:
    stub_provider.replies = ["first", "second", "third"]
    runtime.orchestrator.handle_turn(SESSION, "what's the weather like")

    runtime.orchestrator.handle_turn(SESSION, "/retry")
    outcome = runtime.orchestrator.handle_turn(SESSION, "/retry")

    assert outcome.reply == "third"
    assert _roles(runtime) == [
        (Role.USER, "what's the weather like"),
        (Role.USER, "/retry"),
        (Role.USER, "/retry"),
        (Role.ASSISTANT, "third"),
    ]
    for request in stub_provider.requests[1:]:
        assert [(m.role, m.content) for m in request.messages][1:] == [("user", "what's the weather like")]


@pytest.mark.integration
def test_retry_after_hint_replaces_the_reply_and_keeps_the_hint(
    runtime: Runtime, stub_provider: StubCompletionProvider
) -> None:
    stub_provider.replies = ["first", "second"]
    runtime.orchestrator.handle_turn(SESSION, "what's the weather like")
    runtime.orchestrator.handle_turn(SESSION, "/hint be brief")

    outcome = runtime.orchestrator.handle_turn(SESSION, "/retry")

    assert outcome.reply == "second"
    assert [text for role, text in _roles(runtime) if role == Role.ASSISTANT] == ["second"]
    retried = [(m.role, m.content) for m in stub_provider.requests[1].messages]
    assert retried[1:] == [("user", "what's the weather like"), ("system", "be brief")]


@pytest.mark.integration
def test_intent_resolves_to_prompt_command(runtime: Runtime, stub_provider: StubCompletionProvider) -> None:
    stub_provider.replies = ["a short summary"]

    outcome = runtime.orchestrator.handle_turn(SESSION, "summarize this file please")

    assert isinstance(outcome.resolution, CommandInvocation)
    assert outcome.resolution.name == "slash-summarize"
    assert outcome.reply == "a short summary"
    assert _roles(runtime) == [
        (Role.USER, "summarize this file please"),
        (Role.USER, "Summarize:\nsummarize this file please"),
        (Role.ASSISTANT, "a short summary"),
    ]


@pytest.mark.integration
def test_blank_turn_persists_nothing(runtime: Runtime) -> None:
    with pytest.raises(EmptyInputError):
        runtime.orchestrator.handle_turn(SESSION, "   ")
    assert runtime.store.load(SESSION) == []


@pytest.mark.integration
def test_resolution_failure_persists_nothing(runtime: Runtime, backend: BagOfWordsBackend) -> None:
    backend.fail_next = 1
    with pytest.raises(EmbeddingError):
        runtime.orchestrator.handle_turn(SESSION, "what's the weather like")
    assert runtime.store.load(SESSION) == []


@pytest.mark.integration
def test_cancelled_turn_persists_nothing(runtime: Runtime, stub_provider: StubCompletionProvider) -> None:
    token = CancellationToken()
    token.cancel("user interrupt")
    with pytest.raises(ResolutionCancelled):
        runtime.orchestrator.handle_turn(SESSION, "what's the weather like", cancel=token)
    assert runtime.store.load(SESSION) == []
    assert stub_provider.requests == []


@pytest.mark.integration
def test_background_sync_completion_is_reported_on_next_turn(
    runtime: Runtime, full_catalog, tmp_path: Path, write_files
) -> None:
    root = tmp_path / "project"
    write_files(root, {"notes.md": "remember to water the plants\n"})
    runtime.background.submit([root], catalog=full_catalog).result(timeout=30)

    outcome = runtime.orchestrator.handle_turn(SESSION, "hello there")
    follow_up = runtime.orchestrator.handle_turn(SESSION, "hello again")

    (message,) = outcome.sync_messages
    assert isinstance(message, SyncCompleted)
    assert [s.collection for s in message.summaries] == ["commands", "content"]
    assert message.summaries[0].embed_calls == 0
    assert follow_up.sync_messages == []
