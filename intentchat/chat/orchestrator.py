# ==============================
# Chat Orchestrator
# ==============================
"""
Drives one user turn end to end.

Flow:
1) Drain background-sync messages (reindex complete / failed).
2) Resolve the turn. Any failure here leaves the Session Store untouched.
3a) CommandInvocation: persist the user turn with its resolution, then
    dispatch to the handler. Anything the handler writes follows the turn
    that caused it.
3b) ContextBundle: persist the user turn, build the prompt payload
    (system prompt, retrieved context, recent history, new text), call the
    completion service, persist the assistant turn.

Notes:
- User turns that resolved to commands are kept in the log but never sent to
  the completion service.
- The retrieved-context message is placed directly before the newest user
  message and rendered through completion.context_template.
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from intentchat.chat.templating import format_context, render_template
from intentchat.commands.dispatcher import CommandContext, CommandDispatcher, CommandResult, build_dispatcher
from intentchat.config.schema import Settings
from intentchat.contracts.command_schema import CommandCatalog
from intentchat.contracts.resolution_schema import CommandInvocation, ContextBundle
from intentchat.contracts.session_schema import Role, Turn
from intentchat.contracts.sync_schema import SyncCompleted, SyncFailed
from intentchat.knowledge.indexer import BackgroundSync
from intentchat.logging.logger import LogContext, with_context
from intentchat.memory.base import SessionStore
from intentchat.models.providers.completion_provider import ChatMessage, CompletionProvider, CompletionRequest
from intentchat.resolver.query_resolver import QueryResolver
from intentchat.utils.cancellation import CancellationToken, check

logger = logging.getLogger("intentchat.chat")

SyncMessage = Union[SyncCompleted, SyncFailed]


class TurnOutcome(BaseModel):
    model_config = ConfigDict(extra="forbid")

    session_id: str
    resolution: Union[CommandInvocation, ContextBundle] = Field(..., discriminator="kind")
    user_turn: Turn
    reply: Optional[str] = None
    command_result: Optional[CommandResult] = None
    sync_messages: List[Union[SyncCompleted, SyncFailed]] = Field(default_factory=list)


def _is_command_turn(turn: Turn) -> bool:
    return turn.role == Role.USER and isinstance(turn.resolution_used, CommandInvocation)


class ChatOrchestrator:
    def __init__(
        self,
        *,
        resolver: QueryResolver,
        store: SessionStore,
        provider: CompletionProvider,
        catalog: CommandCatalog,
        settings: Settings,
        dispatcher: Optional[CommandDispatcher] = None,
        background: Optional[BackgroundSync] = None,
        read_input: Optional[Callable[[str], str]] = None,
    ) -> None:
        self.resolver = resolver
        self.store = store
        self.provider = provider
        self.catalog = catalog
        self.settings = settings
        self.dispatcher = dispatcher or build_dispatcher()
        self.background = background
        self.read_input = read_input

    # ==============================
    # Turns
    # ==============================

    def handle_turn(
        self,
        session_id: str,
        text: str,
        *,
        cancel: Optional[CancellationToken] = None,
    ) -> TurnOutcome:
        sync_messages = self.poll_sync()
        log = with_context(logger, LogContext(session_id=session_id, op="turn"))

        resolution = self.resolver.resolve(text, cancel=cancel)
        check(cancel)
        user_turn = Turn(session_id=session_id, role=Role.USER, text=text.strip(), resolution_used=resolution)

        if isinstance(resolution, CommandInvocation):
            log.info(f"command {resolution.name} (score={resolution.score})")
            self.store.append(user_turn)
            result = self.dispatcher.dispatch(resolution, self._command_context(session_id))
            return TurnOutcome(
                session_id=session_id,
                resolution=resolution,
                user_turn=user_turn,
                reply=result.reply,
                command_result=result,
                sync_messages=sync_messages,
            )

        if resolution.degraded:
            log.warning(f"no context for this turn: {resolution.degraded_reason}")
        self.store.append(user_turn)
        reply = self._reply(session_id, cancel=cancel)
        return TurnOutcome(
            session_id=session_id,
            resolution=resolution,
            user_turn=user_turn,
            reply=reply,
            sync_messages=sync_messages,
        )

    def regenerate(self, session_id: str) -> Optional[str]:
        """
        Drop the last assistant reply (if no user turn follows it) and generate
        it again. Returns None when there is nothing to answer.

        Command turns and hints are skipped when looking for the reply, so
        repeated retries keep replacing the same answer.
        """
        conversation = [
            t for t in self.store.load(session_id) if t.role != Role.SYSTEM and not _is_command_turn(t)
        ]
        if conversation and conversation[-1].role == Role.ASSISTANT:
            self.store.delete_turn(session_id, conversation[-1].turn_id)
        if not any(t.role == Role.USER for t in conversation):
            return None
        return self._reply(session_id)

    def ask(self, session_id: str, text: str) -> str:
        """Send text as a user turn without resolving it (prompt commands)."""
        self.store.append(Turn(session_id=session_id, role=Role.USER, text=text))
        return self._reply(session_id)

    # ==============================
    # Prompt payload
    # ==============================

    def build_messages(self, session_id: str, turns: List[Turn]) -> List[ChatMessage]:
        system_prompt = self.store.get_system_prompt(session_id) or self.settings.app.system_prompt
        history = [t for t in turns if not _is_command_turn(t)]
        limit = self.settings.completion.history_turns
        if limit:
            history = history[-limit:]

        messages = [ChatMessage(role=Role.SYSTEM.value, content=system_prompt)]
        last_user = max((i for i, t in enumerate(history) if t.role == Role.USER), default=None)
        for i, turn in enumerate(history):
            if i == last_user:
                context = self._context_message(turn)
                if context is not None:
                    messages.append(context)
            messages.append(ChatMessage(**turn.as_message()))
        return messages

    def _context_message(self, turn: Turn) -> Optional[ChatMessage]:
        bundle = turn.resolution_used
        if not isinstance(bundle, ContextBundle) or bundle.is_empty():
            return None
        content = render_template(self.settings.completion.context_template, {"context": format_context(bundle.items)})
        return ChatMessage(role=Role.SYSTEM.value, content=content)

    def _reply(self, session_id: str, *, cancel: Optional[CancellationToken] = None) -> str:
        messages = self.build_messages(session_id, self.store.load(session_id))
        check(cancel)
        response = self.provider.complete(CompletionRequest(messages=messages))
        self.store.append(Turn(session_id=session_id, role=Role.ASSISTANT, text=response.output))
        return response.output

    def _command_context(self, session_id: str) -> CommandContext:
        return CommandContext(
            session_id=session_id,
            store=self.store,
            catalog=self.catalog,
            regenerate=self.regenerate,
            ask=self.ask,
            read_input=self.read_input,
        )

    # ==============================
    # Background sync
    # ==============================

    def poll_sync(self) -> List[SyncMessage]:
        if self.background is None:
            return []
        messages = self.background.drain()
        for msg in messages:
            if isinstance(msg, SyncFailed):
                logger.warning(f"background sync failed: {msg.error}", extra={"op": "sync"})
            else:
                for summary in msg.summaries:
                    logger.info(
                        f"reindex complete: {summary.collection} +{summary.added} ~{summary.updated} -{summary.removed}",
                        extra={"collection": summary.collection, "op": "sync"},
                    )
        return messages
