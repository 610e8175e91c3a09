# ==============================
# Command Dispatcher
# ==============================
"""
Maps a CommandInvocation's handler_ref to a handler and runs it.

Design:
- Dispatcher stores handler_ref -> handler callable.
- Handlers are registered at startup (built-ins via build_dispatcher).
- The resolver never executes commands; the orchestrator hands invocations here.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from intentchat.contracts.command_schema import CommandCatalog
from intentchat.contracts.errors import CommandNotFoundError
from intentchat.contracts.resolution_schema import CommandInvocation
from intentchat.memory.base import SessionStore


class CommandResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(...)
    message: str = Field(default="")
    reply: Optional[str] = Field(default=None, description="Assistant text produced by the command, if any")


@dataclass
class CommandContext:
    session_id: str
    store: SessionStore
    catalog: CommandCatalog
    # session_id -> assistant reply for the current history
    regenerate: Callable[[str], str]
    # (session_id, text) -> assistant reply, bypassing resolution
    ask: Callable[[str, str], str]
    read_input: Optional[Callable[[str], str]] = None
    extras: Dict[str, Any] = field(default_factory=dict)


CommandHandler = Callable[[CommandInvocation, CommandContext], CommandResult]


@dataclass(frozen=True)
class HandlerRegistration:
    handler_ref: str
    handler: CommandHandler
    meta: Dict[str, Any]


class CommandDispatcher:
    def __init__(self) -> None:
        self._handlers: Dict[str, HandlerRegistration] = {}

    def register(
        self,
        *,
        handler_ref: str,
        handler: CommandHandler,
        meta: Optional[Dict[str, Any]] = None,
        overwrite: bool = False,
    ) -> None:
        norm = _norm(handler_ref)
        if not overwrite and norm in self._handlers:
            raise ValueError(f"Handler already registered: {handler_ref}")
        self._handlers[norm] = HandlerRegistration(handler_ref=norm, handler=handler, meta=meta or {})

    def resolve(self, handler_ref: str) -> CommandHandler:
        reg = self._handlers.get(_norm(handler_ref))
        if reg is None:
            raise CommandNotFoundError(f"Unknown command handler: {handler_ref}")
        return reg.handler

    def has(self, handler_ref: str) -> bool:
        return _norm(handler_ref) in self._handlers

    def list(self) -> Dict[str, Dict[str, Any]]:
        return {k: {"handler_ref": v.handler_ref, "meta": v.meta} for k, v in self._handlers.items()}

    def dispatch(self, invocation: CommandInvocation, ctx: CommandContext) -> CommandResult:
        handler_ref = invocation.handler_ref
        if handler_ref is None:
            descriptor = ctx.catalog.get(invocation.name)
            if descriptor is None:
                raise CommandNotFoundError(f"Unknown command: {invocation.name}")
            handler_ref = descriptor.handler_ref
        return self.resolve(handler_ref)(invocation, ctx)


def build_dispatcher() -> CommandDispatcher:
    from intentchat.commands import builtin

    dispatcher = CommandDispatcher()
    dispatcher.register(handler_ref="builtin.retry", handler=builtin.retry, meta={"builtin": True})
    dispatcher.register(handler_ref="builtin.hint", handler=builtin.hint, meta={"builtin": True})
    dispatcher.register(handler_ref="builtin.system", handler=builtin.system, meta={"builtin": True})
    dispatcher.register(handler_ref="builtin.prompt", handler=builtin.prompt, meta={"builtin": True})
    return dispatcher


def _norm(name: str) -> str:
    return name.strip().lower().replace(" ", "_")
