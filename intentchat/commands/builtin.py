# ==============================
# Built-in Commands
# ==============================
"""
Handlers for the built-in catalog entries.

- retry:  drop the last assistant turn and generate it again
- hint:   add a system-role turn steering future responses
- system: overwrite the session system prompt
- prompt: send a catalog-defined prompt template (custom commands)

hint/system take their text from the invocation's raw_args; when empty and the
caller supplied read_input, the user is asked for it.
"""

from __future__ import annotations

from intentchat.chat.templating import render_template
from intentchat.commands.dispatcher import CommandContext, CommandResult
from intentchat.contracts.resolution_schema import CommandInvocation
from intentchat.contracts.session_schema import Role, Turn


def _text_for(invocation: CommandInvocation, ctx: CommandContext, prompt: str) -> str:
    text = invocation.raw_args.strip()
    if not text and ctx.read_input is not None:
        text = ctx.read_input(prompt).strip()
    return text


def retry(invocation: CommandInvocation, ctx: CommandContext) -> CommandResult:
    reply = ctx.regenerate(ctx.session_id)
    return CommandResult(name=invocation.name, message="regenerated last response", reply=reply)


def hint(invocation: CommandInvocation, ctx: CommandContext) -> CommandResult:
    text = _text_for(invocation, ctx, "Enter your hint below:")
    if not text:
        return CommandResult(name=invocation.name, message="empty hint ignored")
    ctx.store.append(Turn(session_id=ctx.session_id, role=Role.SYSTEM, text=text))
    return CommandResult(name=invocation.name, message="hint added")


def system(invocation: CommandInvocation, ctx: CommandContext) -> CommandResult:
    text = _text_for(invocation, ctx, "Enter the new system prompt below:")
    if not text:
        return CommandResult(name=invocation.name, message="empty system prompt ignored")
    ctx.store.set_system_prompt(ctx.session_id, text)
    return CommandResult(name=invocation.name, message="system prompt replaced")


def prompt(invocation: CommandInvocation, ctx: CommandContext) -> CommandResult:
    descriptor = ctx.catalog.get(invocation.name)
    template = descriptor.prompt_template if descriptor is not None else None
    if not template:
        raise ValueError(f"command '{invocation.name}' has no prompt_template")
    text = render_template(template, {"args": invocation.raw_args, "name": invocation.name})
    reply = ctx.ask(ctx.session_id, text)
    return CommandResult(name=invocation.name, message="prompt sent", reply=reply)
