# ==============================
# CLI Entrypoint
# ==============================
"""
CLI for intentchat.

Supported commands:
  intentchat chat --session work
  intentchat sync docs/ src/
  intentchat sync --commands-only
  intentchat resolve "summarize this file please"
  intentchat history --session work
  intentchat sessions
  intentchat edit-last --session work --text "corrected question"
  intentchat delete-last --session work

In chat, a leading "/" runs a command by name ("/hint be brief"); any other
line may still resolve to a command by intent.
"""

from __future__ import annotations

import argparse
import json
import sys
from concurrent.futures import ThreadPoolExecutor
from typing import Any, List, Optional

from intentchat.chat.orchestrator import TurnOutcome
from intentchat.chat.runtime import Runtime, build_runtime
from intentchat.config.loader import load_settings
from intentchat.contracts.errors import EmptyInputError, IntentChatError, ResolutionCancelled
from intentchat.logging.logger import bootstrap_logger
from intentchat.utils.cancellation import CancellationToken

EXIT_WORDS = {"/exit", "/quit"}


def _print_json(obj: Any) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False, default=str))


def _read_line(prompt: str) -> str:
    print(f"// {prompt}")
    return input("> ")


def _sync_roots(runtime: Runtime) -> List[str]:
    return [str(runtime.settings.resolve_path(p)) for p in runtime.settings.app.sync_roots]


def _render_outcome(outcome: TurnOutcome) -> None:
    if outcome.command_result is not None:
        print(f"// /{outcome.command_result.name}: {outcome.command_result.message}")
    if outcome.reply:
        print(outcome.reply)
    for msg in outcome.sync_messages:
        if msg.kind == "sync_failed":
            print(f"// background sync failed: {msg.error}")
        else:
            print("// index updated")


def _run_turn(runtime: Runtime, pool: ThreadPoolExecutor, session_id: str, text: str) -> None:
    token = CancellationToken()
    fut = pool.submit(runtime.orchestrator.handle_turn, session_id, text, cancel=token)
    try:
        outcome = fut.result()
    except KeyboardInterrupt:
        token.cancel("interrupted by user")
        try:
            outcome = fut.result()
        except ResolutionCancelled:
            print("// interrupted")
            return
    _render_outcome(outcome)


def cmd_chat(runtime: Runtime, *, session_id: str, sync: bool) -> int:
    settings = runtime.settings
    if sync:
        runtime.background.submit(_sync_roots(runtime), catalog=runtime.catalog)

    store = runtime.store
    if not store.load(session_id) and store.get_system_prompt(session_id) is None:
        prompt = _read_line("Enter the system prompt for this session below (blank for default):").strip()
        store.set_system_prompt(session_id, prompt or settings.app.system_prompt)

    print(f"// session {session_id}; /exit to leave")
    with ThreadPoolExecutor(max_workers=1, thread_name_prefix="turn") as pool:
        while True:
            try:
                line = input("> ")
            except (EOFError, KeyboardInterrupt):
                print()
                break
            if line.strip() in EXIT_WORDS:
                break
            try:
                _run_turn(runtime, pool, session_id, line)
            except EmptyInputError:
                continue
            except IntentChatError as exc:
                print(f"// error: {exc}")
    return 0


def cmd_sync(runtime: Runtime, *, paths: List[str], commands_only: bool) -> int:
    summaries = [runtime.indexer.sync_commands(runtime.catalog)]
    if not commands_only:
        roots = paths or _sync_roots(runtime)
        if roots:
            summaries.append(runtime.indexer.sync(roots))
    _print_json({"summaries": [s.model_dump() for s in summaries]})
    return 0 if all(s.ok for s in summaries) else 1


def cmd_resolve(runtime: Runtime, *, text: str) -> int:
    resolution = runtime.resolver.resolve(text)
    _print_json(resolution.model_dump(mode="json"))
    return 0


def cmd_history(runtime: Runtime, *, session_id: str) -> int:
    turns = runtime.store.load(session_id)
    _print_json({"session_id": session_id, "turns": [t.model_dump(mode="json") for t in turns]})
    return 0


def cmd_sessions(runtime: Runtime) -> int:
    _print_json({"sessions": [s.model_dump() for s in runtime.store.list_sessions(limit=100)]})
    return 0


def cmd_edit_last(runtime: Runtime, *, session_id: str, text: str) -> int:
    turn = runtime.store.edit_last(session_id, text)
    _print_json({"edited": turn.model_dump(mode="json") if turn else None})
    return 0 if turn else 1


def cmd_delete_last(runtime: Runtime, *, session_id: str) -> int:
    turn = runtime.store.delete_last(session_id)
    _print_json({"deleted": turn.model_dump(mode="json") if turn else None})
    return 0 if turn else 1


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(prog="intentchat")
    ap.add_argument("--repo-root", default=None, help="Override repo root for settings resolution.")
    ap.add_argument("--configs-dir", default=None, help="Override configs directory.")
    sub = ap.add_subparsers(dest="cmd", required=True)

    ap_chat = sub.add_parser("chat")
    ap_chat.add_argument("--session", default=None)
    ap_chat.add_argument("--no-sync", action="store_true", help="Skip background indexing of app.sync_roots")

    ap_sync = sub.add_parser("sync")
    ap_sync.add_argument("paths", nargs="*", help="Roots to index (default: app.sync_roots)")
    ap_sync.add_argument("--commands-only", action="store_true")

    ap_resolve = sub.add_parser("resolve")
    ap_resolve.add_argument("text")

    ap_history = sub.add_parser("history")
    ap_history.add_argument("--session", default=None)

    sub.add_parser("sessions")

    ap_edit = sub.add_parser("edit-last")
    ap_edit.add_argument("--session", default=None)
    ap_edit.add_argument("--text", required=True)

    ap_delete = sub.add_parser("delete-last")
    ap_delete.add_argument("--session", default=None)

    args = ap.parse_args(argv)

    settings_kwargs = {"repo_root": args.repo_root, "configs_dir": args.configs_dir}
    settings = load_settings(**{k: v for k, v in settings_kwargs.items() if v})
    bootstrap_logger(settings)
    runtime = build_runtime(settings, read_input=_read_line)
    session_id = getattr(args, "session", None) or settings.app.default_session

    try:
        if args.cmd == "chat":
            return cmd_chat(runtime, session_id=session_id, sync=not args.no_sync)
        if args.cmd == "sync":
            return cmd_sync(runtime, paths=args.paths, commands_only=args.commands_only)
        if args.cmd == "resolve":
            return cmd_resolve(runtime, text=args.text)
        if args.cmd == "history":
            return cmd_history(runtime, session_id=session_id)
        if args.cmd == "sessions":
            return cmd_sessions(runtime)
        if args.cmd == "edit-last":
            return cmd_edit_last(runtime, session_id=session_id, text=args.text)
        if args.cmd == "delete-last":
            return cmd_delete_last(runtime, session_id=session_id)
    except IntentChatError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2
    finally:
        runtime.close()

    raise SystemExit("Unknown command")


if __name__ == "__main__":
    raise SystemExit(main())
