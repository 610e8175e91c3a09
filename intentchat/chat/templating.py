# ==============================
# Prompt Templating
# ==============================
"""
Template rendering for prompt payloads and prompt-style commands.

Placeholders use {{ name }} or {{ name.path }}; rendering is strict, so a
missing placeholder raises KeyError instead of sending a half-filled prompt.
"""

from __future__ import annotations

__all__ = ["render_template", "format_context"]

import json
import re
from typing import Any, Dict, Iterable, List

from intentchat.contracts.chunk_schema import QueryResultItem

_TOKEN_RE = re.compile(r"\{\{\s*([a-zA-Z_][\w\.]*)\s*\}\}")


def render_template(template: str, context: Dict[str, Any]) -> str:
    def replace(match: re.Match[str]) -> str:
        return _stringify(_resolve_path(context, match.group(1)))

    missing = _missing_keys(template, context)
    if missing:
        raise KeyError(f"Missing placeholders: {', '.join(sorted(missing))}")
    return _TOKEN_RE.sub(replace, template)


def format_context(items: Iterable[QueryResultItem]) -> str:
    """One block per retrieved chunk, headed by its source and line range."""
    blocks: List[str] = []
    for item in items:
        start = item.metadata.get("start_line")
        end = item.metadata.get("end_line")
        where = f"{item.source_ref}:{start}-{end}" if start and end else item.source_ref
        blocks.append(f"--- {where}\n{item.text}")
    return "\n\n".join(blocks)


def _missing_keys(template: str, context: Dict[str, Any]) -> List[str]:
    missing: List[str] = []
    for match in _TOKEN_RE.finditer(template):
        path = match.group(1)
        try:
            _resolve_path(context, path)
        except KeyError:
            missing.append(path)
    return missing


def _resolve_path(context: Dict[str, Any], path: str) -> Any:
    parts = path.split(".")
    root = parts[0]
    if root not in context:
        raise KeyError(path)
    current: Any = context[root]
    for part in parts[1:]:
        if isinstance(current, dict) and part in current:
            current = current[part]
        elif isinstance(current, list):
            try:
                idx = int(part)
            except ValueError as exc:
                raise KeyError(path) from exc
            if idx < 0 or idx >= len(current):
                raise KeyError(path)
            current = current[idx]
        else:
            raise KeyError(path)
    return current


def _stringify(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=True, default=str)
    return str(value)
