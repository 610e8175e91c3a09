# ==============================
# Command Catalog Loader
# ==============================
"""
Build the CommandCatalog once at startup.

Sources (merged, duplicates rejected):
- Built-in commands (retry, hint, system) unless commands.include_builtin is off.
- configs/command_catalog.yaml (or commands.catalog_file), shape:

    commands:
      - name: summarize
        description: summarize the current file
        handler_ref: builtin.prompt
        prompt_template: "Summarize the following:\\n{{ args }}"
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List

import yaml

from intentchat.config.schema import Settings
from intentchat.contracts.command_schema import CommandCatalog, CommandDescriptor

BUILTIN_COMMANDS = (
    CommandDescriptor(
        name="retry",
        description="delete the last assistant response and regenerate it again, or retry the last response",
        handler_ref="builtin.retry",
    ),
    CommandDescriptor(
        name="hint",
        description=(
            "add a message in the system role, further clarifying how the assistant should behave, "
            "or providing a suggestion for future responses."
        ),
        handler_ref="builtin.hint",
    ),
    CommandDescriptor(
        name="system",
        description="Overwrite the system prompt with a new one.",
        handler_ref="builtin.system",
    ),
)


def _catalog_path(settings: Settings) -> Path:
    if settings.commands.catalog_file:
        return settings.resolve_path(settings.commands.catalog_file)
    return settings.resolve_path(settings.app.paths.configs_dir) / "command_catalog.yaml"


def read_catalog_file(path: Path) -> List[CommandDescriptor]:
    if not path.exists():
        return []
    raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"Command catalog must be a mapping: {path}")
    entries: List[Dict[str, Any]] = raw.get("commands") or []
    if not isinstance(entries, list):
        raise ValueError(f"'commands' must be a list in {path}")
    return [CommandDescriptor.model_validate(e) for e in entries]


def load_catalog(settings: Settings) -> CommandCatalog:
    descriptors: List[CommandDescriptor] = []
    if settings.commands.include_builtin:
        descriptors.extend(BUILTIN_COMMANDS)
    descriptors.extend(read_catalog_file(_catalog_path(settings)))
    return CommandCatalog.from_descriptors(descriptors)
