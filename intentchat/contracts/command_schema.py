# ==============================
# Command Contracts
# ==============================
"""
Command descriptors and the catalog value threaded through Indexer and resolver.

The catalog is an explicitly constructed value, never ambient state. Its
content_hash changes whenever any descriptor changes, which is how the Indexer
detects drift and decides to re-embed the commands collection.
"""

from __future__ import annotations

import hashlib
import json
from typing import Dict, Iterable, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


def normalize_command_name(name: str) -> str:
    return name.strip().lstrip("/").strip().lower().replace(" ", "_")


class CommandDescriptor(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str = Field(..., description="Stable command name, used after a leading slash")
    description: str = Field(..., description="Natural-language description; embedded for intent matching")
    handler_ref: str = Field(..., description="Identifier resolved by the command dispatcher")
    prompt_template: Optional[str] = Field(
        default=None,
        description="For prompt commands: message sent to the model, with {{ args }} placeholder",
    )

    @field_validator("name")
    @classmethod
    def _normalize_name(cls, v: str) -> str:
        norm = normalize_command_name(v)
        if not norm:
            raise ValueError("command name must not be empty")
        return norm

    @field_validator("description")
    @classmethod
    def _require_description(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("command description must not be empty")
        return v.strip()

    def embedding_text(self) -> str:
        return f"{self.name}: {self.description}"


class CommandCatalog(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    commands: Tuple[CommandDescriptor, ...] = Field(default_factory=tuple)
    content_hash: str = Field(default="")

    @classmethod
    def from_descriptors(cls, descriptors: Iterable[CommandDescriptor]) -> "CommandCatalog":
        by_name: Dict[str, CommandDescriptor] = {}
        for d in descriptors:
            if d.name in by_name:
                raise ValueError(f"Command already registered: {d.name}")
            by_name[d.name] = d
        ordered = tuple(by_name[n] for n in sorted(by_name))
        return cls(commands=ordered, content_hash=_catalog_hash(ordered))

    def get(self, name: str) -> Optional[CommandDescriptor]:
        norm = normalize_command_name(name)
        for d in self.commands:
            if d.name == norm:
                return d
        return None

    def names(self) -> Tuple[str, ...]:
        return tuple(d.name for d in self.commands)

    def is_empty(self) -> bool:
        return not self.commands


def _catalog_hash(commands: Tuple[CommandDescriptor, ...]) -> str:
    payload = [d.model_dump() for d in commands]
    raw = json.dumps(payload, sort_keys=True, ensure_ascii=False)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()
