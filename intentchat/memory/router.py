# ==============================
# Session Router
# ==============================
"""
Single Session Store interface used by the orchestrator, CLI and scripts.

Delegates every operation to the configured backend (sqlite or memory).
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

from intentchat.config.schema import Settings
from intentchat.contracts.session_schema import Role, SessionSummary, Turn
from intentchat.memory.base import SessionStore
from intentchat.memory.in_memory import InMemorySessionStore
from intentchat.memory.sqlite_backend import SQLiteSessionStore


def session_db_path(settings: Settings) -> Path:
    cfg = settings.sessions
    db_file = settings.resolve_path(cfg.db_path) if cfg.db_path else settings.storage_path() / "sessions.sqlite"
    db_file.parent.mkdir(parents=True, exist_ok=True)
    return db_file


class SessionRouter(SessionStore):
    def __init__(self, backend: SessionStore) -> None:
        self.backend = backend

    def append(self, turn: Turn) -> None:
        self.backend.append(turn)

    def load(self, session_id: str) -> List[Turn]:
        return self.backend.load(session_id)

    def edit_last(self, session_id: str, new_text: str) -> Optional[Turn]:
        return self.backend.edit_last(session_id, new_text)

    def delete_last(self, session_id: str, *, role: Optional[Role] = None) -> Optional[Turn]:
        return self.backend.delete_last(session_id, role=role)

    def delete_turn(self, session_id: str, turn_id: str) -> Optional[Turn]:
        return self.backend.delete_turn(session_id, turn_id)

    def list_sessions(self, *, limit: int = 50, offset: int = 0) -> List[SessionSummary]:
        return self.backend.list_sessions(limit=limit, offset=offset)

    def get_system_prompt(self, session_id: str) -> Optional[str]:
        return self.backend.get_system_prompt(session_id)

    def set_system_prompt(self, session_id: str, prompt: str) -> None:
        self.backend.set_system_prompt(session_id, prompt)

    def ensure_schema(self) -> None:
        self.backend.ensure_schema()

    def get_schema_version(self) -> int:
        return self.backend.get_schema_version()

    @classmethod
    def from_settings(cls, settings: Settings) -> "SessionRouter":
        if settings.sessions.backend == "memory":
            return cls(InMemorySessionStore())
        backend = SQLiteSessionStore(db_path=str(session_db_path(settings)))
        backend.ensure_schema()
        return cls(backend)
