# ==============================
# In-Memory Session Store (Dev)
# ==============================
"""
In-memory session store for local dev/testing.

Not durable. Deterministic. No file I/O.
"""

from __future__ import annotations

import time
from typing import Dict, List, Optional

from intentchat.contracts.session_schema import Role, SessionSummary, Turn
from intentchat.memory.base import SessionStore


class InMemorySessionStore(SessionStore):
    def __init__(self) -> None:
        self._turns: Dict[str, List[Turn]] = {}
        self._created: Dict[str, float] = {}
        self._prompts: Dict[str, str] = {}

    def _touch(self, session_id: str, ts: Optional[float] = None) -> None:
        self._created.setdefault(session_id, ts if ts is not None else time.time())

    def append(self, turn: Turn) -> None:
        self._touch(turn.session_id, turn.timestamp)
        self._turns.setdefault(turn.session_id, []).append(turn.model_copy(deep=True))

    def load(self, session_id: str) -> List[Turn]:
        return [t.model_copy(deep=True) for t in self._turns.get(session_id, [])]

    def edit_last(self, session_id: str, new_text: str) -> Optional[Turn]:
        turns = self._turns.get(session_id)
        if not turns:
            return None
        turns[-1] = turns[-1].model_copy(update={"text": new_text})
        return turns[-1].model_copy(deep=True)

    def delete_last(self, session_id: str, *, role: Optional[Role] = None) -> Optional[Turn]:
        turns = self._turns.get(session_id)
        if not turns:
            return None
        if role is not None and turns[-1].role != Role(role):
            return None
        return turns.pop()

    def delete_turn(self, session_id: str, turn_id: str) -> Optional[Turn]:
        turns = self._turns.get(session_id, [])
        for i, turn in enumerate(turns):
            if turn.turn_id == turn_id:
                return turns.pop(i)
        return None

    def list_sessions(self, *, limit: int = 50, offset: int = 0) -> List[SessionSummary]:
        out = [
            SessionSummary(
                session_id=sid,
                created_at=created,
                turn_count=len(self._turns.get(sid, [])),
                system_prompt=self._prompts.get(sid),
            )
            for sid, created in self._created.items()
        ]
        out.sort(key=lambda s: (-s.created_at, s.session_id))
        return out[offset : offset + limit]

    def get_system_prompt(self, session_id: str) -> Optional[str]:
        return self._prompts.get(session_id)

    def set_system_prompt(self, session_id: str, prompt: str) -> None:
        self._touch(session_id)
        self._prompts[session_id] = prompt
