# ==============================
# Session Store Contracts
# ==============================
"""
The Session Store is the ONLY owner of the turn log.

Rules:
- append() is durable before it returns; failures raise SessionStoreError.
- load() of an unknown session returns an empty list.
- The log is append-only except for user-initiated edit/delete of the last turn
  and retry, which removes the reply it regenerates (delete_turn).
- Single writer per session. Concurrent appends from several processes are not
  supported and not guarded.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional

from intentchat.contracts.session_schema import Role, SessionSummary, Turn


class SessionStore(ABC):
    @abstractmethod
    def append(self, turn: Turn) -> None:
        raise NotImplementedError

    @abstractmethod
    def load(self, session_id: str) -> List[Turn]:
        raise NotImplementedError

    @abstractmethod
    def edit_last(self, session_id: str, new_text: str) -> Optional[Turn]:
        """
        Replace the text of the last turn. Returns the edited turn, or None
        when the session has no turns.
        """
        raise NotImplementedError

    @abstractmethod
    def delete_last(self, session_id: str, *, role: Optional[Role] = None) -> Optional[Turn]:
        """
        Remove the last turn (only if it has `role`, when given).
        Returns the removed turn or None.
        """
        raise NotImplementedError

    @abstractmethod
    def delete_turn(self, session_id: str, turn_id: str) -> Optional[Turn]:
        """Remove one turn by id. Returns the removed turn or None."""
        raise NotImplementedError

    @abstractmethod
    def list_sessions(self, *, limit: int = 50, offset: int = 0) -> List[SessionSummary]:
        raise NotImplementedError

    @abstractmethod
    def get_system_prompt(self, session_id: str) -> Optional[str]:
        raise NotImplementedError

    @abstractmethod
    def set_system_prompt(self, session_id: str, prompt: str) -> None:
        raise NotImplementedError

    def last_turn(self, session_id: str) -> Optional[Turn]:
        turns = self.load(session_id)
        return turns[-1] if turns else None

    # Optional hooks for durable backends so tooling/migrations can introspect.
    def ensure_schema(self) -> None:
        return None

    def get_schema_version(self) -> int:
        return 0
