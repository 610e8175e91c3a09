# ==============================
# Session Contracts
# ==============================
"""
Turns of a chat session, as persisted by the Session Store.
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from intentchat.contracts.resolution_schema import Resolution


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class Turn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    turn_id: str = Field(default_factory=lambda: f"turn_{uuid4().hex}")
    session_id: str = Field(...)
    role: Role = Field(...)
    text: str = Field(...)
    resolution_used: Optional[Resolution] = Field(default=None)
    timestamp: float = Field(default_factory=time.time)

    def as_message(self) -> dict:
        return {"role": self.role.value, "content": self.text}


class SessionSummary(BaseModel):
    model_config = ConfigDict(extra="forbid")

    session_id: str
    created_at: float
    turn_count: int = 0
    system_prompt: Optional[str] = None
