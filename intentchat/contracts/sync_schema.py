# ==============================
# Sync Contracts
# ==============================
"""
Indexer results and the messages background sync posts when it finishes.
"""

from __future__ import annotations

from typing import List, Literal

from pydantic import BaseModel, ConfigDict, Field


class SyncSummary(BaseModel):
    model_config = ConfigDict(extra="forbid")

    collection: str
    added: int = 0
    updated: int = 0
    removed: int = 0
    skipped: int = 0
    unchanged: int = 0
    embed_calls: int = 0
    reindexed: bool = False
    duration_ms: int = 0
    errors: List[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class SyncCompleted(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kind: Literal["sync_completed"] = "sync_completed"
    summaries: List[SyncSummary] = Field(default_factory=list)


class SyncFailed(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kind: Literal["sync_failed"] = "sync_failed"
    error: str
