# ==============================
# Resolution Contracts
# ==============================
"""
Outcome of resolving one user turn.

Resolution is a tagged union discriminated on `kind`: exactly one of
CommandInvocation or ContextBundle is produced per turn.
"""

from __future__ import annotations

from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from intentchat.contracts.chunk_schema import QueryResultItem


class CommandInvocation(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kind: Literal["command"] = "command"
    name: str = Field(...)
    raw_args: str = Field(default="")
    handler_ref: Optional[str] = Field(default=None)
    score: Optional[float] = Field(default=None, description="Top probe score; None for an exact slash match")


class ContextBundle(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kind: Literal["context"] = "context"
    items: List[QueryResultItem] = Field(default_factory=list)
    total_token_budget_used: int = Field(default=0)
    degraded: bool = Field(default=False, description="Content retrieval failed; no augmentation")
    degraded_reason: Optional[str] = Field(default=None)

    def is_empty(self) -> bool:
        return not self.items


Resolution = Annotated[Union[CommandInvocation, ContextBundle], Field(discriminator="kind")]

RESOLUTION_ADAPTER: TypeAdapter = TypeAdapter(Resolution)


def parse_resolution(data: dict) -> Union[CommandInvocation, ContextBundle]:
    return RESOLUTION_ADAPTER.validate_python(data)
