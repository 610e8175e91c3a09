# ==============================
# Chunk Contracts
# ==============================
"""
Retrieval units and query results.

Intended usage:
- Chunker yields Chunk
- Indexer embeds Chunk.text and upserts into the collection for Chunk.kind
- VectorIndex.query returns QueryResultItem, ranked
"""

# ==============================
# Imports
# ==============================
from __future__ import annotations

import hashlib
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from intentchat.contracts.errors import CollectionMismatchError


# ==============================
# Enums
# ==============================
class ChunkKind(str, Enum):
    """What a chunk was derived from."""
    CONTENT = "content"
    COMMAND = "command"


class CollectionName(str, Enum):
    """The two logical collections of the index."""
    CONTENT = "content"
    COMMANDS = "commands"


_KIND_TO_COLLECTION = {
    ChunkKind.CONTENT: CollectionName.CONTENT,
    ChunkKind.COMMAND: CollectionName.COMMANDS,
}


def collection_for(kind: ChunkKind) -> CollectionName:
    return _KIND_TO_COLLECTION[ChunkKind(kind)]


def check_collection(kind: ChunkKind, collection: CollectionName) -> None:
    """Raise CollectionMismatchError when a chunk is routed to the wrong collection."""
    expected = collection_for(kind)
    if CollectionName(collection) is not expected:
        raise CollectionMismatchError(
            f"{ChunkKind(kind).value} chunks belong in '{expected.value}', not '{CollectionName(collection).value}'"
        )


# ==============================
# Identity helpers
# ==============================
def make_chunk_id(kind: ChunkKind, source_ref: str, offset: int) -> str:
    raw = f"{ChunkKind(kind).value}:{source_ref}:{offset}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def content_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


# ==============================
# Models
# ==============================
class Chunk(BaseModel):
    """A retrievable unit with a stable id derived from source + offset."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    chunk_id: str = Field(...)
    source_ref: str = Field(..., description="Source path or command:<name>")
    text: str = Field(...)
    kind: ChunkKind = Field(...)
    content_hash: str = Field(...)
    source_mtime: float = Field(default=0.0)
    start_line: Optional[int] = Field(default=None, description="1-based first line (files only)")
    end_line: Optional[int] = Field(default=None, description="1-based last line, inclusive")

    @classmethod
    def build(
        cls,
        *,
        kind: ChunkKind,
        source_ref: str,
        offset: int,
        text: str,
        source_mtime: float = 0.0,
        start_line: Optional[int] = None,
        end_line: Optional[int] = None,
    ) -> "Chunk":
        return cls(
            chunk_id=make_chunk_id(kind, source_ref, offset),
            source_ref=source_ref,
            text=text,
            kind=kind,
            content_hash=content_hash(text),
            source_mtime=source_mtime,
            start_line=start_line,
            end_line=end_line,
        )

    def index_metadata(self, *, model_version: str) -> Dict[str, Any]:
        """Payload stored next to the vector."""
        return {
            "source_ref": self.source_ref,
            "text": self.text,
            "kind": self.kind.value,
            "content_hash": self.content_hash,
            "source_mtime": self.source_mtime,
            "start_line": self.start_line,
            "end_line": self.end_line,
            "model_version": model_version,
        }


class Embedding(BaseModel):
    """A chunk's vector, tagged with the model that produced it."""
    model_config = ConfigDict(extra="forbid")

    chunk_id: str
    vector: List[float]
    model_version: str

    @property
    def dimension(self) -> int:
        return len(self.vector)


class QueryResultItem(BaseModel):
    """One ranked hit. Ordering: score desc, source_mtime desc, chunk_id asc."""
    model_config = ConfigDict(extra="forbid")

    chunk_id: str
    score: float
    source_ref: str
    text: str = ""
    source_mtime: float = 0.0
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def sort_key(self) -> tuple:
        return (-self.score, -self.source_mtime, self.chunk_id)


class CollectionInfo(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    dimension: int
    metric: str
    count: int = 0
