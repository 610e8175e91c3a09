# ==============================
# Error Taxonomy
# ==============================
"""
Exceptions raised across intentchat.

Propagation:
- ChunkSourceError is isolated per source and aggregated into SyncSummary.
- EmbeddingError is retried on the indexing path, surfaced on the query path.
- VectorIndexError is fatal for the operation, never for the session.
- SessionStoreError is always surfaced to the user.

Command/content ambiguity is settled by the resolver's margin rule, so there is
no ambiguity exception.
"""

from __future__ import annotations

from typing import Optional


class IntentChatError(Exception):
    """Base class for every error raised by intentchat."""


class EmbeddingError(IntentChatError):
    """Embedding backend unavailable, timed out, or returned a malformed batch."""

    def __init__(self, message: str, *, timeout: bool = False) -> None:
        super().__init__(message)
        self.timeout = timeout


class VectorIndexError(IntentChatError):
    """Vector database unreachable or rejected the operation."""

    def __init__(self, message: str, *, collection: Optional[str] = None) -> None:
        super().__init__(message)
        self.collection = collection


class SchemaMismatchError(VectorIndexError):
    """Existing collection has a different dimension or metric than configured."""


class CollectionMismatchError(IntentChatError, ValueError):
    """A chunk was routed to the collection that does not hold its kind."""


class ChunkSourceError(IntentChatError):
    """A source could not be read or is not text."""

    def __init__(self, source_ref: str, reason: str) -> None:
        super().__init__(f"{source_ref}: {reason}")
        self.source_ref = source_ref
        self.reason = reason


class EmptyInputError(IntentChatError, ValueError):
    """User turn was empty after normalization."""


class ResolutionCancelled(IntentChatError):
    """Resolution was abandoned through its cancellation token."""


class SessionStoreError(IntentChatError):
    """Turn log could not be read or durably written."""


class CompletionError(IntentChatError):
    """Completion service unreachable or returned an unusable response."""


class CommandNotFoundError(IntentChatError, KeyError):
    """No handler is registered for a resolved command."""
