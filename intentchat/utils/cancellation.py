# ==============================
# Cooperative Cancellation
# ==============================
"""
Cancellation token checked between blocking calls.

A resolution in flight can be abandoned (user interrupt). Components check the
token before each backend/index call; nothing is persisted by a cancelled turn.
"""

from __future__ import annotations

import threading
from typing import Optional

from intentchat.contracts.errors import ResolutionCancelled


class CancellationToken:
    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled") -> None:
        self._reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ResolutionCancelled(self._reason or "cancelled")


def check(token: Optional[CancellationToken]) -> None:
    if token is not None:
        token.raise_if_cancelled()
