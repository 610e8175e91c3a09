# ==============================
# Retry Policy
# ==============================
"""
Retry/backoff policy for embedding calls on the indexing path.

This module is intentionally small and pure:
- No persistence
- No backend calls
- No environment reads

The query path never retries; it surfaces or degrades immediately.
"""

from __future__ import annotations

from dataclasses import dataclass

from intentchat.config.schema import Settings


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    backoff_seconds: float = 0.5
    multiplier: float = 2.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        cfg = settings.embedding
        return cls(
            max_attempts=cfg.retry_attempts,
            backoff_seconds=cfg.retry_backoff_seconds,
            multiplier=cfg.retry_backoff_multiplier,
        )


@dataclass(frozen=True)
class RetryDecision:
    """Result of evaluating whether a retry should occur."""
    should_retry: bool
    reason: str
    next_backoff_seconds: float


def evaluate_retry(*, attempt_index: int, policy: RetryPolicy, timeout: bool = False) -> RetryDecision:
    """
    Evaluate retry decision for a failed attempt.

    Parameters:
    - attempt_index: 1-based attempt number (1 = first attempt already executed)
    - policy: RetryPolicy
    - timeout: whether the failure was a timeout (retried like any other failure)

    Returns:
    - RetryDecision with exponential backoff
    """
    if attempt_index >= policy.max_attempts:
        return RetryDecision(False, "max_attempts_reached", 0.0)
    backoff = policy.backoff_seconds * (policy.multiplier ** (attempt_index - 1))
    return RetryDecision(True, "timeout" if timeout else "retry_allowed", float(backoff))
