"""Retry Policy: which operations may be retried, and how long to wait.

Invariants:
    - Only IDEMPOTENT_OPERATIONS are ever retried automatically
    - State-moving operations (accept, complete, confirm, dispute) are never in the set:
      retrying them needs a re-derived expected state, which only the caller has
    - Backoff: exponential with +/-25% jitter, capped at max_delay_ms
    - Realtime reconnect: min(2^attempt, 30) seconds, at most MAX_RECONNECT_ATTEMPTS in a row
"""

import random

IDEMPOTENT_OPERATIONS: frozenset[str] = frozenset({
    "get_engagement",
    "list_engagements",
    "get_messages",
    "list_chats",
    "get_karma",
    "get_rating_summary",
    "settle",
    "typing",
    "presence",
    "mark_read",
    "join_chat",
    "leave_chat",
})

MAX_RECONNECT_ATTEMPTS: int = 5
MAX_RECONNECT_DELAY_SECONDS: float = 30.0


def is_idempotent(operation: str) -> bool:
    return operation in IDEMPOTENT_OPERATIONS


def backoff_ms(
    attempt: int, base_delay_ms: int = 500, max_delay_ms: int = 10_000, jitter: bool = True,
) -> int:
    """Exponential backoff with optional +/-25% jitter."""
    delay = min(max_delay_ms, (2 ** attempt) * base_delay_ms)
    if not jitter:
        return delay
    return int(delay * random.uniform(0.75, 1.25))  # nosec B311


def reconnect_delay_seconds(attempt: int) -> float:
    """Delay before reconnect attempt number `attempt` (1-based)."""
    return min(float(2 ** attempt), MAX_RECONNECT_DELAY_SECONDS)
