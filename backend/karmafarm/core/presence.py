"""Presence Tracking: last-writer-wins online/last-seen state per user.

Invariants:
    - An update is applied only if its timestamp is strictly newer than the last
      one observed for that user; older or equal updates are discarded
    - Used on both sides of the wire: the server filters writes, clients filter
      out-of-order events from the stream
    - Presence is UI feedback only; no business rule reads it
"""

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class PresenceState:
    user_id: str
    is_online: bool
    last_seen_at: datetime

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "is_online": self.is_online,
            "last_seen_at": self.last_seen_at.isoformat(),
        }


class PresenceTracker:
    """In-memory LWW register keyed by user id."""

    def __init__(self) -> None:
        self._states: dict[str, PresenceState] = {}

    def apply(self, user_id: str, is_online: bool, at: datetime) -> PresenceState | None:
        """Apply update; returns the new state, or None if it was stale."""
        current = self._states.get(user_id)
        if current is not None and at <= current.last_seen_at:
            return None
        state = PresenceState(user_id=user_id, is_online=is_online, last_seen_at=at)
        self._states[user_id] = state
        return state

    def get(self, user_id: str) -> PresenceState | None:
        return self._states.get(user_id)
