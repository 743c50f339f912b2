"""Presence Coordinator: last-writer-wins presence, fed by explicit calls and live streams.

Invariants:
    - An update not strictly newer than the last observed one is discarded and not published
    - A user with at least one open event stream counts as online; the last stream
      closing publishes offline with last_seen_at = close time
"""

import logging
from collections import Counter
from datetime import datetime, timezone

from karmafarm.core.domain_types import RealtimeEventType
from karmafarm.core.presence import PresenceState, PresenceTracker
from karmafarm.core.realtime_events import presence_channel
from karmafarm.infrastructure.realtime import RealtimeHub

logger = logging.getLogger(__name__)


class PresenceCoordinator:
    def __init__(self, hub: RealtimeHub):
        self.hub = hub
        self.tracker = PresenceTracker()
        self._connections: Counter[str] = Counter()

    def set_online(
        self, user_id: str, at: datetime | None = None,
    ) -> tuple[PresenceState | None, bool]:
        return self._apply(user_id, True, at)

    def set_offline(
        self, user_id: str, last_seen_at: datetime | None = None,
    ) -> tuple[PresenceState | None, bool]:
        return self._apply(user_id, False, last_seen_at)

    def get(self, user_id: str) -> PresenceState | None:
        return self.tracker.get(user_id)

    def connected(self, user_id: str) -> None:
        self._connections[user_id] += 1
        if self._connections[user_id] == 1:
            self.set_online(user_id)

    def disconnected(self, user_id: str) -> None:
        if self._connections[user_id] <= 0:
            return
        self._connections[user_id] -= 1
        if self._connections[user_id] == 0:
            del self._connections[user_id]
            self.set_offline(user_id)

    def _apply(
        self, user_id: str, is_online: bool, at: datetime | None,
    ) -> tuple[PresenceState | None, bool]:
        """Returns (current state, whether this update was applied)."""
        at = _aware(at or datetime.now(timezone.utc))
        state = self.tracker.apply(user_id, is_online, at)
        if state is None:
            logger.debug("Stale presence update dropped", extra={"user_id": user_id})
            return self.tracker.get(user_id), False
        self.hub.publish(
            presence_channel(user_id), RealtimeEventType.PRESENCE, state.to_dict(),
        )
        return state, True


def _aware(at: datetime) -> datetime:
    return at if at.tzinfo else at.replace(tzinfo=timezone.utc)
