"""Realtime Events: the typed envelope fanned out to subscribers, and its ordering filter.

Invariants:
    - Every event carries (channel, sequence); sequence is strictly increasing per channel
    - SequenceFilter accepts an event only if its sequence is greater than the last
      accepted one on that channel: duplicates and late arrivals are dropped
    - A RESYNC event carries no entity data, only the channel head; receivers must
      re-fetch, and continue from that head

Design Decisions:
    - Frozen dataclass, not a Pydantic model: hub and client both build and compare
      these in hot paths, and serialization is a plain dict
    - The SSE id of a merged stream is a cursor holding every channel position
      ("<channel>#<seq>|..."), so Last-Event-ID alone resumes all channels
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from karmafarm.core.domain_types import RealtimeEventType


@dataclass(frozen=True)
class RealtimeEvent:
    type: RealtimeEventType
    channel: str
    sequence: int
    data: dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "channel": self.channel,
            "sequence": self.sequence,
            "data": self.data,
            "occurred_at": self.occurred_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "RealtimeEvent":
        return cls(
            type=RealtimeEventType(payload["type"]),
            channel=payload["channel"],
            sequence=int(payload["sequence"]),
            data=payload.get("data") or {},
            occurred_at=datetime.fromisoformat(payload["occurred_at"]),
        )


def encode_cursor(positions: dict[str, int]) -> str:
    """Stream cursor: "<channel>#<sequence>" pairs joined by "|", sorted by channel."""
    return "|".join(f"{ch}#{seq}" for ch, seq in sorted(positions.items()))


def decode_cursor(cursor: str | None) -> dict[str, int]:
    """Inverse of encode_cursor; malformed parts are skipped."""
    positions: dict[str, int] = {}
    if not cursor:
        return positions
    for part in cursor.split("|"):
        channel, sep, seq = part.rpartition("#")
        if sep and channel and seq.isdigit():
            positions[channel] = int(seq)
    return positions


def chat_channel(chat_id: object) -> str:
    return f"chat:{chat_id}"


def user_channel(user_id: str) -> str:
    return f"user:{user_id}"


def presence_channel(user_id: str) -> str:
    return f"presence:{user_id}"


class SequenceFilter:
    """Per-channel high-water mark; drops duplicate and out-of-order events."""

    def __init__(self, positions: dict[str, int] | None = None) -> None:
        self._last: dict[str, int] = dict(positions or {})

    def accept(self, event: RealtimeEvent) -> bool:
        if event.type == RealtimeEventType.RESYNC:
            self._last[event.channel] = int(event.data.get("head", 0))
            return True
        last = self._last.get(event.channel, 0)
        if event.sequence <= last:
            return False
        self._last[event.channel] = event.sequence
        return True

    def position(self, channel: str) -> int:
        return self._last.get(channel, 0)

    def positions(self) -> dict[str, int]:
        return dict(self._last)
