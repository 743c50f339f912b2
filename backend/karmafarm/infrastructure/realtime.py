"""Realtime Hub: in-process channel fan-out with per-channel sequencing and replay.

Invariants:
    - publish() never blocks and never awaits: typing/presence emission is fire-and-forget
    - Each channel has a strictly increasing sequence, assigned at publish time
    - A slow subscriber never slows the publisher: on queue overflow its backlog is
      dropped and one RESYNC per subscribed channel is queued instead
    - subscribe(since=...) replays buffered events newer than the given positions;
      if the buffer no longer reaches back that far (or the position is from a previous
      process), a RESYNC carrying the channel head is queued instead
    - Closed subscriptions end their async iteration and receive nothing further

Design Decisions:
    - In-memory, single-process hub (same deployment model as the rest of the service:
      one uvicorn worker); a broker-backed hub can replace it behind the same methods
    - Bounded replay buffer per channel (deque maxlen): reconnects inside the window
      are gap-free, anything older falls back to a full re-fetch by the client
"""

import asyncio
import logging
import uuid
from collections import defaultdict, deque
from collections.abc import Iterable
from typing import Any

from karmafarm.core.domain_types import RealtimeEventType
from karmafarm.core.realtime_events import RealtimeEvent

logger = logging.getLogger(__name__)


class Subscription:
    """Cancellable handle over a merged stream of one or more channels."""

    def __init__(self, hub: "RealtimeHub", channels: Iterable[str], queue_size: int):
        self.id = uuid.uuid4().hex
        self.channels = frozenset(channels)
        self._hub = hub
        self._queue: asyncio.Queue[RealtimeEvent | None] = asyncio.Queue(
            maxsize=max(queue_size, len(self.channels) + 1),
        )
        self._closed = False
        self.lagged = False

    @property
    def closed(self) -> bool:
        return self._closed

    def offer(self, event: RealtimeEvent) -> None:
        """Enqueue without blocking; overflow collapses the backlog into a RESYNC."""
        if self._closed:
            return
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self._drain()
            self.lagged = True
            logger.warning(
                "Subscriber lagged, backlog dropped",
                extra={"channel": event.channel},
            )
            for channel in sorted(self.channels):
                self._queue.put_nowait(
                    _resync(channel, "lagged", self._hub.head(channel)),
                )

    async def get(self, timeout: float | None = None) -> RealtimeEvent | None:
        """Next event, or None on timeout or when closed."""
        if self._closed and self._queue.empty():
            return None
        try:
            if timeout is None:
                return await self._queue.get()
            return await asyncio.wait_for(self._queue.get(), timeout)
        except asyncio.TimeoutError:
            return None

    def close(self) -> None:
        self._hub.unsubscribe(self)

    def _mark_closed(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._drain()
        self._queue.put_nowait(None)

    def _drain(self) -> None:
        while not self._queue.empty():
            self._queue.get_nowait()

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> RealtimeEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event


class RealtimeHub:
    """Publishes committed mutations to every subscriber of a channel."""

    def __init__(self, queue_size: int = 256, replay_size: int = 200):
        self.queue_size = queue_size
        self.replay_size = replay_size
        self._subscribers: dict[str, set[Subscription]] = defaultdict(set)
        self._sequences: dict[str, int] = defaultdict(int)
        self._replay: dict[str, deque[RealtimeEvent]] = {}

    def publish(
        self, channel: str, event_type: RealtimeEventType, data: dict[str, Any],
    ) -> RealtimeEvent:
        self._sequences[channel] += 1
        event = RealtimeEvent(
            type=event_type,
            channel=channel,
            sequence=self._sequences[channel],
            data=data,
        )
        buffer = self._replay.get(channel)
        if buffer is None:
            buffer = self._replay[channel] = deque(maxlen=self.replay_size)
        buffer.append(event)
        for sub in list(self._subscribers.get(channel, ())):
            sub.offer(event)
        return event

    def subscribe(
        self, channels: Iterable[str], since: dict[str, int] | None = None,
    ) -> Subscription:
        sub = Subscription(self, channels, self.queue_size)
        for channel in sub.channels:
            self._subscribers[channel].add(sub)
        for channel, position in (since or {}).items():
            if channel in sub.channels:
                self._replay_into(sub, channel, position)
        logger.debug(
            "Subscribed %s to %d channel(s)", sub.id, len(sub.channels),
        )
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        for channel in sub.channels:
            subscribers = self._subscribers.get(channel)
            if subscribers is not None:
                subscribers.discard(sub)
                if not subscribers:
                    del self._subscribers[channel]
        sub._mark_closed()

    def head(self, channel: str) -> int:
        """Last sequence published on channel (0 if none)."""
        return self._sequences.get(channel, 0)

    def close(self) -> None:
        """Shutdown: end every open subscription."""
        subs = {s for group in self._subscribers.values() for s in group}
        for sub in subs:
            self.unsubscribe(sub)

    def _replay_into(self, sub: Subscription, channel: str, position: int) -> None:
        head = self.head(channel)
        if position > head:
            sub.offer(_resync(channel, "unknown_position", head))
            return
        if position == head:
            return
        buffer = self._replay.get(channel) or deque()
        oldest = buffer[0].sequence if buffer else head + 1
        if oldest > position + 1:
            sub.offer(_resync(channel, "replay_gap", head))
            return
        for event in buffer:
            if event.sequence > position:
                sub.offer(event)


def _resync(channel: str, reason: str, head: int) -> RealtimeEvent:
    """Resync marker: everything up to `head` must be re-fetched, not replayed."""
    return RealtimeEvent(
        type=RealtimeEventType.RESYNC,
        channel=channel,
        sequence=0,
        data={"reason": reason, "head": head},
    )
