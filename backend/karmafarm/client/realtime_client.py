"""Realtime Client: SSE subscription with reconnect, backoff, ordering and re-fetch.

Invariants:
    - Transport drops reconnect after reconnect_delay_seconds(attempt) = min(2^attempt, 30) s,
      at most MAX_RECONNECT_ATTEMPTS consecutive failures; a successful connect resets the count
    - Each reconnect sends the last stream cursor as Last-Event-ID and then calls on_resync,
      so the caller re-fetches whatever a replay cannot cover
    - Duplicate or out-of-order events are dropped (SequenceFilter); presence updates not
      newer than the last seen for that user are dropped (PresenceTracker)
    - Non-retryable errors (auth, not a participant, not found) end the subscription at once
    - A malformed frame or a raising callback is logged and skipped; the stream stays open

Design Decisions:
    - A cancellable SubscriptionHandle owning one asyncio.Task replaces listener callbacks
      registered on a shared socket: close() is the whole teardown
    - Callbacks may be plain functions or coroutines
"""

import asyncio
import inspect
import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import httpx

from karmafarm.core.domain_types import RealtimeEventType
from karmafarm.core.errors import KarmaFarmError, NetworkError, error_from_response
from karmafarm.core.presence import PresenceTracker
from karmafarm.core.realtime_events import RealtimeEvent, SequenceFilter
from karmafarm.core.retry_policy import MAX_RECONNECT_ATTEMPTS, reconnect_delay_seconds
from karmafarm.core.repository_protocols import CredentialSource

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Awaitable[None] | None]


@dataclass
class SSEFrame:
    data: str
    event: str | None = None
    id: str | None = None


async def parse_sse(lines: AsyncIterator[str]) -> AsyncIterator[SSEFrame]:
    """Parse an SSE line stream into frames. Comment lines are skipped."""
    data: list[str] = []
    event = None
    event_id = None
    async for line in lines:
        if line == "":
            if data:
                yield SSEFrame(data="\n".join(data), event=event, id=event_id)
            data, event, event_id = [], None, None
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "data":
            data.append(value)
        elif field == "event":
            event = value
        elif field == "id":
            event_id = value
    if data:
        yield SSEFrame(data="\n".join(data), event=event, id=event_id)


class SubscriptionHandle:
    """Cancellable subscription to one event stream."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        credentials: CredentialSource,
        path: str,
        handlers: dict[RealtimeEventType, Handler],
        on_resync: Callable[[], Awaitable[None] | None] | None = None,
        max_attempts: int = MAX_RECONNECT_ATTEMPTS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.path = path
        self.cursor: str | None = None
        self.error: KarmaFarmError | None = None
        self.reconnects = 0
        self._http = http
        self._credentials = credentials
        self._handlers = handlers
        self._on_resync = on_resync
        self._max_attempts = max_attempts
        self._sleep = sleep
        self._filter = SequenceFilter()
        self._presence = PresenceTracker()
        self._task: asyncio.Task | None = None
        self._was_live = False

    def start(self) -> "SubscriptionHandle":
        self._task = asyncio.create_task(self._run())
        return self

    @property
    def closed(self) -> bool:
        return self._task is None or self._task.done()

    async def close(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass

    async def wait(self) -> None:
        """Block until the subscription ends on its own (error or attempts exhausted)."""
        if self._task is not None:
            await self._task

    async def _run(self) -> None:
        attempt = 0
        connected = False
        while True:
            try:
                await self._consume(is_reconnect=connected)
                reason = "stream closed"
            except (httpx.TransportError, NetworkError) as e:
                reason = type(e).__name__
            except KarmaFarmError as e:
                self.error = e
                logger.error(
                    f"Realtime subscription {self.path} failed: {e.message}",
                    extra={"error_code": e.code, "channel": self.path},
                )
                return
            if self._was_live:
                connected = True
                attempt = 0
            attempt += 1
            if attempt > self._max_attempts:
                self.error = NetworkError(
                    f"gave up after {self._max_attempts} reconnect attempts",
                )
                logger.error(
                    f"Realtime subscription {self.path} abandoned",
                    extra={"attempt": self._max_attempts, "channel": self.path},
                )
                return
            delay = reconnect_delay_seconds(attempt)
            logger.warning(
                f"Realtime stream dropped ({reason}), reconnecting in {delay}s",
                extra={"attempt": attempt, "channel": self.path},
            )
            await self._sleep(delay)

    async def _consume(self, is_reconnect: bool) -> None:
        self._was_live = False
        headers = {"Authorization": f"Bearer {await self._credentials.get_bearer_token()}"}
        if self.cursor:
            headers["Last-Event-ID"] = self.cursor
        timeout = httpx.Timeout(10.0, read=None)
        async with self._http.stream(
            "GET", self.path, headers=headers, timeout=timeout,
        ) as response:
            if response.status_code >= 500:
                raise NetworkError(f"stream endpoint returned {response.status_code}")
            if response.status_code >= 400:
                await response.aread()
                raise error_from_response(response.json(), response.status_code)
            self._was_live = True
            if is_reconnect:
                self.reconnects += 1
                await self._guarded("resync handler", _call, self._on_resync)
            async for frame in parse_sse(response.aiter_lines()):
                if frame.id:
                    self.cursor = frame.id
                await self._guarded(f"{frame.event or 'unnamed'} frame", self._receive, frame)

    async def _guarded(self, what: str, func: Callable, *args) -> None:
        """Run one frame's work; a failure is logged and the stream keeps going."""
        try:
            await func(*args)
        except Exception as e:
            logger.error(
                f"Realtime {what} on {self.path} failed: {e}",
                extra={"channel": self.path},
                exc_info=True,
            )

    async def _receive(self, frame: SSEFrame) -> None:
        await self._dispatch(RealtimeEvent.from_dict(json.loads(frame.data)))

    async def _dispatch(self, event: RealtimeEvent) -> None:
        if not self._filter.accept(event):
            return
        if event.type == RealtimeEventType.RESYNC:
            await _call(self._on_resync)
            return
        if event.type == RealtimeEventType.PRESENCE:
            state = self._presence.apply(
                event.data["user_id"],
                bool(event.data["is_online"]),
                datetime.fromisoformat(event.data["last_seen_at"]),
            )
            if state is None:
                return
            await _call(self._handlers.get(event.type), state)
            return
        await _call(self._handlers.get(event.type), event.data)


async def _call(handler: Callable | None, *args) -> None:
    if handler is None:
        return
    result = handler(*args)
    if inspect.isawaitable(result):
        await result

