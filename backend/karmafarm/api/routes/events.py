"""Event Streams: Server-Sent Events over the realtime hub.

Invariants:
    - Stream positions are fixed when the request is accepted; the subscription
      replays from them, so nothing published in between is missed
    - Every event's SSE `id:` is the full stream cursor; reconnecting with it as
      Last-Event-ID (or ?cursor=) replays what was missed, or yields `resync`
    - The subscription is closed and presence released however the stream ends
    - Idle streams send a comment line every sse_keepalive_seconds

Design Decisions:
    - StreamingResponse + hand-formatted SSE lines, same as every other stream here
    - A chat stream also carries the other participant's presence channel, opened
      with a frame holding that participant's current state when one is known
"""

import asyncio
import json
import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import StreamingResponse

from karmafarm.api.dependencies import (
    get_chats,
    get_current_user,
    get_hub,
    get_presence,
)
from karmafarm.config import get_settings
from karmafarm.core.domain_types import ChatId, RealtimeEventType, UserId
from karmafarm.core.realtime_events import (
    RealtimeEvent,
    chat_channel,
    decode_cursor,
    encode_cursor,
    presence_channel,
    user_channel,
)
from karmafarm.infrastructure.realtime import RealtimeHub, Subscription
from karmafarm.services.chat_coordinator import ChatCoordinator
from karmafarm.services.presence_coordinator import PresenceCoordinator

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1", tags=["events"])

# SSE headers prevent proxy/browser buffering of streamed events.
_SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "X-Accel-Buffering": "no",
    "Connection": "keep-alive",
}


@router.get("/chats/{chat_id}/events")
async def stream_chat_events(
    chat_id: UUID,
    request: Request,
    cursor: str | None = Query(None),
    last_event_id: str | None = Header(None, alias="Last-Event-ID"),
    user_id: UserId = Depends(get_current_user),
    chats: ChatCoordinator = Depends(get_chats),
    hub: RealtimeHub = Depends(get_hub),
    presence: PresenceCoordinator = Depends(get_presence),
):
    """Messages, typing, read receipts and peer presence for one chat."""
    chat = await chats.get_chat(ChatId(chat_id), user_id)
    peer = chat.other_participant(user_id)
    channels = [chat_channel(chat.id), presence_channel(peer)]
    return _stream(
        request, hub, presence, user_id, channels, last_event_id or cursor,
        peer=peer,
    )


@router.get("/events")
async def stream_user_events(
    request: Request,
    cursor: str | None = Query(None),
    last_event_id: str | None = Header(None, alias="Last-Event-ID"),
    user_id: UserId = Depends(get_current_user),
    hub: RealtimeHub = Depends(get_hub),
    presence: PresenceCoordinator = Depends(get_presence),
):
    """Engagement and settlement events for the caller."""
    return _stream(
        request, hub, presence, user_id, [user_channel(user_id)],
        last_event_id or cursor,
    )


def _stream(
    request: Request,
    hub: RealtimeHub,
    presence: PresenceCoordinator,
    user_id: UserId,
    channels: list[str],
    cursor: str | None,
    peer: str | None = None,
) -> StreamingResponse:
    since = decode_cursor(cursor)
    positions = {ch: since.get(ch, hub.head(ch)) for ch in channels}
    keepalive = get_settings().sse_keepalive_seconds

    async def event_generator():
        sub = hub.subscribe(channels, dict(positions))
        snapshot = _presence_snapshot(hub, presence, peer)
        presence.connected(user_id)
        try:
            yield ": connected\n\n"
            if snapshot is not None:
                yield _sse_line(snapshot, encode_cursor(positions))
            while True:
                if await request.is_disconnected():
                    break
                event = await sub.get(timeout=keepalive)
                if event is None:
                    if sub.closed:
                        break
                    yield ": keepalive\n\n"
                    continue
                _advance(positions, event)
                yield _sse_line(event, encode_cursor(positions))
        except asyncio.CancelledError:
            logger.info("Client disconnected from event stream", extra={"user_id": user_id})
            raise
        finally:
            _release(sub, presence, user_id)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers=_SSE_HEADERS,
    )


def _advance(positions: dict[str, int], event: RealtimeEvent) -> None:
    """Move the cursor past event; a resync jumps the channel to its head."""
    if event.type == RealtimeEventType.RESYNC:
        positions[event.channel] = int(event.data.get("head", 0))
    else:
        positions[event.channel] = max(positions.get(event.channel, 0), event.sequence)


def _presence_snapshot(
    hub: RealtimeHub, presence: PresenceCoordinator, peer: str | None,
) -> RealtimeEvent | None:
    """Peer's current presence, stamped with its channel head so newer events still pass."""
    if peer is None:
        return None
    state = presence.get(peer)
    if state is None:
        return None
    channel = presence_channel(peer)
    return RealtimeEvent(
        type=RealtimeEventType.PRESENCE,
        channel=channel,
        sequence=hub.head(channel),
        data=state.to_dict(),
    )


def _release(sub: Subscription, presence: PresenceCoordinator, user_id: UserId) -> None:
    sub.close()
    presence.disconnected(user_id)


def _sse_line(event: RealtimeEvent, cursor: str) -> str:
    """Format event as an SSE frame: id (cursor), event (type), data (JSON)."""
    return (
        f"id: {cursor}\n"
        f"event: {event.type.value}\n"
        f"data: {json.dumps(event.to_dict(), ensure_ascii=False)}\n\n"
    )
