"""Chat Routes: chats, messages, typing, read receipts, membership and presence.

Invariants:
    - Only participants reach a chat's data (enforced by ChatCoordinator.get_chat)
    - Typing and presence endpoints answer 200 whether or not an event was emitted;
      `emitted` / `applied` say which
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from karmafarm.api.dependencies import get_chats, get_current_user, get_presence
from karmafarm.core.domain_types import ChatId, MessageId, PostId, UserId
from karmafarm.core.errors import ResourceNotFoundError
from karmafarm.schemas.chat import (
    ChatCreate,
    ChatResponse,
    ChatSummaryResponse,
    MessageCreate,
    MessageResponse,
    PresenceRequest,
    PresenceResponse,
    ReadRequest,
    TypingRequest,
)
from karmafarm.services.chat_coordinator import ChatCoordinator
from karmafarm.services.presence_coordinator import PresenceCoordinator

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1", tags=["chats"])


@router.post("/chats", response_model=ChatResponse)
async def get_or_create_chat(
    body: ChatCreate,
    user_id: UserId = Depends(get_current_user),
    chats: ChatCoordinator = Depends(get_chats),
):
    return await chats.get_or_create_chat(
        PostId(body.post_id), user_id, UserId(body.other_user_id),
    )


@router.get("/chats", response_model=list[ChatSummaryResponse])
async def list_chats(
    include_archived: bool = Query(False),
    user_id: UserId = Depends(get_current_user),
    chats: ChatCoordinator = Depends(get_chats),
):
    rows = await chats.list_chats(user_id, include_archived)
    return [
        ChatSummaryResponse.model_validate(chat).model_copy(
            update={"unread_count": unread},
        )
        for chat, unread in rows
    ]


@router.get("/chats/unread")
async def unread_count(
    user_id: UserId = Depends(get_current_user),
    chats: ChatCoordinator = Depends(get_chats),
):
    return {"unread_count": await chats.unread_count(user_id)}


@router.get("/chats/{chat_id}/messages", response_model=list[MessageResponse])
async def get_messages(
    chat_id: UUID,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user_id: UserId = Depends(get_current_user),
    chats: ChatCoordinator = Depends(get_chats),
):
    return await chats.get_messages(ChatId(chat_id), user_id, limit, offset)


@router.post(
    "/chats/{chat_id}/messages",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
)
async def send_message(
    chat_id: UUID,
    body: MessageCreate,
    user_id: UserId = Depends(get_current_user),
    chats: ChatCoordinator = Depends(get_chats),
):
    return await chats.send_message(ChatId(chat_id), user_id, body.content)


@router.post("/chats/{chat_id}/typing")
async def set_typing(
    chat_id: UUID,
    body: TypingRequest,
    user_id: UserId = Depends(get_current_user),
    chats: ChatCoordinator = Depends(get_chats),
):
    emitted = await chats.set_typing(ChatId(chat_id), user_id, body.is_typing)
    return {"is_typing": body.is_typing, "emitted": emitted}


@router.post("/chats/{chat_id}/read")
async def mark_read(
    chat_id: UUID,
    body: ReadRequest,
    user_id: UserId = Depends(get_current_user),
    chats: ChatCoordinator = Depends(get_chats),
):
    up_to = MessageId(body.up_to_message_id) if body.up_to_message_id else None
    return {"marked": await chats.mark_read(ChatId(chat_id), user_id, up_to)}


@router.post("/chats/{chat_id}/join", response_model=ChatResponse)
async def join_chat(
    chat_id: UUID,
    user_id: UserId = Depends(get_current_user),
    chats: ChatCoordinator = Depends(get_chats),
):
    return await chats.join_chat(ChatId(chat_id), user_id)


@router.post("/chats/{chat_id}/leave", response_model=ChatResponse)
async def leave_chat(
    chat_id: UUID,
    user_id: UserId = Depends(get_current_user),
    chats: ChatCoordinator = Depends(get_chats),
):
    return await chats.leave_chat(ChatId(chat_id), user_id)


@router.post("/chats/{chat_id}/archive", response_model=ChatResponse)
async def archive_chat(
    chat_id: UUID,
    user_id: UserId = Depends(get_current_user),
    chats: ChatCoordinator = Depends(get_chats),
):
    return await chats.archive_chat(ChatId(chat_id), user_id)


# ─── Presence ───────────────────────────────────────────────────

@router.post("/presence/online", response_model=PresenceResponse)
async def set_online(
    body: PresenceRequest,
    user_id: UserId = Depends(get_current_user),
    chats: ChatCoordinator = Depends(get_chats),
):
    state, applied = chats.set_online(user_id, body.at)
    return PresenceResponse(**state.to_dict(), applied=applied)


@router.post("/presence/offline", response_model=PresenceResponse)
async def set_offline(
    body: PresenceRequest,
    user_id: UserId = Depends(get_current_user),
    chats: ChatCoordinator = Depends(get_chats),
):
    state, applied = chats.set_offline(user_id, body.at)
    return PresenceResponse(**state.to_dict(), applied=applied)


@router.get("/presence/{user_id}", response_model=PresenceResponse)
async def get_presence_state(
    user_id: str,
    _caller: UserId = Depends(get_current_user),
    presence: PresenceCoordinator = Depends(get_presence),
):
    state = presence.get(user_id)
    if state is None:
        raise ResourceNotFoundError("Presence", user_id)
    return PresenceResponse(**state.to_dict(), applied=True)
