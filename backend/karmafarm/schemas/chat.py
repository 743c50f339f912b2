"""Chat Schemas: chats, messages, typing, read receipts and presence.

Invariants:
    - MessageCreate.content is NOT stripped or rejected here: blank content must
      reach the coordinator so it raises EmptyContentError (400), same as direct callers
    - Chat responses carry the participants in stored (canonical) order
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from karmafarm.core.domain_types import ChatStatus


class ChatCreate(BaseModel):
    post_id: UUID
    other_user_id: str = Field(min_length=1, max_length=128)


class ChatResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    post_id: UUID
    participant_a: str
    participant_b: str
    status: ChatStatus
    last_message_at: datetime | None = None
    created_at: datetime


class ChatSummaryResponse(ChatResponse):
    unread_count: int = 0


class MessageCreate(BaseModel):
    content: str = Field(max_length=10_000)


class MessageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    chat_id: UUID
    sender_id: str
    content: str
    created_at: datetime
    read_at: datetime | None = None


class TypingRequest(BaseModel):
    is_typing: bool


class ReadRequest(BaseModel):
    up_to_message_id: UUID | None = None


class PresenceRequest(BaseModel):
    at: datetime | None = None


class PresenceResponse(BaseModel):
    user_id: str
    is_online: bool
    last_seen_at: datetime
    applied: bool
