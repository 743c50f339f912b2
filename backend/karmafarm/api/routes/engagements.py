"""Engagement Routes: accept, complete, confirm, dispute, settle, and reads.

Invariants:
    - Caller identity always comes from the bearer token, never from the body
    - Accepting a post also opens (or reuses) the chat between owner and fulfiller;
      an acceptance message becomes the first chat message
    - Confirm returns 200 even when settlement failed: the outcome is in the body
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from karmafarm.api.dependencies import get_chats, get_current_user, get_engine
from karmafarm.core.domain_types import (
    EngagementId,
    EngagementStatus,
    PostId,
    UserId,
)
from karmafarm.core.errors import ErrorContext, NotParticipantError
from karmafarm.schemas.engagement import (
    AcceptTaskRequest,
    AcceptTaskResponse,
    ConfirmRequest,
    ConfirmResponse,
    DisputeRequest,
    EngagementResponse,
    MarkCompletedRequest,
    SettlementResponse,
)
from karmafarm.services.chat_coordinator import ChatCoordinator
from karmafarm.services.engagement_engine import TaskCompletionEngine

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1", tags=["engagements"])


@router.post(
    "/posts/{post_id}/accept",
    response_model=AcceptTaskResponse,
    status_code=status.HTTP_201_CREATED,
)
async def accept_task(
    post_id: UUID,
    body: AcceptTaskRequest,
    user_id: UserId = Depends(get_current_user),
    engine: TaskCompletionEngine = Depends(get_engine),
    chats: ChatCoordinator = Depends(get_chats),
):
    engagement = await engine.accept_task(
        PostId(post_id), user_id, body.proposed_completion_date, body.message,
    )
    chat = await chats.get_or_create_chat(
        PostId(post_id), engagement.owner_id, engagement.fulfiller_id,
    )
    if body.message:
        await chats.send_message(chat.id, user_id, body.message)
    return AcceptTaskResponse(
        engagement=EngagementResponse.model_validate(engagement), chat_id=chat.id,
    )


@router.get("/posts/{post_id}/engagements", response_model=list[EngagementResponse])
async def list_post_engagements(
    post_id: UUID,
    user_id: UserId = Depends(get_current_user),
    engine: TaskCompletionEngine = Depends(get_engine),
):
    """Engagement history of a post, visible to its owner and past fulfillers."""
    engagements = await engine.list_for_post(PostId(post_id))
    return [
        e for e in engagements
        if user_id in (e.owner_id, e.fulfiller_id)
    ]


@router.get("/engagements", response_model=list[EngagementResponse])
async def list_my_engagements(
    status_filter: EngagementStatus | None = Query(None, alias="status"),
    user_id: UserId = Depends(get_current_user),
    engine: TaskCompletionEngine = Depends(get_engine),
):
    return await engine.list_for_user(user_id, status_filter)


@router.get("/engagements/{engagement_id}", response_model=EngagementResponse)
async def get_engagement(
    engagement_id: UUID,
    user_id: UserId = Depends(get_current_user),
    engine: TaskCompletionEngine = Depends(get_engine),
):
    engagement = await engine.get_engagement(EngagementId(engagement_id))
    if user_id not in (engagement.owner_id, engagement.fulfiller_id):
        raise NotParticipantError(
            "engagement", str(engagement_id),
            ErrorContext(engagement_id=str(engagement_id), user_id=user_id),
        )
    return engagement


@router.post("/engagements/{engagement_id}/complete", response_model=EngagementResponse)
async def mark_completed(
    engagement_id: UUID,
    body: MarkCompletedRequest,
    user_id: UserId = Depends(get_current_user),
    engine: TaskCompletionEngine = Depends(get_engine),
):
    return await engine.mark_completed(
        EngagementId(engagement_id), user_id, body.notes, body.expected_status,
    )


@router.post("/engagements/{engagement_id}/confirm", response_model=ConfirmResponse)
async def confirm_completion(
    engagement_id: UUID,
    body: ConfirmRequest,
    user_id: UserId = Depends(get_current_user),
    engine: TaskCompletionEngine = Depends(get_engine),
):
    engagement, outcome = await engine.confirm_completion(
        EngagementId(engagement_id), user_id, body.expected_status,
    )
    return ConfirmResponse(
        engagement=EngagementResponse.model_validate(engagement),
        settlement=outcome.to_response(),
    )


@router.post("/engagements/{engagement_id}/dispute", response_model=EngagementResponse)
async def dispute(
    engagement_id: UUID,
    body: DisputeRequest,
    user_id: UserId = Depends(get_current_user),
    engine: TaskCompletionEngine = Depends(get_engine),
):
    return await engine.dispute(
        EngagementId(engagement_id), user_id, body.reason, body.expected_status,
    )


@router.post("/engagements/{engagement_id}/settle", response_model=SettlementResponse)
async def settle(
    engagement_id: UUID,
    user_id: UserId = Depends(get_current_user),
    engine: TaskCompletionEngine = Depends(get_engine),
):
    outcome = await engine.settle(EngagementId(engagement_id), user_id)
    return outcome.to_response()
