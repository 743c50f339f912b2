"""Rating and Karma Routes: rating submission, rating summaries, karma account."""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from karmafarm.api.dependencies import get_current_user, get_ledger, get_ratings
from karmafarm.core.domain_types import EngagementId, UserId
from karmafarm.schemas.karma import KarmaAccountResponse, KarmaTransactionResponse
from karmafarm.schemas.rating import (
    RatingCreate,
    RatingResponse,
    RatingSummaryResponse,
)
from karmafarm.services.karma_ledger import KarmaLedger
from karmafarm.services.rating_aggregator import RatingAggregator

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1", tags=["ratings"])


@router.post(
    "/engagements/{engagement_id}/ratings",
    response_model=RatingResponse,
    status_code=status.HTTP_201_CREATED,
)
async def submit_rating(
    engagement_id: UUID,
    body: RatingCreate,
    user_id: UserId = Depends(get_current_user),
    ratings: RatingAggregator = Depends(get_ratings),
):
    return await ratings.submit_rating(
        EngagementId(engagement_id),
        user_id,
        body.score,
        review=body.review,
        tags=body.tags,
        ratee_id=UserId(body.ratee_id) if body.ratee_id else None,
    )


@router.get("/users/me/karma", response_model=KarmaAccountResponse)
async def get_my_karma(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user_id: UserId = Depends(get_current_user),
    ledger: KarmaLedger = Depends(get_ledger),
):
    """Derived balance plus newest-first ledger history."""
    balance = await ledger.balance(user_id)
    transactions, total = await ledger.history(user_id, limit, offset)
    return KarmaAccountResponse(
        user_id=user_id,
        balance=balance,
        transactions=[
            KarmaTransactionResponse.model_validate(t) for t in transactions
        ],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/users/{user_id}/rating", response_model=RatingSummaryResponse)
async def get_rating_summary(
    user_id: str,
    _caller: UserId = Depends(get_current_user),
    ratings: RatingAggregator = Depends(get_ratings),
):
    summary = await ratings.summary(UserId(user_id))
    return RatingSummaryResponse(
        user_id=user_id,
        score_sum=summary.score_sum,
        rating_count=summary.rating_count,
        average=summary.average,
        display_average=summary.display_average,
    )


@router.get("/users/{user_id}/ratings", response_model=list[RatingResponse])
async def list_user_ratings(
    user_id: str,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    _caller: UserId = Depends(get_current_user),
    ratings: RatingAggregator = Depends(get_ratings),
):
    return await ratings.list_for_user(UserId(user_id), limit, offset)
