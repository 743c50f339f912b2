"""Rating Aggregator: one rating per party per confirmed engagement, O(1) averages.

Invariants:
    - (engagement_id, rater_id) unique: pre-checked, and the constraint decides races
    - Only parties of a CONFIRMED engagement may rate; the ratee is always the counterparty
    - Rating insert and totals increment commit together (no count without a row)
    - Totals are incremented in SQL (score_sum = score_sum + :score), never read-modify-write
"""

import logging

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from karmafarm.core.domain_types import (
    EngagementAction,
    EngagementId,
    EngagementStatus,
    HelpfulnessTag,
    UserId,
)
from karmafarm.core.engagement_transitions import (
    check_transition,
    counterparty,
    resolve_role,
)
from karmafarm.core.errors import (
    DuplicateRatingError,
    ErrorContext,
    InvalidRateeError,
    NotParticipantError,
    ResourceNotFoundError,
)
from karmafarm.core.rating_math import RatingSummary, check_score
from karmafarm.models.rating import Rating, RatingTotals
from karmafarm.models.task_engagement import TaskEngagement

logger = logging.getLogger(__name__)


class RatingAggregator:
    """Records ratings and keeps each ratee's running totals."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def submit_rating(
        self,
        engagement_id: EngagementId,
        rater_id: UserId,
        score: int,
        review: str | None = None,
        tags: list[HelpfulnessTag] | None = None,
        ratee_id: UserId | None = None,
    ) -> Rating:
        ctx = ErrorContext(engagement_id=str(engagement_id), user_id=rater_id)
        error = check_score(score, ctx)
        if error:
            raise error

        engagement = await self._get_engagement(engagement_id)
        other = counterparty(engagement.owner_id, engagement.fulfiller_id, rater_id)
        if other is None:
            raise NotParticipantError("engagement", str(engagement_id), ctx)
        if ratee_id is not None and ratee_id != other:
            raise InvalidRateeError(ratee_id, other, ctx)
        role = resolve_role(engagement.owner_id, engagement.fulfiller_id, rater_id)
        error = check_transition(
            EngagementStatus(engagement.status), EngagementAction.RATE, role, ctx,
        )
        if error:
            raise error
        if await self._existing(engagement_id, rater_id) is not None:
            raise DuplicateRatingError(str(engagement_id), rater_id, ctx)

        rating = Rating(
            engagement_id=engagement_id,
            rater_id=rater_id,
            ratee_id=other,
            score=score,
            review=review,
            tags=[HelpfulnessTag(t).value for t in (tags or [])],
        )
        await self._insert(rating, ctx)

        logger.info(
            f"Rating {score} recorded for {other}",
            extra={"engagement_id": str(engagement_id), "user_id": rater_id},
        )
        return rating

    async def summary(self, user_id: UserId) -> RatingSummary:
        totals = await self.db.get(RatingTotals, user_id, populate_existing=True)
        if totals is None:
            return RatingSummary()
        return RatingSummary(totals.score_sum, totals.rating_count)

    async def list_for_user(
        self, user_id: UserId, limit: int = 20, offset: int = 0,
    ) -> list[Rating]:
        """Ratings received by user_id, newest first."""
        result = await self.db.execute(
            select(Rating)
            .where(Rating.ratee_id == user_id)
            .order_by(Rating.created_at.desc(), Rating.id)
            .limit(limit)
            .offset(offset),
        )
        return list(result.scalars().all())

    async def _get_engagement(self, engagement_id: EngagementId) -> TaskEngagement:
        engagement = await self.db.get(TaskEngagement, engagement_id)
        if engagement is None:
            raise ResourceNotFoundError(
                "Engagement", str(engagement_id),
                ErrorContext(engagement_id=str(engagement_id)),
            )
        return engagement

    async def _existing(
        self, engagement_id: EngagementId, rater_id: UserId,
    ) -> Rating | None:
        result = await self.db.execute(
            select(Rating).where(
                Rating.engagement_id == engagement_id,
                Rating.rater_id == rater_id,
            ),
        )
        return result.scalar_one_or_none()

    async def _increment_totals(self, user_id: UserId, score: int) -> None:
        result = await self.db.execute(
            update(RatingTotals)
            .where(RatingTotals.user_id == user_id)
            .values(
                score_sum=RatingTotals.score_sum + score,
                rating_count=RatingTotals.rating_count + 1,
            )
            .execution_options(synchronize_session=False),
        )
        if result.rowcount == 0:
            self.db.add(RatingTotals(user_id=user_id, score_sum=score, rating_count=1))
            await self.db.flush()

    async def _insert(self, rating: Rating, ctx: ErrorContext) -> None:
        """Insert rating and bump totals in one commit.

        An IntegrityError is either the (engagement, rater) constraint (duplicate)
        or two first ratings racing to create the ratee's totals row (retried once).
        """
        for attempt in range(2):
            self.db.add(rating)
            try:
                await self.db.flush()
                await self._increment_totals(UserId(rating.ratee_id), rating.score)
                await self.db.commit()
                return
            except IntegrityError:
                await self.db.rollback()
                if await self._existing(rating.engagement_id, rating.rater_id) is not None:
                    raise DuplicateRatingError(
                        str(rating.engagement_id), rating.rater_id, ctx,
                    )
                if attempt == 1:
                    raise
                logger.info(
                    "Rating totals insert raced, retrying",
                    extra={"user_id": rating.ratee_id},
                )
