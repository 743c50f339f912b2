"""Task Completion Engine: the engagement state machine and its settlement step.

Invariants:
    - At most one active engagement per post: the UNIQUE active_post_id slot decides
      concurrent accepts, the loser gets AlreadyEngagedError
    - Every transition is one conditional UPDATE on (id, status, version); zero rows
      matched means another writer got there first -> StateConflictError, nothing written
    - Illegal actions always raise IllegalTransitionError; no transition is ever a no-op
    - Confirmation commits BEFORE the karma transfer: a failed transfer leaves a
      confirmed-but-unsettled engagement, reported as SettlementOutcome(failed) and
      logged at ERROR, retryable through settle() or the reconciliation sweep
    - Realtime events are published only after the commit they describe
    - Settlement works on plain ids captured before the transfer: a rollback inside
      the ledger expires every ORM instance in the session
    - Each failed settlement stamps settlement_attempted_at; the sweep visits the
      least recently attempted rows first, so permanent failures cannot starve the rest

Design Decisions:
    - Rules are pure (core/engagement_transitions.py); this class is the impure shell
      around them (load -> check -> conditional write -> commit -> publish)
    - PENDING exists in the vocabulary but is never entered: accept creates the
      engagement directly in IN_PROGRESS
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import and_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from karmafarm.core.domain_types import (
    EngagementAction,
    EngagementId,
    EngagementStatus,
    PostId,
    PostStatus,
    RealtimeEventType,
    RewardType,
    SettlementStatus,
    UserId,
)
from karmafarm.core.engagement_transitions import (
    check_expected_status,
    check_transition,
    is_active,
    resolve_role,
    target_status,
)
from karmafarm.core.errors import (
    AlreadyEngagedError,
    ErrorContext,
    KarmaFarmError,
    PostUnavailableError,
    ResourceNotFoundError,
    SelfEngagementError,
    StateConflictError,
)
from karmafarm.core.realtime_events import user_channel
from karmafarm.core.repository_protocols import PostRegistry, PostSnapshot
from karmafarm.infrastructure.realtime import RealtimeHub
from karmafarm.models.karma_transaction import KarmaTransaction
from karmafarm.models.post import Post
from karmafarm.models.task_engagement import TaskEngagement
from karmafarm.schemas.engagement import EngagementResponse, SettlementResponse
from karmafarm.services.karma_ledger import KarmaLedger

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SettlementOutcome:
    """Result of the ledger step that follows confirmation."""
    status: SettlementStatus
    transaction_id: uuid.UUID | None = None
    amount: int | None = None
    warning: str | None = None

    def to_response(self) -> SettlementResponse:
        return SettlementResponse(
            status=self.status,
            transaction_id=self.transaction_id,
            amount=self.amount,
            warning=self.warning,
        )


@dataclass(frozen=True)
class SettlementTarget:
    """Plain-value view of an engagement, safe to read after a rollback."""
    engagement_id: uuid.UUID
    post_id: uuid.UUID
    owner_id: str
    fulfiller_id: str

    @classmethod
    def of(cls, engagement: TaskEngagement) -> "SettlementTarget":
        return cls(
            engagement_id=engagement.id,
            post_id=engagement.post_id,
            owner_id=engagement.owner_id,
            fulfiller_id=engagement.fulfiller_id,
        )


class TaskCompletionEngine:
    """Accept, complete, confirm and dispute engagements."""

    def __init__(
        self,
        db: AsyncSession,
        posts: PostRegistry,
        ledger: KarmaLedger,
        hub: RealtimeHub | None = None,
    ):
        self.db = db
        self.posts = posts
        self.ledger = ledger
        self.hub = hub

    # ─── Commands ────────────────────────────────────────────────

    async def accept_task(
        self,
        post_id: PostId,
        fulfiller_id: UserId,
        proposed_completion_date: datetime | None = None,
        message: str | None = None,
    ) -> TaskEngagement:
        ctx = ErrorContext(post_id=str(post_id), user_id=fulfiller_id)
        post = await self.posts.get_post(post_id)
        if post.owner_id == fulfiller_id:
            raise SelfEngagementError(str(post_id), ctx)
        if post.status != PostStatus.ACTIVE:
            raise PostUnavailableError(str(post_id), post.status.value, ctx)
        if await self._active_for_post(post_id) is not None:
            raise AlreadyEngagedError(str(post_id), ctx)

        engagement = TaskEngagement(
            post_id=post_id,
            active_post_id=post_id,
            owner_id=post.owner_id,
            fulfiller_id=fulfiller_id,
            status=EngagementStatus.IN_PROGRESS.value,
            version=1,
            proposed_completion_date=proposed_completion_date,
            acceptance_message=message,
        )
        self.db.add(engagement)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            logger.info(
                "Concurrent accept lost the post slot",
                extra={"post_id": str(post_id), "user_id": fulfiller_id},
            )
            raise AlreadyEngagedError(str(post_id), ctx)

        logger.info(
            "Task accepted",
            extra={"engagement_id": str(engagement.id), "post_id": str(post_id)},
        )
        self._publish_engagement(engagement)
        return engagement

    async def mark_completed(
        self,
        engagement_id: EngagementId,
        actor_id: UserId,
        notes: str | None = None,
        expected_status: EngagementStatus | None = None,
    ) -> TaskEngagement:
        engagement = await self._transition(
            engagement_id, actor_id, EngagementAction.MARK_COMPLETED, expected_status,
            completion_notes=notes,
            completed_at=_now(),
        )
        await self._commit(engagement)
        return engagement

    async def confirm_completion(
        self,
        engagement_id: EngagementId,
        actor_id: UserId,
        expected_status: EngagementStatus | None = None,
    ) -> tuple[TaskEngagement, SettlementOutcome]:
        """Owner confirms; post completes; karma moves owner -> fulfiller."""
        engagement = await self._transition(
            engagement_id, actor_id, EngagementAction.CONFIRM, expected_status,
            confirmed_at=_now(),
        )
        await self.posts.set_post_status(
            PostId(engagement.post_id), PostStatus.COMPLETED,
        )
        await self._commit(engagement)
        target = SettlementTarget.of(engagement)
        post = await self.posts.get_post(PostId(target.post_id))
        outcome = await self._settle(target, post)
        await self.db.refresh(engagement)
        return engagement, outcome

    async def dispute(
        self,
        engagement_id: EngagementId,
        actor_id: UserId,
        reason: str,
        expected_status: EngagementStatus | None = None,
    ) -> TaskEngagement:
        engagement = await self._transition(
            engagement_id, actor_id, EngagementAction.DISPUTE, expected_status,
            dispute_reason=reason,
            disputed_by=actor_id,
            disputed_at=_now(),
        )
        await self._commit(engagement)
        logger.warning(
            "Engagement disputed",
            extra={"engagement_id": str(engagement_id), "user_id": actor_id},
        )
        return engagement

    async def settle(
        self, engagement_id: EngagementId, actor_id: UserId,
    ) -> SettlementOutcome:
        """Retry the transfer of a confirmed engagement. Idempotent."""
        engagement = await self.get_engagement(engagement_id)
        ctx = ErrorContext(engagement_id=str(engagement_id), user_id=actor_id)
        role = resolve_role(engagement.owner_id, engagement.fulfiller_id, actor_id)
        error = check_transition(
            EngagementStatus(engagement.status), EngagementAction.SETTLE, role, ctx,
        )
        if error:
            raise error
        post = await self.posts.get_post(PostId(engagement.post_id))
        return await self._settle(SettlementTarget.of(engagement), post)

    async def settle_unsettled(self, limit: int = 100) -> list[SettlementOutcome]:
        """Reconciliation: retry confirmed karma engagements lacking a transfer.

        Never-attempted rows lead, then the least recently attempted.
        """
        targets = [SettlementTarget.of(e) for e in await self.find_unsettled(limit)]
        outcomes = []
        for target in targets:
            post = await self.posts.get_post(PostId(target.post_id))
            outcomes.append(await self._settle(target, post))
        return outcomes

    # ─── Queries ─────────────────────────────────────────────────

    async def get_engagement(self, engagement_id: EngagementId) -> TaskEngagement:
        result = await self.db.execute(
            select(TaskEngagement).where(TaskEngagement.id == engagement_id),
        )
        engagement = result.scalar_one_or_none()
        if engagement is None:
            raise ResourceNotFoundError(
                "Engagement", str(engagement_id),
                ErrorContext(engagement_id=str(engagement_id)),
            )
        return engagement

    async def list_for_post(self, post_id: PostId) -> list[TaskEngagement]:
        result = await self.db.execute(
            select(TaskEngagement)
            .where(TaskEngagement.post_id == post_id)
            .order_by(TaskEngagement.accepted_at.desc()),
        )
        return list(result.scalars().all())

    async def list_for_user(
        self, user_id: UserId, status: EngagementStatus | None = None,
    ) -> list[TaskEngagement]:
        query = select(TaskEngagement).where(
            (TaskEngagement.owner_id == user_id)
            | (TaskEngagement.fulfiller_id == user_id),
        )
        if status is not None:
            query = query.where(TaskEngagement.status == status.value)
        result = await self.db.execute(
            query.order_by(TaskEngagement.accepted_at.desc()),
        )
        return list(result.scalars().all())

    async def find_unsettled(self, limit: int = 100) -> list[TaskEngagement]:
        result = await self.db.execute(
            select(TaskEngagement)
            .join(Post, Post.id == TaskEngagement.post_id)
            .outerjoin(
                KarmaTransaction,
                KarmaTransaction.engagement_id == TaskEngagement.id,
            )
            .where(
                and_(
                    TaskEngagement.status == EngagementStatus.CONFIRMED.value,
                    Post.reward_type == RewardType.KARMA.value,
                    KarmaTransaction.id.is_(None),
                ),
            )
            .order_by(
                TaskEngagement.settlement_attempted_at.asc().nulls_first(),
                TaskEngagement.confirmed_at,
                TaskEngagement.id,
            )
            .limit(limit),
        )
        return list(result.scalars().all())

    # ─── Internals ───────────────────────────────────────────────

    async def _active_for_post(self, post_id: PostId) -> TaskEngagement | None:
        result = await self.db.execute(
            select(TaskEngagement).where(TaskEngagement.active_post_id == post_id),
        )
        return result.scalar_one_or_none()

    async def _transition(
        self,
        engagement_id: EngagementId,
        actor_id: UserId,
        action: EngagementAction,
        expected_status: EngagementStatus | None,
        **changes,
    ) -> TaskEngagement:
        """Check and apply one move as a conditional UPDATE. Caller commits."""
        engagement = await self.get_engagement(engagement_id)
        ctx = ErrorContext(
            engagement_id=str(engagement_id),
            post_id=str(engagement.post_id),
            user_id=actor_id,
        )
        current = EngagementStatus(engagement.status)
        conflict = check_expected_status(current, expected_status, ctx)
        if conflict:
            raise conflict
        role = resolve_role(engagement.owner_id, engagement.fulfiller_id, actor_id)
        error = check_transition(current, action, role, ctx)
        if error:
            raise error

        target = target_status(action)
        values = {
            "status": target.value,
            "version": engagement.version + 1,
            **changes,
        }
        if not is_active(target):
            values["active_post_id"] = None
        result = await self.db.execute(
            update(TaskEngagement)
            .where(
                TaskEngagement.id == engagement_id,
                TaskEngagement.status == current.value,
                TaskEngagement.version == engagement.version,
            )
            .values(**values)
            .execution_options(synchronize_session=False),
        )
        if result.rowcount == 0:
            await self.db.rollback()
            await self.db.refresh(engagement)
            logger.info(
                f"Lost {action.value} race ({current.value} -> {engagement.status})",
                extra={"engagement_id": str(engagement_id)},
            )
            raise StateConflictError(current.value, engagement.status, ctx)
        return engagement

    async def _commit(self, engagement: TaskEngagement) -> None:
        await self.db.commit()
        await self.db.refresh(engagement)
        logger.info(
            f"Engagement -> {engagement.status}",
            extra={"engagement_id": str(engagement.id)},
        )
        self._publish_engagement(engagement)

    async def _settle(
        self, target: SettlementTarget, post: PostSnapshot,
    ) -> SettlementOutcome:
        if not post.settles_in_karma:
            return SettlementOutcome(status=SettlementStatus.NOT_APPLICABLE)
        extra = {"engagement_id": str(target.engagement_id), "amount": post.karma_value}
        try:
            txn = await self.ledger.transfer(
                EngagementId(target.engagement_id),
                UserId(target.owner_id),
                UserId(target.fulfiller_id),
                post.karma_value,
                related_post_id=post.id,
                description="Task completion reward",
            )
        except KarmaFarmError as e:
            logger.error(
                f"Confirmed engagement left unsettled: {e.message}",
                extra={**extra, "error_code": e.code, "settlement_status": "failed"},
            )
            outcome = SettlementOutcome(
                status=SettlementStatus.FAILED, amount=post.karma_value,
                warning=e.message,
            )
            await self._record_attempt(target)
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                f"Confirmed engagement left unsettled: {e}",
                extra={**extra, "settlement_status": "failed"},
                exc_info=True,
            )
            outcome = SettlementOutcome(
                status=SettlementStatus.FAILED, amount=post.karma_value,
                warning="Karma transfer failed; it will be retried",
            )
            await self._record_attempt(target)
        else:
            outcome = SettlementOutcome(
                status=SettlementStatus.SETTLED,
                transaction_id=txn.id,
                amount=txn.amount,
            )
        self._publish_settlement(target, outcome)
        return outcome

    async def _record_attempt(self, target: SettlementTarget) -> None:
        """Stamp a failed settlement so the sweep rotates past it."""
        try:
            await self.db.execute(
                update(TaskEngagement)
                .where(TaskEngagement.id == target.engagement_id)
                .values(settlement_attempted_at=_now())
                .execution_options(synchronize_session=False),
            )
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            logger.warning(
                "Could not record settlement attempt",
                extra={"engagement_id": str(target.engagement_id)},
                exc_info=True,
            )

    def _publish_engagement(self, engagement: TaskEngagement) -> None:
        if self.hub is None:
            return
        data = EngagementResponse.model_validate(engagement).model_dump(mode="json")
        for party in (engagement.owner_id, engagement.fulfiller_id):
            self.hub.publish(user_channel(party), RealtimeEventType.ENGAGEMENT, data)

    def _publish_settlement(
        self, target: SettlementTarget, outcome: SettlementOutcome,
    ) -> None:
        if self.hub is None:
            return
        data = {
            "engagement_id": str(target.engagement_id),
            **outcome.to_response().model_dump(mode="json"),
        }
        for party in (target.owner_id, target.fulfiller_id):
            self.hub.publish(user_channel(party), RealtimeEventType.SETTLEMENT, data)


def _now() -> datetime:
    return datetime.now(timezone.utc)
