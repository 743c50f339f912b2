"""Karma Ledger: append-only karma transfers, idempotent per engagement.

Invariants:
    - At most one transaction per engagement_id, enforced by the UNIQUE column; a lost
      insert race is resolved by rollback + re-read, never by a second row
    - transfer() on an already-settled engagement returns the existing record unchanged
    - Balances are derived from the log on every read (credits - debits)
    - Each write commits exactly once; nothing is left pending on error

Design Decisions:
    - Funds check is a policy (allow_negative_balance), not a hard rule: posting a
      karma reward never required holding the karma upfront
    - Pre-check SELECT before INSERT keeps the common retry path free of IntegrityError
      noise; the constraint still decides under concurrency
"""

import logging
import uuid

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from karmafarm.core.domain_types import EngagementId, TransactionType, UserId
from karmafarm.core.errors import ErrorContext
from karmafarm.core.ledger_rules import check_amount, check_funds
from karmafarm.models.karma_transaction import KarmaTransaction

logger = logging.getLogger(__name__)


class KarmaLedger:
    """Karma transfers and derived balances."""

    def __init__(self, db: AsyncSession, allow_negative_balance: bool = True):
        self.db = db
        self.allow_negative_balance = allow_negative_balance

    async def transfer(
        self,
        engagement_id: EngagementId,
        from_user_id: UserId,
        to_user_id: UserId,
        amount: int,
        related_post_id: uuid.UUID | None = None,
        description: str | None = None,
    ) -> KarmaTransaction:
        """Move karma for a completed engagement. Idempotent on engagement_id."""
        ctx = ErrorContext(engagement_id=str(engagement_id), user_id=from_user_id)
        existing = await self.find_for_engagement(engagement_id)
        if existing is not None:
            logger.info(
                "Transfer already recorded",
                extra={"engagement_id": str(engagement_id)},
            )
            return existing

        error = check_amount(amount, ctx)
        if error:
            raise error
        if not self.allow_negative_balance:
            error = check_funds(
                await self.balance(from_user_id), amount, False, ctx,
            )
            if error:
                raise error

        txn = KarmaTransaction(
            engagement_id=engagement_id,
            from_user_id=from_user_id,
            to_user_id=to_user_id,
            amount=amount,
            type=TransactionType.POST_COMPLETION.value,
            description=description,
            related_post_id=related_post_id,
        )
        self.db.add(txn)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            winner = await self.find_for_engagement(engagement_id)
            if winner is None:
                raise
            logger.info(
                "Transfer race lost, returning existing record",
                extra={"engagement_id": str(engagement_id)},
            )
            return winner
        logger.info(
            f"Karma transferred {from_user_id} -> {to_user_id}",
            extra={"engagement_id": str(engagement_id), "amount": amount},
        )
        return txn

    async def grant(
        self,
        user_id: UserId,
        amount: int,
        transaction_type: TransactionType = TransactionType.SYSTEM_BONUS,
        description: str | None = None,
    ) -> KarmaTransaction:
        """System credit (bonus, referral, reward). Not tied to an engagement."""
        error = check_amount(amount, ErrorContext(user_id=user_id))
        if error:
            raise error
        txn = KarmaTransaction(
            from_user_id=None,
            to_user_id=user_id,
            amount=amount,
            type=transaction_type.value,
            description=description,
        )
        self.db.add(txn)
        await self.db.commit()
        logger.info(
            f"Granted {transaction_type.value} karma",
            extra={"user_id": user_id, "amount": amount},
        )
        return txn

    async def find_for_engagement(
        self, engagement_id: EngagementId,
    ) -> KarmaTransaction | None:
        result = await self.db.execute(
            select(KarmaTransaction).where(
                KarmaTransaction.engagement_id == engagement_id,
            ),
        )
        return result.scalar_one_or_none()

    async def balance(self, user_id: UserId) -> int:
        credits = await self.db.scalar(
            select(func.coalesce(func.sum(KarmaTransaction.amount), 0)).where(
                KarmaTransaction.to_user_id == user_id,
            ),
        )
        debits = await self.db.scalar(
            select(func.coalesce(func.sum(KarmaTransaction.amount), 0)).where(
                KarmaTransaction.from_user_id == user_id,
            ),
        )
        return int(credits or 0) - int(debits or 0)

    async def history(
        self, user_id: UserId, limit: int = 20, offset: int = 0,
    ) -> tuple[list[KarmaTransaction], int]:
        """Newest-first transactions touching user_id, plus the total count."""
        involves = (KarmaTransaction.to_user_id == user_id) | (
            KarmaTransaction.from_user_id == user_id
        )
        total = await self.db.scalar(
            select(func.count()).select_from(KarmaTransaction).where(involves),
        )
        result = await self.db.execute(
            select(KarmaTransaction)
            .where(involves)
            .order_by(KarmaTransaction.created_at.desc(), KarmaTransaction.id)
            .limit(limit)
            .offset(offset),
        )
        return list(result.scalars().all()), int(total or 0)
