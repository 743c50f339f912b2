"""KarmaTransaction ORM: append-only ledger entry.

Invariants:
    - Rows are immutable once inserted; no UPDATE or DELETE path exists
    - engagement_id is UNIQUE: the idempotency key for completion transfers
    - from_user_id is NULL only for system credits (bonus, referral, reward)
    - amount > 0; direction is expressed by from/to, never by sign
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.dialects.postgresql import UUID

from karmafarm.db.base import Base


class KarmaTransaction(Base):
    """Ledger entry moving karma from one user to another."""
    __tablename__ = "karma_transactions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    engagement_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("task_engagements.id"),
        nullable=True, unique=True,
    )
    from_user_id: Mapped[str | None] = mapped_column(
        String(128), nullable=True, index=True,
    )
    to_user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[str] = mapped_column(
        String(30), nullable=False, default="post_completion",
    )
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    related_post_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
