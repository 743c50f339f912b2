"""Rating ORM: post-completion rating and the per-user running totals.

Invariants:
    - (engagement_id, rater_id) is UNIQUE: one rating per rater per engagement
    - score in 1..5, checked in core/rating_math.py before insert
    - RatingTotals holds (score_sum, rating_count) per ratee; updated in place with
      an atomic increment, never recomputed from history
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, ForeignKey, Integer, JSON, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.dialects.postgresql import UUID

from karmafarm.db.base import Base


class Rating(Base):
    """Immutable rating left by one party of a confirmed engagement."""
    __tablename__ = "ratings"
    __table_args__ = (
        UniqueConstraint("engagement_id", "rater_id", name="uq_rating_engagement_rater"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    engagement_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("task_engagements.id"), nullable=False,
    )
    rater_id: Mapped[str] = mapped_column(String(128), nullable=False)
    ratee_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    score: Mapped[int] = mapped_column(Integer, nullable=False)
    review: Mapped[str | None] = mapped_column(Text, nullable=True)
    tags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )


class RatingTotals(Base):
    """Running (sum, count) for one ratee."""
    __tablename__ = "rating_totals"

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    score_sum: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rating_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
