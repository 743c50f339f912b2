"""TaskEngagement ORM: one fulfiller's engagement with one post.

Invariants:
    - status follows the engagement state machine (core/engagement_transitions.py)
    - active_post_id == post_id while active, NULL once terminal; its UNIQUE constraint
      is the per-post slot, so at most one active engagement exists per post
    - version increments on every transition (CAS guard together with status)
    - Rows are never deleted; terminal engagements are kept for audit and rating

Design Decisions:
    - Slot as a nullable unique column instead of a partial index: portable across
      PostgreSQL and SQLite (multiple NULLs never collide)
    - owner_id denormalized from the post at accept time: role checks need no JOIN
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.dialects.postgresql import UUID

from karmafarm.db.base import Base


class TaskEngagement(Base):
    """Engagement aggregate, mutated only through the state machine."""
    __tablename__ = "task_engagements"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    post_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("posts.id"), nullable=False, index=True,
    )
    active_post_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), nullable=True, unique=True,
    )
    owner_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    fulfiller_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    status: Mapped[str] = mapped_column(
        String(30), nullable=False, default="in_progress",
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    proposed_completion_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    acceptance_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    completion_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    dispute_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    disputed_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    accepted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    confirmed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    disputed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    settlement_attempted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
