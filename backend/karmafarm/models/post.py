"""Post ORM: the slice of the externally owned post record the coordination core reads.

Invariants:
    - owner_id, reward_type and status are non-nullable
    - karma_value > 0 for karma posts, payment_amount set for cash posts
      (enforced when read, by PostSnapshot.from_record, not by the schema)
    - The core writes only `status`, and only on completion

Design Decisions:
    - Kept minimal: post CRUD (title/body/location/images) belongs to the post service
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Float, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.dialects.postgresql import UUID

from karmafarm.db.base import Base


class Post(Base):
    """Help request or offer that can be accepted by another user."""
    __tablename__ = "posts"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    owner_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    is_request: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    reward_type: Mapped[str] = mapped_column(
        String(10), nullable=False, default="karma",
    )
    karma_value: Mapped[int | None] = mapped_column(Integer, nullable=True)
    payment_amount: Mapped[float | None] = mapped_column(Float, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="active",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
