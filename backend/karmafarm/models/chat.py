"""Chat ORM: a conversation between two users about one post.

Invariants:
    - participant_a <= participant_b (canonical order, core/message_ordering.canonical_pair)
    - (post_id, participant_a, participant_b) is UNIQUE: one chat per post and pair
    - Chats are never deleted, only archived
    - last_message_at moves forward with every message

Design Decisions:
    - Messages loaded by explicit ordered query, not a relationship collection:
      ordering (created_at, id) must be applied on every read
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.dialects.postgresql import UUID

from karmafarm.db.base import Base


class Chat(Base):
    """Direct chat tied to a post engagement."""
    __tablename__ = "chats"
    __table_args__ = (
        UniqueConstraint(
            "post_id", "participant_a", "participant_b", name="uq_chat_post_pair",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    post_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    participant_a: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    participant_b: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    last_message_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def has_participant(self, user_id: str) -> bool:
        return user_id in (self.participant_a, self.participant_b)

    def other_participant(self, user_id: str) -> str:
        return self.participant_b if user_id == self.participant_a else self.participant_a
