"""Initial schema: posts, task_engagements, karma_transactions, ratings, chats, messages.

Revision ID: 001_initial
Revises: None
Create Date: 2026-10-17

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "posts",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("owner_id", sa.String(128), nullable=False, index=True),
        sa.Column("title", sa.String(200), nullable=False, server_default=""),
        sa.Column("is_request", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("reward_type", sa.String(10), nullable=False, server_default="karma"),
        sa.Column("karma_value", sa.Integer, nullable=True),
        sa.Column("payment_amount", sa.Float, nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "task_engagements",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("post_id", UUID(as_uuid=True), sa.ForeignKey("posts.id"), nullable=False, index=True),
        sa.Column("active_post_id", UUID(as_uuid=True), nullable=True, unique=True),
        sa.Column("owner_id", sa.String(128), nullable=False, index=True),
        sa.Column("fulfiller_id", sa.String(128), nullable=False, index=True),
        sa.Column("status", sa.String(30), nullable=False, server_default="in_progress"),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        sa.Column("proposed_completion_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("acceptance_message", sa.Text, nullable=True),
        sa.Column("completion_notes", sa.Text, nullable=True),
        sa.Column("dispute_reason", sa.Text, nullable=True),
        sa.Column("disputed_by", sa.String(128), nullable=True),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("disputed_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "karma_transactions",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "engagement_id", UUID(as_uuid=True), sa.ForeignKey("task_engagements.id"),
            nullable=True, unique=True,
        ),
        sa.Column("from_user_id", sa.String(128), nullable=True, index=True),
        sa.Column("to_user_id", sa.String(128), nullable=False, index=True),
        sa.Column("amount", sa.Integer, nullable=False),
        sa.Column("type", sa.String(30), nullable=False, server_default="post_completion"),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("related_post_id", UUID(as_uuid=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("amount > 0", name="ck_karma_amount_positive"),
    )

    op.create_table(
        "ratings",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "engagement_id", UUID(as_uuid=True), sa.ForeignKey("task_engagements.id"),
            nullable=False,
        ),
        sa.Column("rater_id", sa.String(128), nullable=False),
        sa.Column("ratee_id", sa.String(128), nullable=False, index=True),
        sa.Column("score", sa.Integer, nullable=False),
        sa.Column("review", sa.Text, nullable=True),
        sa.Column("tags", sa.JSON, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("engagement_id", "rater_id", name="uq_rating_engagement_rater"),
        sa.CheckConstraint("score BETWEEN 1 AND 5", name="ck_rating_score_range"),
    )

    op.create_table(
        "rating_totals",
        sa.Column("user_id", sa.String(128), primary_key=True),
        sa.Column("score_sum", sa.Integer, nullable=False, server_default="0"),
        sa.Column("rating_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "chats",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("post_id", UUID(as_uuid=True), nullable=False),
        sa.Column("participant_a", sa.String(128), nullable=False, index=True),
        sa.Column("participant_b", sa.String(128), nullable=False, index=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("last_message_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint(
            "post_id", "participant_a", "participant_b", name="uq_chat_post_pair",
        ),
    )

    op.create_table(
        "messages",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("chat_id", UUID(as_uuid=True), sa.ForeignKey("chats.id"), nullable=False),
        sa.Column("sender_id", sa.String(128), nullable=False),
        sa.Column("content", sa.Text, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_messages_chat_order", "messages", ["chat_id", "created_at", "id"],
    )


def downgrade() -> None:
    op.drop_index("ix_messages_chat_order", table_name="messages")
    op.drop_table("messages")
    op.drop_table("chats")
    op.drop_table("rating_totals")
    op.drop_table("ratings")
    op.drop_table("karma_transactions")
    op.drop_table("task_engagements")
    op.drop_table("posts")
