"""Settlement attempts: task_engagements.settlement_attempted_at.

Revision ID: 002_settlement_attempts
Revises: 001_initial
Create Date: 2026-10-17

Stamped on every failed karma transfer; the reconciliation sweep orders by it.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "002_settlement_attempts"
down_revision: Union[str, None] = "001_initial"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column(
        "task_engagements",
        sa.Column("settlement_attempted_at", sa.DateTime(timezone=True), nullable=True),
    )


def downgrade() -> None:
    op.drop_column("task_engagements", "settlement_attempted_at")
