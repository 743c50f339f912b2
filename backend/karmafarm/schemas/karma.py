"""Karma Schemas: balance and ledger history responses."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from karmafarm.core.domain_types import TransactionType


class KarmaTransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    engagement_id: UUID | None = None
    from_user_id: str | None = None
    to_user_id: str
    amount: int
    type: TransactionType
    description: str | None = None
    related_post_id: UUID | None = None
    created_at: datetime


class KarmaAccountResponse(BaseModel):
    user_id: str
    balance: int
    transactions: list[KarmaTransactionResponse]
    total: int
    limit: int
    offset: int
