"""Engagement Schemas: request bodies and responses for the completion handshake.

Invariants:
    - Free-text fields are stripped; blank strings become None
    - expected_status is optional caller intent; when given, a mismatch is a 409
    - DisputeRequest.reason is required and non-blank
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from karmafarm.core.domain_types import EngagementStatus, SettlementStatus


def _strip_or_none(v: str | None) -> str | None:
    if v is None:
        return None
    v = v.strip()
    return v or None


class AcceptTaskRequest(BaseModel):
    """Fulfiller offers to take a post."""
    proposed_completion_date: datetime | None = None
    message: str | None = Field(None, max_length=2_000)

    @field_validator("message")
    @classmethod
    def strip_message(cls, v: str | None) -> str | None:
        return _strip_or_none(v)


class MarkCompletedRequest(BaseModel):
    notes: str | None = Field(None, max_length=2_000)
    expected_status: EngagementStatus | None = None

    @field_validator("notes")
    @classmethod
    def strip_notes(cls, v: str | None) -> str | None:
        return _strip_or_none(v)


class ConfirmRequest(BaseModel):
    expected_status: EngagementStatus | None = None


class DisputeRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=2_000)
    expected_status: EngagementStatus | None = None

    @field_validator("reason")
    @classmethod
    def strip_reason(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("reason cannot be empty or whitespace")
        return v


class EngagementResponse(BaseModel):
    """Public view of a TaskEngagement row."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    post_id: UUID
    owner_id: str
    fulfiller_id: str
    status: EngagementStatus
    version: int
    proposed_completion_date: datetime | None = None
    acceptance_message: str | None = None
    completion_notes: str | None = None
    dispute_reason: str | None = None
    disputed_by: str | None = None
    accepted_at: datetime
    completed_at: datetime | None = None
    confirmed_at: datetime | None = None
    disputed_at: datetime | None = None


class SettlementResponse(BaseModel):
    status: SettlementStatus
    transaction_id: UUID | None = None
    amount: int | None = None
    warning: str | None = None


class AcceptTaskResponse(BaseModel):
    engagement: EngagementResponse
    chat_id: UUID


class ConfirmResponse(BaseModel):
    engagement: EngagementResponse
    settlement: SettlementResponse
