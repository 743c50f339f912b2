"""Rating Schemas: rating submission and per-user summaries.

Invariants:
    - score is an int; range 1..5 is checked by core/rating_math.py so the API
      and direct service callers get the same InvalidScoreError
    - tags are HelpfulnessTag values, de-duplicated in submission order
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from karmafarm.core.domain_types import HelpfulnessTag


class RatingCreate(BaseModel):
    score: int = Field(strict=True)
    review: str | None = Field(None, max_length=2_000)
    tags: list[HelpfulnessTag] = Field(default_factory=list)
    ratee_id: str | None = None

    @field_validator("tags")
    @classmethod
    def dedupe_tags(cls, v: list[HelpfulnessTag]) -> list[HelpfulnessTag]:
        return list(dict.fromkeys(v))

    @field_validator("review")
    @classmethod
    def strip_review(cls, v: str | None) -> str | None:
        if v is None:
            return None
        return v.strip() or None


class RatingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    engagement_id: UUID
    rater_id: str
    ratee_id: str
    score: int
    review: str | None = None
    tags: list[HelpfulnessTag]
    created_at: datetime


class RatingSummaryResponse(BaseModel):
    user_id: str
    score_sum: int
    rating_count: int
    average: float | None
    display_average: float | None
