"""Boundary Protocols: contracts between core and the external collaborators.

Invariants:
    - Core NEVER imports from shell; dependency arrows point inward only
    - PostRegistry returns validated PostSnapshot values, never raw rows
    - Implementations provided by shell via dependency injection

Design Decisions:
    - Protocol over ABC: structural subtyping, test doubles need no inheritance
    - PostSnapshot is frozen and validated once in from_record(): optional fields
      (payment_amount) are resolved at the boundary, the engine never re-checks them
"""

from dataclasses import dataclass
from typing import Protocol

from karmafarm.core.domain_types import PostId, PostStatus, RewardType, UserId
from karmafarm.core.errors import InvalidPostError


@dataclass(frozen=True)
class PostSnapshot:
    """Read-only view of a post, as much of it as the engine needs."""
    id: PostId
    owner_id: UserId
    is_request: bool
    reward_type: RewardType
    karma_value: int
    payment_amount: float | None
    status: PostStatus

    @property
    def settles_in_karma(self) -> bool:
        return self.reward_type == RewardType.KARMA

    @classmethod
    def from_record(
        cls,
        *,
        id: PostId,
        owner_id: str | None,
        is_request: bool,
        reward_type: str,
        karma_value: int | None,
        payment_amount: float | None,
        status: str,
    ) -> "PostSnapshot":
        """Validate required fields and build the snapshot."""
        if not owner_id:
            raise InvalidPostError(str(id), "missing owner")
        try:
            reward = RewardType(reward_type)
            post_status = PostStatus(status)
        except ValueError as e:
            raise InvalidPostError(str(id), str(e))
        if reward == RewardType.KARMA and (karma_value is None or karma_value <= 0):
            raise InvalidPostError(str(id), "karma post requires positive karma_value")
        if reward == RewardType.CASH and payment_amount is None:
            raise InvalidPostError(str(id), "cash post requires payment_amount")
        return cls(
            id=id,
            owner_id=UserId(owner_id),
            is_request=is_request,
            reward_type=reward,
            karma_value=karma_value or 0,
            payment_amount=payment_amount,
            status=post_status,
        )


class IdentityProvider(Protocol):
    """Server-side contract: turns an opaque bearer credential into a user id."""
    def verify(self, token: str) -> UserId: ...


class CredentialSource(Protocol):
    """Client-side contract: yields the credential and the signed-in user."""
    async def get_bearer_token(self) -> str: ...
    def current_user_id(self) -> UserId: ...


class PostRegistry(Protocol):
    """Contract for the externally owned post store."""
    async def get_post(self, post_id: PostId) -> PostSnapshot: ...
    async def set_post_status(self, post_id: PostId, status: PostStatus) -> None: ...
