"""SQL Post Registry: reads posts into validated snapshots and records completion.

Invariants:
    - get_post() returns a PostSnapshot or raises (ResourceNotFoundError, InvalidPostError)
    - set_post_status() never commits: the caller's transaction owns the write
"""

import logging

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from karmafarm.core.domain_types import PostId, PostStatus
from karmafarm.core.errors import ErrorContext, ResourceNotFoundError
from karmafarm.core.repository_protocols import PostSnapshot
from karmafarm.models.post import Post

logger = logging.getLogger(__name__)


class SqlPostRegistry:
    """PostRegistry over the shared `posts` table."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_post(self, post_id: PostId) -> PostSnapshot:
        result = await self.db.execute(select(Post).where(Post.id == post_id))
        post = result.scalar_one_or_none()
        if post is None:
            raise ResourceNotFoundError(
                "Post", str(post_id), ErrorContext(post_id=str(post_id)),
            )
        return PostSnapshot.from_record(
            id=PostId(post.id),
            owner_id=post.owner_id,
            is_request=post.is_request,
            reward_type=post.reward_type,
            karma_value=post.karma_value,
            payment_amount=post.payment_amount,
            status=post.status,
        )

    async def set_post_status(self, post_id: PostId, status: PostStatus) -> None:
        await self.db.execute(
            update(Post).where(Post.id == post_id).values(status=status.value),
        )
        logger.debug(f"Post {post_id} status -> {status.value}")
