"""Chat Coordinator: chats, messages, read receipts, typing and presence for one request.

Invariants:
    - One chat per (post, unordered pair); creation races end in a re-read, not a duplicate
    - Messages are append-only; reads are ordered by (created_at, id), stable across calls
    - Only participants read, write, type in, or mark a chat read (NotParticipantError)
    - Realtime events published after the commit they describe
    - Sending a message ends the sender's typing indicator

Design Decisions:
    - Per-request instance (owns the AsyncSession) over the process-wide typing and
      presence coordinators, which hold only ephemeral state
    - Archived chats are reactivated by reuse (get_or_create, send, join) rather than
      duplicated, keeping the one-chat-per-pair invariant
"""

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from karmafarm.core.domain_types import (
    ChatId,
    ChatStatus,
    MessageId,
    PostId,
    RealtimeEventType,
    UserId,
)
from karmafarm.core.errors import (
    EmptyContentError,
    ErrorContext,
    NotParticipantError,
    ResourceNotFoundError,
    SelfChatError,
)
from karmafarm.core.message_ordering import canonical_pair, is_blank
from karmafarm.core.presence import PresenceState
from karmafarm.core.realtime_events import chat_channel
from karmafarm.infrastructure.realtime import RealtimeHub
from karmafarm.models.chat import Chat
from karmafarm.models.message import Message
from karmafarm.schemas.chat import MessageResponse
from karmafarm.services.presence_coordinator import PresenceCoordinator
from karmafarm.services.typing_coordinator import TypingCoordinator

logger = logging.getLogger(__name__)


class ChatCoordinator:
    """Direct chat between the two parties of a post."""

    def __init__(
        self,
        db: AsyncSession,
        hub: RealtimeHub,
        typing: TypingCoordinator,
        presence: PresenceCoordinator,
    ):
        self.db = db
        self.hub = hub
        self.typing = typing
        self.presence = presence

    # ─── Chats ───────────────────────────────────────────────────

    async def get_or_create_chat(
        self, post_id: PostId, user_a: UserId, user_b: UserId,
    ) -> Chat:
        if user_a == user_b:
            raise SelfChatError(str(post_id), ErrorContext(post_id=str(post_id), user_id=user_a))
        first, second = canonical_pair(user_a, user_b)
        chat = await self._find(post_id, first, second)
        if chat is not None:
            if chat.status == ChatStatus.ARCHIVED.value:
                chat.status = ChatStatus.ACTIVE.value
                await self.db.commit()
            return chat

        chat = Chat(post_id=post_id, participant_a=first, participant_b=second)
        self.db.add(chat)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            chat = await self._find(post_id, first, second)
            if chat is None:
                raise
            logger.info("Chat creation raced, using existing", extra={"chat_id": str(chat.id)})
            return chat
        logger.info("Chat opened", extra={"chat_id": str(chat.id), "post_id": str(post_id)})
        return chat

    async def get_chat(self, chat_id: ChatId, user_id: UserId) -> Chat:
        """Chat by id, visible only to its participants."""
        chat = await self.db.get(Chat, chat_id)
        ctx = ErrorContext(chat_id=str(chat_id), user_id=user_id)
        if chat is None:
            raise ResourceNotFoundError("Chat", str(chat_id), ctx)
        if not chat.has_participant(user_id):
            raise NotParticipantError("chat", str(chat_id), ctx)
        return chat

    async def list_chats(
        self, user_id: UserId, include_archived: bool = False,
    ) -> list[tuple[Chat, int]]:
        """User's chats, most recent activity first, each with its unread count."""
        query = select(Chat).where(
            or_(Chat.participant_a == user_id, Chat.participant_b == user_id),
        )
        if not include_archived:
            query = query.where(Chat.status == ChatStatus.ACTIVE.value)
        result = await self.db.execute(
            query.order_by(
                func.coalesce(Chat.last_message_at, Chat.created_at).desc(),
                Chat.id,
            ),
        )
        chats = list(result.scalars().all())
        unread = await self._unread_by_chat(user_id, [c.id for c in chats])
        return [(chat, unread.get(chat.id, 0)) for chat in chats]

    async def archive_chat(self, chat_id: ChatId, user_id: UserId) -> Chat:
        chat = await self.get_chat(chat_id, user_id)
        chat.status = ChatStatus.ARCHIVED.value
        await self.db.commit()
        self.typing.stop(chat.id, user_id)
        return chat

    async def join_chat(self, chat_id: ChatId, user_id: UserId) -> Chat:
        chat = await self.get_chat(chat_id, user_id)
        if chat.status == ChatStatus.ARCHIVED.value:
            chat.status = ChatStatus.ACTIVE.value
            await self.db.commit()
        return chat

    async def leave_chat(self, chat_id: ChatId, user_id: UserId) -> Chat:
        chat = await self.get_chat(chat_id, user_id)
        self.typing.stop(chat.id, user_id)
        return chat

    # ─── Messages ────────────────────────────────────────────────

    async def send_message(
        self, chat_id: ChatId, sender_id: UserId, content: str,
    ) -> Message:
        if is_blank(content):
            raise EmptyContentError(ErrorContext(chat_id=str(chat_id), user_id=sender_id))
        chat = await self.get_chat(chat_id, sender_id)
        now = datetime.now(timezone.utc)
        message = Message(
            id=uuid.uuid4(),
            chat_id=chat.id,
            sender_id=sender_id,
            content=content,
            created_at=now,
        )
        self.db.add(message)
        chat.last_message_at = now
        chat.status = ChatStatus.ACTIVE.value
        await self.db.commit()

        self.typing.stop(chat.id, sender_id)
        self.hub.publish(
            chat_channel(chat.id),
            RealtimeEventType.MESSAGE,
            MessageResponse.model_validate(message).model_dump(mode="json"),
        )
        return message

    async def get_messages(
        self,
        chat_id: ChatId,
        reader_id: UserId,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Message]:
        """Messages oldest first; (created_at, id) is a total order."""
        chat = await self.get_chat(chat_id, reader_id)
        result = await self.db.execute(
            select(Message)
            .where(Message.chat_id == chat.id)
            .order_by(Message.created_at, Message.id)
            .limit(limit)
            .offset(offset),
        )
        return list(result.scalars().all())

    async def mark_read(
        self,
        chat_id: ChatId,
        reader_id: UserId,
        up_to_message_id: MessageId | None = None,
    ) -> int:
        """Stamp read_at on the peer's unread messages (up to a message, inclusive)."""
        chat = await self.get_chat(chat_id, reader_id)
        conditions = [
            Message.chat_id == chat.id,
            Message.sender_id != reader_id,
            Message.read_at.is_(None),
        ]
        if up_to_message_id is not None:
            target = await self.db.get(Message, up_to_message_id)
            if target is None or target.chat_id != chat.id:
                raise ResourceNotFoundError(
                    "Message", str(up_to_message_id),
                    ErrorContext(chat_id=str(chat_id), user_id=reader_id),
                )
            conditions.append(
                or_(
                    Message.created_at < target.created_at,
                    and_(
                        Message.created_at == target.created_at,
                        Message.id <= target.id,
                    ),
                ),
            )
        read_at = datetime.now(timezone.utc)
        result = await self.db.execute(
            update(Message)
            .where(*conditions)
            .values(read_at=read_at)
            .execution_options(synchronize_session=False),
        )
        await self.db.commit()
        count = result.rowcount or 0
        if count:
            self.hub.publish(
                chat_channel(chat.id),
                RealtimeEventType.READ,
                {
                    "chat_id": str(chat.id),
                    "reader_id": reader_id,
                    "read_at": read_at.isoformat(),
                    "up_to_message_id": (
                        str(up_to_message_id) if up_to_message_id else None
                    ),
                    "count": count,
                },
            )
        return count

    async def unread_count(self, user_id: UserId) -> int:
        """Unread messages across all of the user's chats."""
        total = await self.db.scalar(
            select(func.count(Message.id))
            .join(Chat, Chat.id == Message.chat_id)
            .where(
                or_(Chat.participant_a == user_id, Chat.participant_b == user_id),
                Message.sender_id != user_id,
                Message.read_at.is_(None),
            ),
        )
        return int(total or 0)

    # ─── Typing & presence ───────────────────────────────────────

    async def set_typing(self, chat_id: ChatId, user_id: UserId, is_typing: bool) -> bool:
        """Returns True if an event was published."""
        chat = await self.get_chat(chat_id, user_id)
        if is_typing:
            return self.typing.start(chat.id, user_id)
        return self.typing.stop(chat.id, user_id)

    def set_online(
        self, user_id: UserId, at: datetime | None = None,
    ) -> tuple[PresenceState | None, bool]:
        return self.presence.set_online(user_id, at)

    def set_offline(
        self, user_id: UserId, last_seen_at: datetime | None = None,
    ) -> tuple[PresenceState | None, bool]:
        return self.presence.set_offline(user_id, last_seen_at)

    # ─── Internals ───────────────────────────────────────────────

    async def _find(self, post_id: PostId, first: str, second: str) -> Chat | None:
        result = await self.db.execute(
            select(Chat).where(
                Chat.post_id == post_id,
                Chat.participant_a == first,
                Chat.participant_b == second,
            ),
        )
        return result.scalar_one_or_none()

    async def _unread_by_chat(
        self, user_id: UserId, chat_ids: list[uuid.UUID],
    ) -> dict[uuid.UUID, int]:
        if not chat_ids:
            return {}
        result = await self.db.execute(
            select(Message.chat_id, func.count(Message.id))
            .where(
                Message.chat_id.in_(chat_ids),
                Message.sender_id != user_id,
                Message.read_at.is_(None),
            )
            .group_by(Message.chat_id),
        )
        return {chat_id: count for chat_id, count in result.all()}
