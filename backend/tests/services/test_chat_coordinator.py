"""Chat Coordinator: tests for chat identity, message order, receipts and access.

Invariants:
    - One chat per (post, unordered pair)
    - Messages come back in (created_at, id) order, identical across fetches
    - Non-participants are refused everywhere
"""

import uuid
from datetime import datetime, timezone

import pytest
from sqlalchemy import update

from karmafarm.core.domain_types import ChatStatus, RealtimeEventType
from karmafarm.core.errors import (
    EmptyContentError,
    NotParticipantError,
    ResourceNotFoundError,
    SelfChatError,
)
from karmafarm.core.realtime_events import chat_channel
from karmafarm.models.message import Message
from karmafarm.services.chat_coordinator import ChatCoordinator
from karmafarm.services.presence_coordinator import PresenceCoordinator
from karmafarm.services.typing_coordinator import TypingCoordinator


@pytest.fixture
def chats(test_db, hub):
    typing = TypingCoordinator(hub, timeout=5.0, debounce=0.5)
    yield ChatCoordinator(test_db, hub, typing, PresenceCoordinator(hub))
    typing.close()


@pytest.fixture
async def chat(chats, karma_post):
    return await chats.get_or_create_chat(karma_post.id, "bob", "alice")


async def test_chat_pair_is_canonical(chat):
    assert (chat.participant_a, chat.participant_b) == ("alice", "bob")


async def test_same_pair_reuses_chat(chats, chat, karma_post):
    again = await chats.get_or_create_chat(karma_post.id, "alice", "bob")
    assert again.id == chat.id


async def test_chat_with_self_rejected(chats, karma_post):
    with pytest.raises(SelfChatError):
        await chats.get_or_create_chat(karma_post.id, "alice", "alice")


async def test_outsider_cannot_read_or_write(chats, chat):
    with pytest.raises(NotParticipantError):
        await chats.get_messages(chat.id, "mallory")
    with pytest.raises(NotParticipantError):
        await chats.send_message(chat.id, "mallory", "hi")


async def test_unknown_chat_not_found(chats):
    with pytest.raises(ResourceNotFoundError):
        await chats.get_chat(uuid.uuid4(), "alice")


async def test_blank_message_rejected(chats, chat):
    with pytest.raises(EmptyContentError):
        await chats.send_message(chat.id, "alice", "   ")


async def test_send_publishes_and_updates_chat(chats, chat, hub):
    sub = hub.subscribe([chat_channel(chat.id)])
    message = await chats.send_message(chat.id, "bob", "On my way")

    event = await sub.get(timeout=1)
    assert event.type == RealtimeEventType.MESSAGE
    assert event.data["id"] == str(message.id)
    assert event.data["content"] == "On my way"
    assert chat.last_message_at is not None


async def test_messages_ordered_oldest_first(chats, chat):
    for text in ("one", "two", "three"):
        await chats.send_message(chat.id, "alice", text)
    messages = await chats.get_messages(chat.id, "bob")
    assert [m.content for m in messages] == ["one", "two", "three"]


async def test_identical_timestamps_order_by_id(chats, chat, test_db):
    sent = [await chats.send_message(chat.id, "alice", f"m{n}") for n in range(4)]
    skewed = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    await test_db.execute(
        update(Message)
        .where(Message.chat_id == chat.id)
        .values(created_at=skewed)
        .execution_options(synchronize_session=False),
    )
    await test_db.commit()
    test_db.expire_all()

    first = await chats.get_messages(chat.id, "bob")
    second = await chats.get_messages(chat.id, "bob")
    assert [m.id for m in first] == [m.id for m in second]
    assert [m.id for m in first] == sorted(m.id for m in sent)


async def test_pagination(chats, chat):
    for n in range(5):
        await chats.send_message(chat.id, "alice", f"m{n}")
    page = await chats.get_messages(chat.id, "bob", limit=2, offset=2)
    assert [m.content for m in page] == ["m2", "m3"]


async def test_mark_read_counts_only_peer_messages(chats, chat, hub):
    await chats.send_message(chat.id, "alice", "hello")
    await chats.send_message(chat.id, "alice", "are you there?")
    await chats.send_message(chat.id, "bob", "yes")
    assert await chats.unread_count("bob") == 2

    sub = hub.subscribe([chat_channel(chat.id)])
    assert await chats.mark_read(chat.id, "bob") == 2
    assert await chats.unread_count("bob") == 0
    event = await sub.get(timeout=1)
    assert event.type == RealtimeEventType.READ
    assert event.data["reader_id"] == "bob"


async def test_mark_read_up_to_message(chats, chat):
    first = await chats.send_message(chat.id, "alice", "one")
    await chats.send_message(chat.id, "alice", "two")
    assert await chats.mark_read(chat.id, "bob", first.id) == 1
    assert await chats.unread_count("bob") == 1


async def test_mark_read_with_foreign_message_not_found(chats, chat):
    with pytest.raises(ResourceNotFoundError):
        await chats.mark_read(chat.id, "bob", uuid.uuid4())


async def test_list_chats_with_unread(chats, chat, make_post):
    other_post = await make_post(owner_id="carol")
    other = await chats.get_or_create_chat(other_post.id, "carol", "bob")
    await chats.send_message(other.id, "carol", "ping")

    rows = await chats.list_chats("bob")
    assert [c.id for c, _ in rows][0] == other.id
    assert dict((c.id, n) for c, n in rows) == {other.id: 1, chat.id: 0}


async def test_archive_hides_chat_until_reused(chats, chat, karma_post):
    await chats.archive_chat(chat.id, "alice")
    assert await chats.list_chats("alice") == []
    assert len(await chats.list_chats("alice", include_archived=True)) == 1

    reopened = await chats.get_or_create_chat(karma_post.id, "alice", "bob")
    assert reopened.id == chat.id
    assert reopened.status == ChatStatus.ACTIVE.value


async def test_join_reactivates_archived_chat(chats, chat):
    await chats.archive_chat(chat.id, "bob")
    joined = await chats.join_chat(chat.id, "bob")
    assert joined.status == ChatStatus.ACTIVE.value


async def test_sending_stops_typing(chats, chat, hub):
    assert await chats.set_typing(chat.id, "bob", True)
    assert chats.typing.is_typing(chat.id, "bob")
    await chats.send_message(chat.id, "bob", "done typing")
    assert not chats.typing.is_typing(chat.id, "bob")


async def test_leave_stops_typing(chats, chat):
    await chats.set_typing(chat.id, "bob", True)
    await chats.leave_chat(chat.id, "bob")
    assert not chats.typing.is_typing(chat.id, "bob")


async def test_outsider_cannot_type(chats, chat):
    with pytest.raises(NotParticipantError):
        await chats.set_typing(chat.id, "mallory", True)
