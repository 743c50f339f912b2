"""Task Completion Engine: tests for the engagement lifecycle and its settlement step.

Invariants:
    - One active engagement per post, also under concurrent accepts
    - Illegal or stale moves raise and leave the stored state unchanged
    - Confirmation settles exactly once; a failed transfer still confirms
    - Events are published to both parties after each commit
"""

import asyncio
import uuid

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from karmafarm.core.domain_types import (
    EngagementStatus,
    PostStatus,
    RealtimeEventType,
    SettlementStatus,
)
from karmafarm.core.errors import (
    AlreadyEngagedError,
    IllegalTransitionError,
    PostUnavailableError,
    ResourceNotFoundError,
    SelfEngagementError,
    StateConflictError,
)
from karmafarm.core.realtime_events import user_channel
from karmafarm.models.karma_transaction import KarmaTransaction
from karmafarm.models.post import Post
from karmafarm.models.task_engagement import TaskEngagement


async def _transactions(db, engagement_id) -> list[KarmaTransaction]:
    result = await db.execute(
        select(KarmaTransaction).where(KarmaTransaction.engagement_id == engagement_id),
    )
    return list(result.scalars().all())


async def _awaiting(engine, post) -> TaskEngagement:
    engagement = await engine.accept_task(post.id, "bob")
    return await engine.mark_completed(engagement.id, "bob", "done")


async def _drain(sub) -> list:
    events = []
    while (event := await sub.get(timeout=0.05)) is not None:
        events.append(event)
    return events


def _settlements(events) -> list[dict]:
    return [e.data for e in events if e.type == RealtimeEventType.SETTLEMENT]


# ─── Accept ──────────────────────────────────────────────────────

async def test_full_lifecycle_scenario(engine, make_post, test_db):
    """Accept, reject a second taker, complete, confirm, and refuse a second confirm."""
    post = await make_post(owner_id="u1", karma_value=20)

    engagement = await engine.accept_task(post.id, "u2")
    assert engagement.status == EngagementStatus.IN_PROGRESS.value

    with pytest.raises(AlreadyEngagedError):
        await engine.accept_task(post.id, "u3")

    engagement = await engine.mark_completed(engagement.id, "u2")
    assert engagement.status == EngagementStatus.AWAITING_CONFIRMATION.value

    engagement, outcome = await engine.confirm_completion(engagement.id, "u1")
    assert engagement.status == EngagementStatus.CONFIRMED.value
    assert outcome.status == SettlementStatus.SETTLED
    assert outcome.amount == 20

    [txn] = await _transactions(test_db, engagement.id)
    assert (txn.from_user_id, txn.to_user_id, txn.amount) == ("u1", "u2", 20)

    with pytest.raises(IllegalTransitionError):
        await engine.confirm_completion(engagement.id, "u1")
    assert len(await _transactions(test_db, engagement.id)) == 1


async def test_accept_sets_slot_and_owner(engine, karma_post):
    engagement = await engine.accept_task(karma_post.id, "bob", message="On it")
    assert engagement.active_post_id == karma_post.id
    assert engagement.owner_id == "alice"
    assert engagement.acceptance_message == "On it"
    assert engagement.version == 1


async def test_owner_cannot_accept_own_post(engine, karma_post):
    with pytest.raises(SelfEngagementError):
        await engine.accept_task(karma_post.id, "alice")


async def test_cannot_accept_completed_post(engine, make_post):
    post = await make_post(status="completed")
    with pytest.raises(PostUnavailableError):
        await engine.accept_task(post.id, "bob")


async def test_accept_unknown_post_is_not_found(engine):
    with pytest.raises(ResourceNotFoundError):
        await engine.accept_task(uuid.uuid4(), "bob")


async def test_post_can_be_taken_again_after_dispute(engine, karma_post):
    first = await engine.accept_task(karma_post.id, "bob")
    disputed = await engine.dispute(first.id, "alice", "No show")
    assert disputed.active_post_id is None

    second = await engine.accept_task(karma_post.id, "carol")
    assert second.status == EngagementStatus.IN_PROGRESS.value


async def test_concurrent_accepts_have_exactly_one_winner(race_factory, build_engine):
    async with race_factory() as db:
        post = Post(owner_id="alice", reward_type="karma", karma_value=5)
        db.add(post)
        await db.commit()
        post_id = post.id

    async def attempt(user_id: str):
        async with race_factory() as db:
            return await build_engine(db).accept_task(post_id, user_id)

    results = await asyncio.gather(
        *(attempt(f"user-{n}") for n in range(5)), return_exceptions=True,
    )
    winners = [r for r in results if isinstance(r, TaskEngagement)]
    losers = [r for r in results if isinstance(r, AlreadyEngagedError)]
    assert len(winners) == 1
    assert len(losers) == 4

    async with race_factory() as db:
        active = await db.scalar(
            select(func.count()).select_from(TaskEngagement)
            .where(TaskEngagement.active_post_id == post_id),
        )
    assert active == 1


# ─── Transitions ─────────────────────────────────────────────────

async def test_confirm_while_in_progress_is_illegal(engine, karma_post, test_db):
    engagement = await engine.accept_task(karma_post.id, "bob")
    with pytest.raises(IllegalTransitionError):
        await engine.confirm_completion(engagement.id, "alice")

    await test_db.refresh(engagement)
    assert engagement.status == EngagementStatus.IN_PROGRESS.value
    assert engagement.version == 1


async def test_confirm_on_pending_is_illegal(engine, karma_post, test_db):
    engagement = TaskEngagement(
        post_id=karma_post.id, owner_id="alice", fulfiller_id="bob",
        status=EngagementStatus.PENDING.value,
    )
    test_db.add(engagement)
    await test_db.commit()

    with pytest.raises(IllegalTransitionError):
        await engine.confirm_completion(engagement.id, "alice")
    await test_db.refresh(engagement)
    assert engagement.status == EngagementStatus.PENDING.value


async def test_fulfiller_cannot_confirm(engine, karma_post):
    engagement = await _awaiting(engine, karma_post)
    with pytest.raises(IllegalTransitionError):
        await engine.confirm_completion(engagement.id, "bob")


async def test_owner_cannot_mark_completed(engine, karma_post):
    engagement = await engine.accept_task(karma_post.id, "bob")
    with pytest.raises(IllegalTransitionError):
        await engine.mark_completed(engagement.id, "alice")


async def test_outsider_cannot_dispute(engine, karma_post):
    engagement = await engine.accept_task(karma_post.id, "bob")
    with pytest.raises(IllegalTransitionError):
        await engine.dispute(engagement.id, "mallory", "not mine")


async def test_mark_completed_records_notes_and_bumps_version(engine, karma_post):
    engagement = await engine.accept_task(karma_post.id, "bob")
    engagement = await engine.mark_completed(engagement.id, "bob", "Couch moved")
    assert engagement.completion_notes == "Couch moved"
    assert engagement.completed_at is not None
    assert engagement.version == 2


async def test_stale_expected_status_conflicts(engine, karma_post):
    engagement = await engine.accept_task(karma_post.id, "bob")
    await engine.dispute(engagement.id, "bob", "Can't make it")
    with pytest.raises(StateConflictError):
        await engine.mark_completed(
            engagement.id, "bob", expected_status=EngagementStatus.IN_PROGRESS,
        )


async def test_concurrent_writer_loses_with_conflict(
    engine, karma_post, test_session_factory, build_engine,
):
    """A transition computed against a stale version matches zero rows."""
    engagement = await _awaiting(engine, karma_post)

    async with test_session_factory() as other_db:
        other = build_engine(other_db)
        stale = await other.get_engagement(engagement.id)
        assert stale.status == EngagementStatus.AWAITING_CONFIRMATION.value

        await engine.dispute(engagement.id, "bob", "Changed my mind")

        # `other` still holds the pre-dispute row in its identity map
        with pytest.raises((StateConflictError, IllegalTransitionError)):
            await other.confirm_completion(engagement.id, "alice")


async def test_dispute_records_reason_and_actor(engine, karma_post):
    engagement = await _awaiting(engine, karma_post)
    engagement = await engine.dispute(engagement.id, "alice", "Couch is broken")
    assert engagement.status == EngagementStatus.DISPUTED.value
    assert engagement.dispute_reason == "Couch is broken"
    assert engagement.disputed_by == "alice"


async def test_confirm_completes_post(engine, karma_post, test_db):
    engagement = await _awaiting(engine, karma_post)
    await engine.confirm_completion(engagement.id, "alice")
    await test_db.refresh(karma_post)
    assert karma_post.status == PostStatus.COMPLETED.value


# ─── Settlement ──────────────────────────────────────────────────

async def test_cash_post_settlement_not_applicable(engine, make_post, test_db):
    post = await make_post(reward_type="cash", karma_value=None, payment_amount=30.0)
    engagement = await _awaiting(engine, post)
    engagement, outcome = await engine.confirm_completion(engagement.id, "alice")
    assert outcome.status == SettlementStatus.NOT_APPLICABLE
    assert await _transactions(test_db, engagement.id) == []


async def test_failed_transfer_still_confirms(
    test_db, hub, karma_post, build_engine, caplog,
):
    engine = build_engine(test_db, hub, allow_negative_balance=False)
    engagement = await _awaiting(engine, karma_post)

    engagement, outcome = await engine.confirm_completion(engagement.id, "alice")

    assert engagement.status == EngagementStatus.CONFIRMED.value
    assert outcome.status == SettlementStatus.FAILED
    assert "Insufficient karma" in outcome.warning
    assert any(
        r.levelname == "ERROR" and "unsettled" in r.getMessage() for r in caplog.records
    )


async def test_settle_retries_failed_transfer(test_db, hub, karma_post, build_engine):
    strict = build_engine(test_db, hub, allow_negative_balance=False)
    engagement = await _awaiting(strict, karma_post)
    _, outcome = await strict.confirm_completion(engagement.id, "alice")
    assert outcome.status == SettlementStatus.FAILED

    await strict.ledger.grant("alice", 50)
    outcome = await strict.settle(engagement.id, "bob")
    assert outcome.status == SettlementStatus.SETTLED

    again = await strict.settle(engagement.id, "alice")
    assert again.transaction_id == outcome.transaction_id


async def test_settle_requires_confirmation(engine, karma_post):
    engagement = await engine.accept_task(karma_post.id, "bob")
    with pytest.raises(IllegalTransitionError):
        await engine.settle(engagement.id, "alice")


async def test_find_unsettled_lists_only_karma_confirmations(
    test_db, hub, make_post, build_engine,
):
    strict = build_engine(test_db, hub, allow_negative_balance=False)
    karma = await make_post()
    cash = await make_post(reward_type="cash", karma_value=None, payment_amount=5.0)
    for post in (karma, cash):
        engagement = await _awaiting(strict, post)
        await strict.confirm_completion(engagement.id, "alice")

    unsettled = await strict.find_unsettled()
    assert [e.post_id for e in unsettled] == [karma.id]


async def test_concurrent_settle_creates_one_transaction(
    race_factory, build_engine,
):
    async with race_factory() as db:
        post = Post(owner_id="alice", reward_type="karma", karma_value=7)
        db.add(post)
        await db.commit()
        strict = build_engine(db, allow_negative_balance=False)
        engagement = await strict.accept_task(post.id, "bob")
        await strict.mark_completed(engagement.id, "bob")
        await strict.confirm_completion(engagement.id, "alice")
        engagement_id = engagement.id

    async def settle():
        async with race_factory() as db:
            return await build_engine(db).settle(engagement_id, "alice")

    outcomes = await asyncio.gather(*(settle() for _ in range(4)))
    assert {o.status for o in outcomes} == {SettlementStatus.SETTLED}
    assert len({o.transaction_id for o in outcomes}) == 1


async def test_transfer_database_error_reports_failed_outcome(
    engine, karma_post, hub, monkeypatch,
):
    owner = hub.subscribe([user_channel("alice")])
    engagement = await _awaiting(engine, karma_post)

    async def locked(*args, **kwargs):
        raise OperationalError(
            "INSERT INTO karma_transactions", {}, Exception("database is locked"),
        )
    monkeypatch.setattr(engine.ledger, "transfer", locked)

    confirmed, outcome = await engine.confirm_completion(engagement.id, "alice")

    assert confirmed.status == EngagementStatus.CONFIRMED.value
    assert outcome.status == SettlementStatus.FAILED
    [settlement] = _settlements(await _drain(owner))
    assert settlement["engagement_id"] == str(confirmed.id)
    assert settlement["status"] == SettlementStatus.FAILED.value


async def test_lost_transfer_race_returns_winner_and_publishes(
    engine, karma_post, hub, test_db, monkeypatch,
):
    fulfiller = hub.subscribe([user_channel("bob")])
    engagement = await _awaiting(engine, karma_post)
    rival = KarmaTransaction(
        engagement_id=engagement.id, from_user_id="alice", to_user_id="bob",
        amount=10, type="post_completion",
    )
    test_db.add(rival)
    await test_db.commit()
    rival_id = rival.id

    find = engine.ledger.find_for_engagement
    calls = []

    async def miss_first(engagement_id):
        calls.append(engagement_id)
        return None if len(calls) == 1 else await find(engagement_id)
    monkeypatch.setattr(engine.ledger, "find_for_engagement", miss_first)

    confirmed, outcome = await engine.confirm_completion(engagement.id, "alice")

    assert confirmed.status == EngagementStatus.CONFIRMED.value
    assert outcome.status == SettlementStatus.SETTLED
    assert outcome.transaction_id == rival_id
    assert len(await _transactions(test_db, confirmed.id)) == 1
    [settlement] = _settlements(await _drain(fulfiller))
    assert settlement["transaction_id"] == str(rival_id)


async def test_sweep_rotates_past_permanent_failures(
    test_db, hub, make_post, build_engine,
):
    strict = build_engine(test_db, hub, allow_negative_balance=False)
    for owner in ("carol", "dave", "alice"):
        post = await make_post(owner_id=owner)
        engagement = await strict.accept_task(post.id, "bob")
        await strict.mark_completed(engagement.id, "bob")
        _, outcome = await strict.confirm_completion(engagement.id, owner)
        assert outcome.status == SettlementStatus.FAILED
    await strict.ledger.grant("alice", 50)

    first = await strict.settle_unsettled(limit=2)
    second = await strict.settle_unsettled(limit=2)

    assert [o.status for o in first] == [SettlementStatus.FAILED] * 2
    assert [o.status for o in second] == [
        SettlementStatus.SETTLED, SettlementStatus.FAILED,
    ]
    assert await strict.ledger.balance("bob") == 10


# ─── Queries & events ────────────────────────────────────────────

async def test_list_for_user_filters_by_status(engine, make_post):
    first = await engine.accept_task((await make_post()).id, "bob")
    await engine.accept_task((await make_post()).id, "bob")
    await engine.dispute(first.id, "bob", "sick")

    disputed = await engine.list_for_user("bob", EngagementStatus.DISPUTED)
    assert [e.id for e in disputed] == [first.id]
    assert len(await engine.list_for_user("alice")) == 2


async def test_events_published_to_both_parties(engine, karma_post, hub):
    owner = hub.subscribe([user_channel("alice")])
    fulfiller = hub.subscribe([user_channel("bob")])

    engagement = await _awaiting(engine, karma_post)
    await engine.confirm_completion(engagement.id, "alice")

    for sub in (owner, fulfiller):
        types = []
        while (event := await sub.get(timeout=0.05)) is not None:
            types.append(event.type)
        assert types == [
            RealtimeEventType.ENGAGEMENT,   # accepted
            RealtimeEventType.ENGAGEMENT,   # awaiting confirmation
            RealtimeEventType.ENGAGEMENT,   # confirmed
            RealtimeEventType.SETTLEMENT,
        ]
