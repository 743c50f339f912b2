"""Presence Coordinator: tests for LWW updates and stream-driven presence."""

from datetime import datetime, timedelta, timezone

from karmafarm.core.domain_types import RealtimeEventType
from karmafarm.core.realtime_events import presence_channel
from karmafarm.services.presence_coordinator import PresenceCoordinator

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


async def test_online_update_is_published(hub):
    presence = PresenceCoordinator(hub)
    sub = hub.subscribe([presence_channel("bob")])
    state, applied = presence.set_online("bob", T0)
    assert applied and state.is_online

    event = await sub.get(timeout=1)
    assert event.type == RealtimeEventType.PRESENCE
    assert event.data["is_online"] is True


async def test_stale_update_is_dropped_and_not_published(hub):
    presence = PresenceCoordinator(hub)
    presence.set_offline("bob", T0 + timedelta(minutes=1))
    sub = hub.subscribe([presence_channel("bob")])

    state, applied = presence.set_online("bob", T0)

    assert not applied
    assert not state.is_online
    assert await sub.get(timeout=0.02) is None


async def test_naive_timestamps_treated_as_utc(hub):
    presence = PresenceCoordinator(hub)
    presence.set_online("bob", datetime(2026, 1, 1, 0, 0, 1))
    _, applied = presence.set_offline("bob", T0)
    assert not applied


async def test_last_stream_closing_sets_offline(hub):
    presence = PresenceCoordinator(hub)
    presence.connected("bob")
    presence.connected("bob")
    presence.disconnected("bob")
    assert presence.get("bob").is_online
    presence.disconnected("bob")
    assert not presence.get("bob").is_online


async def test_unbalanced_disconnect_is_ignored(hub):
    presence = PresenceCoordinator(hub)
    presence.disconnected("ghost")
    assert presence.get("ghost") is None
