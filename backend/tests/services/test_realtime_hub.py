"""Realtime Hub: tests for fan-out, per-channel sequencing, replay and lag handling.

Invariants:
    - publish() never blocks, whatever the subscribers do
    - Replay from a cursor inside the buffer is gap-free; outside it yields RESYNC
    - An overflowing subscriber gets one RESYNC per channel instead of its backlog
"""

from karmafarm.core.domain_types import RealtimeEventType
from karmafarm.infrastructure.realtime import RealtimeHub

MSG = RealtimeEventType.MESSAGE


def _drain(sub) -> list:
    events = []
    while not sub._queue.empty():
        item = sub._queue.get_nowait()
        if item is not None:
            events.append(item)
    return events


async def test_sequences_increase_per_channel():
    hub = RealtimeHub()
    assert hub.publish("chat:1", MSG, {}).sequence == 1
    assert hub.publish("chat:1", MSG, {}).sequence == 2
    assert hub.publish("chat:2", MSG, {}).sequence == 1
    assert hub.head("chat:1") == 2
    assert hub.head("chat:unknown") == 0


async def test_subscribers_receive_only_their_channels(hub):
    sub = hub.subscribe(["chat:1"])
    hub.publish("chat:1", MSG, {"n": 1})
    hub.publish("chat:2", MSG, {"n": 2})
    event = await sub.get(timeout=1)
    assert event.data == {"n": 1}
    assert await sub.get(timeout=0.05) is None


async def test_merged_subscription_receives_all_channels(hub):
    sub = hub.subscribe(["chat:1", "presence:bob"])
    hub.publish("chat:1", MSG, {})
    hub.publish("presence:bob", RealtimeEventType.PRESENCE, {})
    channels = [e.channel for e in _drain(sub)]
    assert channels == ["chat:1", "presence:bob"]


async def test_replay_from_position_inside_buffer(hub):
    for n in range(5):
        hub.publish("chat:1", MSG, {"n": n})
    sub = hub.subscribe(["chat:1"], since={"chat:1": 3})
    assert [e.sequence for e in _drain(sub)] == [4, 5]


async def test_replay_at_head_delivers_nothing(hub):
    hub.publish("chat:1", MSG, {})
    sub = hub.subscribe(["chat:1"], since={"chat:1": 1})
    assert _drain(sub) == []


async def test_replay_gap_yields_resync_with_head(hub):
    # replay_size=8 in the fixture: events 1..12 leave 5..12 buffered
    for _ in range(12):
        hub.publish("chat:1", MSG, {})
    sub = hub.subscribe(["chat:1"], since={"chat:1": 2})
    [event] = _drain(sub)
    assert event.type == RealtimeEventType.RESYNC
    assert event.data == {"reason": "replay_gap", "head": 12}


async def test_position_beyond_head_yields_resync(hub):
    hub.publish("chat:1", MSG, {})
    sub = hub.subscribe(["chat:1"], since={"chat:1": 99})
    [event] = _drain(sub)
    assert event.type == RealtimeEventType.RESYNC
    assert event.data == {"reason": "unknown_position", "head": 1}


async def test_slow_subscriber_is_collapsed_into_resync():
    hub = RealtimeHub(queue_size=4, replay_size=50)
    sub = hub.subscribe(["chat:1", "presence:bob"])
    for _ in range(10):
        hub.publish("chat:1", MSG, {})
    events = _drain(sub)
    assert sub.lagged
    resyncs = [e for e in events if e.type == RealtimeEventType.RESYNC]
    assert {e.channel for e in resyncs} == {"chat:1", "presence:bob"}
    assert len(events) <= 4


async def test_publish_without_subscribers_does_not_fail(hub):
    event = hub.publish("chat:nobody", MSG, {"x": 1})
    assert event.sequence == 1


async def test_close_ends_iteration(hub):
    sub = hub.subscribe(["chat:1"])
    hub.publish("chat:1", MSG, {"n": 1})
    received = []

    async def consume():
        async for event in sub:
            received.append(event)
            sub.close()

    await consume()
    assert len(received) == 1
    assert sub.closed


async def test_closed_subscription_receives_nothing(hub):
    sub = hub.subscribe(["chat:1"])
    sub.close()
    hub.publish("chat:1", MSG, {})
    assert await sub.get(timeout=0.05) is None


async def test_hub_close_ends_all_subscriptions(hub):
    a = hub.subscribe(["chat:1"])
    b = hub.subscribe(["chat:2"])
    hub.close()
    assert a.closed and b.closed
