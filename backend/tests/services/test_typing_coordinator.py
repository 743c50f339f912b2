"""Typing Coordinator: tests for debounced emission and timer-driven expiry.

Design Decisions:
    - Debounce tests inject a fake clock; timeout tests use short real timeouts
"""

import asyncio

import pytest

from karmafarm.core.domain_types import RealtimeEventType
from karmafarm.core.realtime_events import chat_channel
from karmafarm.services.typing_coordinator import TypingCoordinator


class _Clock:
    def __init__(self):
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return _Clock()


async def _typing_events(sub) -> list[tuple[str, bool]]:
    events = []
    while (event := await sub.get(timeout=0.02)) is not None:
        assert event.type == RealtimeEventType.TYPING
        events.append((event.data["user_id"], event.data["is_typing"]))
    return events


async def test_keystrokes_inside_debounce_emit_once(hub, clock):
    typing = TypingCoordinator(hub, timeout=3.0, debounce=0.5, clock=clock)
    sub = hub.subscribe([chat_channel("c1")])

    assert typing.start("c1", "bob")
    clock.now += 0.2
    assert not typing.start("c1", "bob")
    clock.now += 0.2
    assert not typing.start("c1", "bob")

    assert await _typing_events(sub) == [("bob", True)]
    typing.close()


async def test_two_typists_inside_window_each_emit_once(hub, clock):
    typing = TypingCoordinator(hub, timeout=3.0, debounce=0.5, clock=clock)
    sub = hub.subscribe([chat_channel("c1")])

    typing.start("c1", "alice")
    typing.start("c1", "alice")
    clock.now += 0.1
    typing.start("c1", "alice")

    assert await _typing_events(sub) == [("alice", True)]
    typing.close()


async def test_keystroke_after_debounce_emits_again(hub, clock):
    typing = TypingCoordinator(hub, timeout=3.0, debounce=0.5, clock=clock)
    typing.start("c1", "bob")
    clock.now += 0.6
    assert typing.start("c1", "bob")
    typing.close()


async def test_explicit_stop_emits_false_once(hub, clock):
    typing = TypingCoordinator(hub, timeout=3.0, debounce=0.5, clock=clock)
    sub = hub.subscribe([chat_channel("c1")])
    typing.start("c1", "bob")
    assert typing.stop("c1", "bob")
    assert not typing.stop("c1", "bob")
    assert await _typing_events(sub) == [("bob", True), ("bob", False)]


async def test_timeout_emits_false(hub):
    typing = TypingCoordinator(hub, timeout=0.05, debounce=0.01)
    sub = hub.subscribe([chat_channel("c1")])
    typing.start("c1", "bob")

    await asyncio.sleep(0.15)

    assert not typing.is_typing("c1", "bob")
    assert await _typing_events(sub) == [("bob", True), ("bob", False)]


async def test_activity_extends_timeout(hub):
    typing = TypingCoordinator(hub, timeout=0.1, debounce=1.0)
    typing.start("c1", "bob")
    await asyncio.sleep(0.06)
    typing.start("c1", "bob")
    await asyncio.sleep(0.06)
    assert typing.is_typing("c1", "bob")
    await asyncio.sleep(0.1)
    assert not typing.is_typing("c1", "bob")


async def test_stop_cancels_pending_timeout(hub):
    typing = TypingCoordinator(hub, timeout=0.05, debounce=0.01)
    sub = hub.subscribe([chat_channel("c1")])
    typing.start("c1", "bob")
    typing.stop("c1", "bob")
    await asyncio.sleep(0.1)
    assert await _typing_events(sub) == [("bob", True), ("bob", False)]


async def test_typing_is_tracked_per_chat_until_close(hub, clock):
    typing = TypingCoordinator(hub, timeout=3.0, clock=clock)
    typing.start("c1", "bob")
    typing.start("c1", "alice")
    typing.start("c2", "carol")
    assert typing.is_typing("c1", "alice") and typing.is_typing("c1", "bob")
    assert not typing.is_typing("c2", "bob")
    typing.close()
    assert not typing.is_typing("c1", "bob")
