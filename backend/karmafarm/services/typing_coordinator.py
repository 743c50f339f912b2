"""Typing Coordinator: drives TypingState per (chat, user) with event-loop timers.

Invariants:
    - At most one pending timeout per (chat, user); every start() replaces it
    - typing=true is published only when TypingState.start() says so (debounced)
    - typing=false is published exactly once per typing episode: on explicit stop
      or on timeout, whichever comes first
    - Publishing is synchronous and never awaits subscribers

Design Decisions:
    - loop.call_later over a polling task: one handle per active typist, nothing
      runs while nobody types
    - A timer that fires marginally early (clock resolution) re-arms for the remainder
      instead of dropping the expiry
    - Process-wide instance composed in the lifespan and shared via app.state
"""

import asyncio
import logging
import time
from collections.abc import Callable

from karmafarm.core.domain_types import RealtimeEventType
from karmafarm.core.realtime_events import chat_channel
from karmafarm.core.typing_state import (
    DEFAULT_DEBOUNCE_SECONDS,
    DEFAULT_TIMEOUT_SECONDS,
    TypingState,
)
from karmafarm.infrastructure.realtime import RealtimeHub

logger = logging.getLogger(__name__)

_Key = tuple[str, str]


class TypingCoordinator:
    """Ephemeral typing indicators fanned out on chat channels."""

    def __init__(
        self,
        hub: RealtimeHub,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        debounce: float = DEFAULT_DEBOUNCE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.hub = hub
        self.timeout = timeout
        self.debounce = debounce
        self._clock = clock
        self._states: dict[_Key, TypingState] = {}
        self._timers: dict[_Key, asyncio.TimerHandle] = {}

    def start(self, chat_id: object, user_id: str) -> bool:
        """Keystroke activity. Returns True if typing=true was published."""
        key = (str(chat_id), user_id)
        state = self._states.get(key)
        if state is None:
            state = self._states[key] = TypingState(chat_id=key[0], user_id=user_id)
        emit = state.start(self._clock(), self.timeout, self.debounce)
        self._arm(key, self.timeout)
        if emit:
            self._publish(key, True)
        return emit

    def stop(self, chat_id: object, user_id: str) -> bool:
        """Explicit stop. Returns True if typing=false was published."""
        key = (str(chat_id), user_id)
        self._disarm(key)
        state = self._states.pop(key, None)
        if state is None or not state.stop():
            return False
        self._publish(key, False)
        return True

    def is_typing(self, chat_id: object, user_id: str) -> bool:
        state = self._states.get((str(chat_id), user_id))
        return state is not None and state.is_typing(self._clock())

    def close(self) -> None:
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        self._states.clear()

    def _arm(self, key: _Key, delay: float) -> None:
        self._disarm(key)
        loop = asyncio.get_running_loop()
        self._timers[key] = loop.call_later(max(delay, 0.0), self._on_timeout, key)

    def _disarm(self, key: _Key) -> None:
        handle = self._timers.pop(key, None)
        if handle is not None:
            handle.cancel()

    def _on_timeout(self, key: _Key) -> None:
        self._timers.pop(key, None)
        state = self._states.get(key)
        if state is None:
            return
        now = self._clock()
        if state.expire(now):
            del self._states[key]
            logger.debug("Typing timed out", extra={"chat_id": key[0], "user_id": key[1]})
            self._publish(key, False)
        elif state.expires_at is not None:
            self._arm(key, state.expires_at - now)

    def _publish(self, key: _Key, is_typing: bool) -> None:
        chat_id, user_id = key
        self.hub.publish(
            chat_channel(chat_id),
            RealtimeEventType.TYPING,
            {"chat_id": chat_id, "user_id": user_id, "is_typing": is_typing},
        )
