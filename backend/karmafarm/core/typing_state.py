"""Typing Indicator State: per (chat, user) idle/typing machine with debounce and timeout.

Invariants:
    - Two phases only: IDLE -> TYPING -> IDLE
    - start() in IDLE always emits typing=true; in TYPING it refreshes the timeout
      and emits again only when the debounce window since the last emission has passed
    - stop() emits typing=false only when leaving TYPING (never twice in a row)
    - expire() reverts to IDLE only once expires_at has passed
    - All methods are PURE w.r.t. time: callers pass `now` (monotonic seconds)

Design Decisions:
    - Return value is the emission decision (bool); the shell owns timers and publishing
    - TypingState is ephemeral and non-authoritative: nothing outside the indicator reads it
"""

from dataclasses import dataclass
from enum import Enum

DEFAULT_TIMEOUT_SECONDS: float = 3.0
DEFAULT_DEBOUNCE_SECONDS: float = 0.5


class TypingPhase(str, Enum):
    IDLE = "idle"
    TYPING = "typing"


@dataclass
class TypingState:
    """Soft, time-boxed claim that a user is typing in a chat."""
    chat_id: str
    user_id: str
    phase: TypingPhase = TypingPhase.IDLE
    expires_at: float | None = None
    last_emitted_at: float | None = None

    def start(
        self,
        now: float,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        debounce: float = DEFAULT_DEBOUNCE_SECONDS,
    ) -> bool:
        """Keystroke activity. Returns True if typing=true must be emitted."""
        self.expires_at = now + timeout
        if self.phase == TypingPhase.IDLE:
            self.phase = TypingPhase.TYPING
            self.last_emitted_at = now
            return True
        if self.last_emitted_at is None or now - self.last_emitted_at >= debounce:
            self.last_emitted_at = now
            return True
        return False

    def stop(self) -> bool:
        """Explicit stop (send, leave, typing=false). Returns True if typing=false must be emitted."""
        if self.phase != TypingPhase.TYPING:
            return False
        self._reset()
        return True

    def expire(self, now: float) -> bool:
        """Timeout check. Returns True if the claim lapsed and typing=false must be emitted."""
        if self.phase != TypingPhase.TYPING or self.expires_at is None:
            return False
        if now < self.expires_at:
            return False
        self._reset()
        return True

    def is_typing(self, now: float) -> bool:
        return (
            self.phase == TypingPhase.TYPING
            and self.expires_at is not None
            and now < self.expires_at
        )

    def _reset(self) -> None:
        self.phase = TypingPhase.IDLE
        self.expires_at = None
