"""Domain Types: rich types that replace bare primitives across the codebase.

Invariants:
    - PostId, EngagementId, ChatId, MessageId wrap UUIDs; UserId wraps the identity provider's opaque string
    - All valid states encoded as Enums, no raw string matching
    - ACTIVE_ENGAGEMENT_STATUSES and TERMINAL_ENGAGEMENT_STATUSES partition EngagementStatus

Design Decisions:
    - NewType over dataclass wrappers: zero runtime cost, full type-checker support
    - str Enums: serialize to JSON without custom encoders
"""

from enum import Enum
from typing import NewType
from uuid import UUID


# ─── Identity Types ──────────────────────────────────────────────

UserId = NewType("UserId", str)
PostId = NewType("PostId", UUID)
EngagementId = NewType("EngagementId", UUID)
ChatId = NewType("ChatId", UUID)
MessageId = NewType("MessageId", UUID)


# ─── Enums ───────────────────────────────────────────────────────

class EngagementStatus(str, Enum):
    """Engagement lifecycle states, maps to DB `status` column."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    CONFIRMED = "confirmed"
    DISPUTED = "disputed"


ACTIVE_ENGAGEMENT_STATUSES = frozenset({
    EngagementStatus.IN_PROGRESS,
    EngagementStatus.AWAITING_CONFIRMATION,
})
TERMINAL_ENGAGEMENT_STATUSES = frozenset({
    EngagementStatus.PENDING,
    EngagementStatus.CONFIRMED,
    EngagementStatus.DISPUTED,
})


class EngagementAction(str, Enum):
    """Actions a party can request on an engagement."""
    MARK_COMPLETED = "mark_completed"
    CONFIRM = "confirm"
    DISPUTE = "dispute"
    RATE = "rate"
    SETTLE = "settle"


class ActorRole(str, Enum):
    """Role of the acting user relative to an engagement."""
    OWNER = "owner"
    FULFILLER = "fulfiller"
    OUTSIDER = "outsider"


class RewardType(str, Enum):
    KARMA = "karma"
    CASH = "cash"


class PostStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class SettlementStatus(str, Enum):
    """Outcome of the ledger step that follows confirmation."""
    SETTLED = "settled"
    NOT_APPLICABLE = "not_applicable"
    FAILED = "failed"


class TransactionType(str, Enum):
    """Karma transaction kinds, as recorded in the ledger."""
    REWARD = "reward"
    POST_CREATION = "post_creation"
    POST_COMPLETION = "post_completion"
    TRANSFER = "transfer"
    SYSTEM_BONUS = "system_bonus"
    REFERRAL = "referral"


class HelpfulnessTag(str, Enum):
    """Qualities a rater can attach to a rating."""
    ON_TIME = "on_time"
    FRIENDLY = "friendly"
    SKILLED = "skilled"
    COMMUNICATIVE = "communicative"
    RELIABLE = "reliable"
    EFFICIENT = "efficient"


class ChatStatus(str, Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"


class RealtimeEventType(str, Enum):
    """Event kinds fanned out by the realtime hub."""
    MESSAGE = "message"
    TYPING = "typing"
    PRESENCE = "presence"
    READ = "read"
    ENGAGEMENT = "engagement"
    SETTLEMENT = "settlement"
    RESYNC = "resync"
