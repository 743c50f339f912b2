"""Error Hierarchy: typed, categorized exceptions for every coordination failure mode.

Invariants:
    - Every error has a code (str), category (ErrorCategory), severity (ErrorSeverity)
    - Validation and state errors are fatal to the call but recoverable by the caller
    - to_response() produces the REST envelope; error_from_response() reverses it client-side
    - No internal details leaked in user-facing messages

Design Decisions:
    - Single hierarchy with KarmaFarmError base: one FastAPI handler catches all
    - ErrorContext as dataclass: observability fields without coupling to logging
    - retryable flag marks the only errors a client may retry blindly (NetworkError)
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from datetime import datetime, timezone


class ErrorSeverity(str, Enum):
    """Error severity for observability and client handling."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(str, Enum):
    """High-level error categories for routing and handling."""
    AUTH = "auth"
    VALIDATION = "validation"
    BUSINESS_RULE = "business_rule"
    RESOURCE_NOT_FOUND = "resource_not_found"
    DATABASE = "database"
    NETWORK = "network"
    INTERNAL = "internal"
    CONFLICT = "conflict"


@dataclass
class ErrorContext:
    """Rich context for error observability and debugging."""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    engagement_id: str | None = None
    post_id: str | None = None
    chat_id: str | None = None
    user_id: str | None = None
    debug_info: dict[str, Any] | None = None
    retry_after_ms: int | None = None


class KarmaFarmError(Exception):
    """Base exception for all Karma Farm coordination errors."""

    retryable: bool = False

    def __init__(
        self,
        message: str,
        code: str,
        category: ErrorCategory,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        context: ErrorContext | None = None,
        http_status: int = 500,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.category = category
        self.severity = severity
        self.context = context or ErrorContext()
        self.http_status = http_status

    def to_response(self) -> dict:
        """Convert to standardized REST error response."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "category": self.category.value,
                "severity": self.severity.value,
                "timestamp": self.context.timestamp.isoformat(),
                "context": {
                    "engagement_id": self.context.engagement_id,
                    "post_id": self.context.post_id,
                    "chat_id": self.context.chat_id,
                    "retry_after_ms": self.context.retry_after_ms,
                },
            }
        }


# ─── Auth Errors ────────────────────────────────────────────────

class AuthError(KarmaFarmError):
    """Missing, malformed, or expired bearer credential."""
    def __init__(self, message: str = "Authentication required", context: ErrorContext | None = None):
        super().__init__(
            message, "AUTH_ERROR", ErrorCategory.AUTH,
            ErrorSeverity.ERROR, context, 401,
        )


class NotParticipantError(KarmaFarmError):
    """Actor is not a party to the chat or engagement."""
    def __init__(self, resource_type: str, resource_id: str, context: ErrorContext | None = None):
        super().__init__(
            f"User is not a participant of {resource_type} '{resource_id}'",
            "NOT_PARTICIPANT", ErrorCategory.AUTH,
            ErrorSeverity.ERROR, context, 403,
        )


# ─── State Errors (409) ─────────────────────────────────────────

class StateConflictError(KarmaFarmError):
    """Conditional write lost: the stored state no longer matches the caller's expectation."""
    def __init__(
        self, expected: str, actual: str | None, context: ErrorContext | None = None,
    ):
        super().__init__(
            f"State changed (expected '{expected}', found '{actual}'), please refresh",
            "STATE_CONFLICT", ErrorCategory.CONFLICT,
            ErrorSeverity.WARNING, context, 409,
        )
        self.expected = expected
        self.actual = actual


class IllegalTransitionError(KarmaFarmError):
    """Action not allowed for the actor's role or the engagement's current state."""
    def __init__(
        self, action: str, current_status: str, role: str,
        context: ErrorContext | None = None,
    ):
        super().__init__(
            f"Cannot {action} engagement in status '{current_status}' as {role}",
            "ILLEGAL_TRANSITION", ErrorCategory.BUSINESS_RULE,
            ErrorSeverity.ERROR, context, 409,
        )
        self.action = action
        self.current_status = current_status
        self.role = role


class AlreadyEngagedError(KarmaFarmError):
    """Post already has an active engagement."""
    def __init__(self, post_id: str, context: ErrorContext | None = None):
        super().__init__(
            f"Post '{post_id}' already has an active engagement",
            "ALREADY_ENGAGED", ErrorCategory.CONFLICT,
            ErrorSeverity.ERROR, context, 409,
        )


class DuplicateRatingError(KarmaFarmError):
    """Rater already rated this engagement."""
    def __init__(self, engagement_id: str, rater_id: str, context: ErrorContext | None = None):
        super().__init__(
            f"User '{rater_id}' already rated engagement '{engagement_id}'",
            "DUPLICATE_RATING", ErrorCategory.CONFLICT,
            ErrorSeverity.ERROR, context, 409,
        )


# ─── Validation Errors (400) ────────────────────────────────────

class SelfEngagementError(KarmaFarmError):
    """Post owner tried to accept their own post."""
    def __init__(self, post_id: str, context: ErrorContext | None = None):
        super().__init__(
            f"Owner cannot accept their own post '{post_id}'",
            "SELF_ENGAGEMENT", ErrorCategory.VALIDATION,
            ErrorSeverity.ERROR, context, 400,
        )


class SelfChatError(KarmaFarmError):
    """Chat requested between a user and themselves."""
    def __init__(self, post_id: str, context: ErrorContext | None = None):
        super().__init__(
            f"Cannot open a chat with yourself on post '{post_id}'",
            "SELF_CHAT", ErrorCategory.VALIDATION,
            ErrorSeverity.ERROR, context, 400,
        )


class PostUnavailableError(KarmaFarmError):
    """Post is not open for acceptance."""
    def __init__(self, post_id: str, status: str, context: ErrorContext | None = None):
        super().__init__(
            f"Post '{post_id}' is not available (status '{status}')",
            "POST_UNAVAILABLE", ErrorCategory.BUSINESS_RULE,
            ErrorSeverity.ERROR, context, 400,
        )


class InvalidScoreError(KarmaFarmError):
    """Rating score outside the 1-5 range."""
    def __init__(self, score: int, context: ErrorContext | None = None):
        super().__init__(
            f"Score must be between 1 and 5, got {score}",
            "INVALID_SCORE", ErrorCategory.VALIDATION,
            ErrorSeverity.ERROR, context, 400,
        )
        self.score = score


class InvalidRateeError(KarmaFarmError):
    """Explicit ratee is not the rater's counterparty on the engagement."""
    def __init__(self, ratee_id: str, expected: str, context: ErrorContext | None = None):
        super().__init__(
            f"Ratee must be the other party '{expected}', got '{ratee_id}'",
            "INVALID_RATEE", ErrorCategory.VALIDATION,
            ErrorSeverity.ERROR, context, 400,
        )


class InvalidAmountError(KarmaFarmError):
    """Karma amount is not positive."""
    def __init__(self, amount: int, context: ErrorContext | None = None):
        super().__init__(
            f"Karma amount must be positive, got {amount}",
            "INVALID_AMOUNT", ErrorCategory.VALIDATION,
            ErrorSeverity.ERROR, context, 400,
        )
        self.amount = amount


class InsufficientFundsError(KarmaFarmError):
    """Derived balance too low and negative balances are disallowed."""
    def __init__(self, balance: int, amount: int, context: ErrorContext | None = None):
        super().__init__(
            f"Insufficient karma: balance {balance}, required {amount}",
            "INSUFFICIENT_FUNDS", ErrorCategory.BUSINESS_RULE,
            ErrorSeverity.ERROR, context, 400,
        )
        self.balance = balance
        self.amount = amount


class EmptyContentError(KarmaFarmError):
    """Message content is blank or whitespace-only."""
    def __init__(self, context: ErrorContext | None = None):
        super().__init__(
            "Message content cannot be empty",
            "EMPTY_CONTENT", ErrorCategory.VALIDATION,
            ErrorSeverity.ERROR, context, 400,
        )


class InvalidPostError(KarmaFarmError):
    """Post record failed required-field validation at the registry boundary."""
    def __init__(self, post_id: str, reason: str, context: ErrorContext | None = None):
        super().__init__(
            f"Post '{post_id}' is invalid: {reason}",
            "INVALID_POST", ErrorCategory.VALIDATION,
            ErrorSeverity.ERROR, context, 422,
        )


class ResourceNotFoundError(KarmaFarmError):
    """Requested resource does not exist."""
    def __init__(
        self, resource_type: str, resource_id: str, context: ErrorContext | None = None,
    ):
        super().__init__(
            f"{resource_type} '{resource_id}' not found",
            "RESOURCE_NOT_FOUND", ErrorCategory.RESOURCE_NOT_FOUND,
            ErrorSeverity.ERROR, context, 404,
        )


# ─── Infrastructure Errors (500-level) ──────────────────────────

class DatabaseError(KarmaFarmError):
    """Database operation failed."""
    def __init__(self, message: str, operation: str, context: ErrorContext | None = None):
        super().__init__(
            f"Database {operation} failed: {message}",
            "DATABASE_ERROR", ErrorCategory.DATABASE,
            ErrorSeverity.CRITICAL, context, 503,
        )
        self.operation = operation


class NetworkError(KarmaFarmError):
    """Transient transport failure between client and backend."""

    retryable = True

    def __init__(self, message: str, context: ErrorContext | None = None):
        super().__init__(
            f"Network error: {message}",
            "NETWORK_ERROR", ErrorCategory.NETWORK,
            ErrorSeverity.WARNING, context, 503,
        )


# Client-side decoding of the REST envelope back into typed errors.
ERROR_CODES: dict[str, type[KarmaFarmError]] = {
    "AUTH_ERROR": AuthError,
    "NOT_PARTICIPANT": NotParticipantError,
    "STATE_CONFLICT": StateConflictError,
    "ILLEGAL_TRANSITION": IllegalTransitionError,
    "ALREADY_ENGAGED": AlreadyEngagedError,
    "DUPLICATE_RATING": DuplicateRatingError,
    "SELF_ENGAGEMENT": SelfEngagementError,
    "SELF_CHAT": SelfChatError,
    "POST_UNAVAILABLE": PostUnavailableError,
    "INVALID_SCORE": InvalidScoreError,
    "INVALID_RATEE": InvalidRateeError,
    "INVALID_AMOUNT": InvalidAmountError,
    "INSUFFICIENT_FUNDS": InsufficientFundsError,
    "EMPTY_CONTENT": EmptyContentError,
    "INVALID_POST": InvalidPostError,
    "RESOURCE_NOT_FOUND": ResourceNotFoundError,
    "DATABASE_ERROR": DatabaseError,
}


def error_from_response(payload: dict, http_status: int) -> KarmaFarmError:
    """Rebuild a typed error from a REST error envelope (client side).

    Subclass constructors take domain arguments that the envelope no longer
    carries, so the instance is built from the base fields instead.
    """
    body = payload.get("error") or {}
    code = body.get("code", "INTERNAL_ERROR")
    cls = ERROR_CODES.get(code, KarmaFarmError)
    try:
        category = ErrorCategory(body.get("category", "internal"))
    except ValueError:
        category = ErrorCategory.INTERNAL
    try:
        severity = ErrorSeverity(body.get("severity", "error"))
    except ValueError:
        severity = ErrorSeverity.ERROR
    ctx_body = body.get("context") or {}
    context = ErrorContext(
        engagement_id=ctx_body.get("engagement_id"),
        post_id=ctx_body.get("post_id"),
        chat_id=ctx_body.get("chat_id"),
        retry_after_ms=ctx_body.get("retry_after_ms"),
    )
    error = cls.__new__(cls)
    KarmaFarmError.__init__(
        error,
        body.get("message", "Request failed"),
        code,
        category,
        severity,
        context,
        http_status,
    )
    return error
