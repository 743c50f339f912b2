"""API Dependencies: caller identity and per-request service composition.

Invariants:
    - Every coordination route resolves the caller through get_current_user (bearer JWT)
    - Process-wide components (hub, typing, presence, identity) live on app.state,
      composed once in the lifespan; per-request services wrap the request's AsyncSession

Design Decisions:
    - Plain Depends() factories over a DI container: the graph is four services deep
"""

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from karmafarm.config import get_settings
from karmafarm.core.domain_types import UserId
from karmafarm.infrastructure.database import get_db
from karmafarm.infrastructure.identity import parse_bearer
from karmafarm.infrastructure.realtime import RealtimeHub
from karmafarm.services.chat_coordinator import ChatCoordinator
from karmafarm.services.engagement_engine import TaskCompletionEngine
from karmafarm.services.karma_ledger import KarmaLedger
from karmafarm.services.post_registry import SqlPostRegistry
from karmafarm.services.presence_coordinator import PresenceCoordinator
from karmafarm.services.rating_aggregator import RatingAggregator
from karmafarm.services.typing_coordinator import TypingCoordinator


def get_current_user(request: Request) -> UserId:
    token = parse_bearer(request.headers.get("Authorization"))
    return request.app.state.identity.verify(token)


def get_hub(request: Request) -> RealtimeHub:
    return request.app.state.hub


def get_typing(request: Request) -> TypingCoordinator:
    return request.app.state.typing


def get_presence(request: Request) -> PresenceCoordinator:
    return request.app.state.presence


def get_ledger(db: AsyncSession = Depends(get_db)) -> KarmaLedger:
    return KarmaLedger(db, get_settings().karma_allow_negative_balance)


def get_engine(
    db: AsyncSession = Depends(get_db),
    ledger: KarmaLedger = Depends(get_ledger),
    hub: RealtimeHub = Depends(get_hub),
) -> TaskCompletionEngine:
    return TaskCompletionEngine(db, SqlPostRegistry(db), ledger, hub)


def get_ratings(db: AsyncSession = Depends(get_db)) -> RatingAggregator:
    return RatingAggregator(db)


def get_chats(
    db: AsyncSession = Depends(get_db),
    hub: RealtimeHub = Depends(get_hub),
    typing: TypingCoordinator = Depends(get_typing),
    presence: PresenceCoordinator = Depends(get_presence),
) -> ChatCoordinator:
    return ChatCoordinator(db, hub, typing, presence)
