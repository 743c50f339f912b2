"""Karma Farm API: FastAPI application entry point.

Invariants:
    - Routes registered explicitly (no auto-discovery)
    - Global error handlers map KarmaFarmError -> structured JSON responses
    - CORS configured from settings (not hardcoded)
    - Database, realtime hub, typing/presence coordinators and identity provider are
      composed once in the lifespan and exposed on app.state

Design Decisions:
    - Lifespan over @app.on_event: FastAPI recommended pattern, cleaner cleanup
    - Settlement reconciliation runs as a lifespan-owned task, cancelled on shutdown
"""

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from karmafarm.api.error_handlers import register_error_handlers
from karmafarm.api.routes import chats, engagements, events, health, ratings
from karmafarm.config import get_settings
from karmafarm.infrastructure import database
from karmafarm.infrastructure.database import init_db
from karmafarm.infrastructure.identity import JwtIdentityProvider
from karmafarm.infrastructure.observability import setup_logging
from karmafarm.infrastructure.realtime import RealtimeHub
from karmafarm.services.presence_coordinator import PresenceCoordinator
from karmafarm.services.settlement_sweeper import run_sweeper
from karmafarm.services.typing_coordinator import TypingCoordinator

logger = logging.getLogger(__name__)


def compose_state(app: FastAPI) -> None:
    """Attach the process-wide components to app.state."""
    settings = get_settings()
    hub = RealtimeHub(settings.realtime_queue_size, settings.realtime_replay_size)
    app.state.hub = hub
    app.state.typing = TypingCoordinator(
        hub, settings.typing_timeout_seconds, settings.typing_debounce_seconds,
    )
    app.state.presence = PresenceCoordinator(hub)
    app.state.identity = JwtIdentityProvider(settings.jwt_secret, settings.jwt_algorithm)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle."""
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format)
    init_db(
        settings.database_url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
    )
    compose_state(app)
    sweeper = None
    if settings.settlement_sweep_seconds > 0:
        sweeper = asyncio.create_task(run_sweeper(
            lambda: database.db_manager,
            settings.settlement_sweep_seconds,
            app.state.hub,
            settings.karma_allow_negative_balance,
        ))
    logger.info("Karma Farm API started")
    yield
    logger.info("Karma Farm API shutting down")
    if sweeper is not None:
        sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper
    app.state.typing.close()
    app.state.hub.close()
    if database.db_manager is not None:
        await database.db_manager.dispose()


app = FastAPI(
    title="Karma Farm API", version="1.0.0", lifespan=lifespan,
)

settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(engagements.router)
app.include_router(ratings.router)
app.include_router(chats.router)
app.include_router(events.router)

register_error_handlers(app)
