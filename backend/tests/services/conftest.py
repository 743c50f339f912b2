"""Service test fixtures: async DB, seeded posts, auth headers, FastAPI test client.

Invariants:
    - Every test gets a fresh in-memory SQLite database
    - get_db dependency overridden to use test DB session
    - db_manager patched for code paths that open their own sessions (settlement sweep)
    - app.state composed per test: hub, typing and presence never leak between tests

Design Decisions:
    - SQLite in-memory for most tests; race tests use a file database (`race_factory`)
      because concurrent writers need separate connections and real locking
    - Tokens are minted with the same JwtIdentityProvider the app verifies with
"""

import pytest
from sqlalchemy.ext.asyncio import (
    AsyncSession, create_async_engine, async_sessionmaker,
)
from httpx import ASGITransport, AsyncClient

from karmafarm.config import get_settings
from karmafarm.db.base import Base
from karmafarm.infrastructure.database import get_db, DatabaseSessionManager
from karmafarm.infrastructure.identity import JwtIdentityProvider
from karmafarm.infrastructure.realtime import RealtimeHub
from karmafarm.models.post import Post
from karmafarm.services.engagement_engine import TaskCompletionEngine
from karmafarm.services.karma_ledger import KarmaLedger
from karmafarm.services.post_registry import SqlPostRegistry
import karmafarm.infrastructure.database as db_module
from karmafarm.main import app, compose_state


@pytest.fixture
async def test_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:", echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def test_session_factory(test_engine):
    return async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False,
    )


@pytest.fixture
async def test_db(test_session_factory):
    async with test_session_factory() as session:
        yield session


@pytest.fixture
async def race_factory(tmp_path):
    """Session factory over a file database, for concurrent-writer tests."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'race.db'}", echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def hub():
    hub = RealtimeHub(queue_size=16, replay_size=8)
    yield hub
    hub.close()


@pytest.fixture
def make_post(test_db):
    """Factory: insert a post and return it."""
    async def _make(
        owner_id: str = "alice",
        reward_type: str = "karma",
        karma_value: int | None = 10,
        payment_amount: float | None = None,
        status: str = "active",
        db: AsyncSession | None = None,
    ) -> Post:
        session = db or test_db
        post = Post(
            owner_id=owner_id,
            title="Help me move a couch",
            reward_type=reward_type,
            karma_value=karma_value,
            payment_amount=payment_amount,
            status=status,
        )
        session.add(post)
        await session.commit()
        await session.refresh(post)
        return post
    return _make


@pytest.fixture
async def karma_post(make_post):
    return await make_post()


@pytest.fixture
def build_engine():
    """Factory: TaskCompletionEngine over any session (race tests open their own)."""
    def _build(db: AsyncSession, hub: RealtimeHub | None = None, **ledger_kwargs):
        return TaskCompletionEngine(
            db, SqlPostRegistry(db), KarmaLedger(db, **ledger_kwargs), hub,
        )
    return _build


@pytest.fixture
def engine(test_db, hub, build_engine):
    return build_engine(test_db, hub)


@pytest.fixture
def identity():
    settings = get_settings()
    return JwtIdentityProvider(settings.jwt_secret, settings.jwt_algorithm)


@pytest.fixture
def auth(identity):
    """auth("bob") -> Authorization header dict for bob."""
    def _headers(user_id: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {identity.issue_token(user_id)}"}
    return _headers


@pytest.fixture
async def client(test_engine, test_session_factory):
    """FastAPI test client with DB dependency overridden."""
    async def override_get_db():
        async with test_session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db

    original_manager = db_module.db_manager
    fake_manager = DatabaseSessionManager.__new__(DatabaseSessionManager)
    fake_manager.engine = test_engine
    fake_manager._session_factory = test_session_factory
    db_module.db_manager = fake_manager

    compose_state(app)

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test",
    ) as c:
        yield c

    app.state.typing.close()
    app.state.hub.close()
    app.dependency_overrides.clear()
    db_module.db_manager = original_manager
