"""
Test Configuration: fixtures for async DB, test client, and seeded accounts.

Uses per-test transactions with SAVEPOINT/rollback so each test gets a
clean database state while sharing the same session-level schema.
"""

import uuid

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

from api.deps import get_current_user, get_db
from api.main import app
from core.config import get_settings
from db.session import Base

# In-memory SQLite; the partial unique index is created via sqlite_where.
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

USER_ID = "00000000-0000-0000-0000-000000000001"
OTHER_USER_ID = "00000000-0000-0000-0000-000000000002"


@pytest.fixture(autouse=True)
def fresh_settings():
    """Drop settings cached by a test that changed the environment."""
    yield
    get_settings.cache_clear()


@pytest.fixture(scope="session")
async def test_engine():
    """Create a test database engine and build all tables once."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def test_db(test_engine):
    """Create a test session wrapped in a transaction that rolls back after each test."""
    async with test_engine.connect() as conn:
        trans = await conn.begin()
        session = AsyncSession(bind=conn, expire_on_commit=False)

        # Use SAVEPOINT so nested commits inside app code don't end our transaction
        @event.listens_for(session.sync_session, "after_transaction_end")
        def restart_savepoint(db_session, transaction):
            if transaction.nested and not transaction._parent.nested:
                session.sync_session.begin_nested()

        await conn.begin_nested()  # SAVEPOINT

        yield session

        await session.close()
        await trans.rollback()


@pytest.fixture
def mock_user():
    """Mock authenticated user (matches the seeded owner)."""
    return {
        "sub": USER_ID,
        "email": "owner@shoplens.test",
        "role": "client",
    }


@pytest.fixture
async def client(test_db, mock_user):
    """Create an async test client with dependency overrides."""

    async def override_get_db():
        yield test_db

    def override_get_current_user():
        return mock_user

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def no_dispatch(monkeypatch):
    """Capture queue dispatches instead of talking to the broker."""
    dispatched: list[uuid.UUID] = []
    monkeypatch.setattr("analysis.admission.dispatch_analysis", dispatched.append)
    return dispatched


@pytest.fixture
async def seeded_db(test_db):
    """Seed an owner with a store, three credits and one pending suggestion.

    Returns plain ids next to the rows; after a service-level rollback the
    rows are expired and must be re-read.
    """
    from db.models import Store, User
    from suggestions.lifecycle import create_suggestion

    user = User(
        user_id=uuid.UUID(USER_ID),
        email="owner@shoplens.test",
        name="Store Owner",
        role="client",
        credits=3,
    )
    other = User(
        user_id=uuid.UUID(OTHER_USER_ID),
        email="other@shoplens.test",
        name="Other Owner",
        role="client",
        credits=0,
    )
    test_db.add_all([user, other])
    await test_db.flush()

    store = Store(user_id=user.user_id, name="Loja Centro", platform="nuvemshop")
    other_store = Store(user_id=other.user_id, name="Outra Loja", platform="nuvemshop")
    test_db.add_all([store, other_store])
    await test_db.flush()

    user.active_store_id = store.store_id
    other.active_store_id = other_store.store_id
    await test_db.flush()

    suggestion = await create_suggestion(
        test_db,
        user,
        store.store_id,
        title="Bundle slow movers",
        description="Pair low-turnover items with best sellers",
        category="product",
        priority=1,
        expected_impact="high",
        recommended_action=["a", "b", "c"],
    )

    await test_db.commit()

    return {
        "user": user,
        "user_id": user.user_id,
        "other_user_id": other.user_id,
        "store": store,
        "store_id": store.store_id,
        "other_store_id": other_store.store_id,
        "suggestion": suggestion,
        "suggestion_id": suggestion.suggestion_id,
    }
