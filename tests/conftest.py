from datetime import date, datetime, timedelta, timezone

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import habitpulse.models  # noqa: F401
from habitpulse.database import Base, get_db
from habitpulse.main import app
from habitpulse.models import User, HabitLog
from habitpulse.services.cache_service import analytics_cache
from habitpulse.services.habit_service import HabitService

TODAY = date(2024, 3, 20)  # a Wednesday


def at_noon(d: date) -> datetime:
    return datetime(d.year, d.month, d.day, 12, tzinfo=timezone.utc)


@pytest.fixture
def today():
    return TODAY


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture(autouse=True)
def clean_cache():
    analytics_cache.reset()
    yield
    analytics_cache.reset()


@pytest.fixture
async def user(db):
    u = User(id=1, username="alice", timezone="UTC")
    db.add(u)
    await db.commit()
    return u


@pytest.fixture
def make_habit(db, user):
    async def _make(name="Read", created_days_ago=30, **fields):
        data = {"name": name, "created_at": at_noon(TODAY - timedelta(days=created_days_ago)), **fields}
        return await HabitService.create(db, user.id, data)
    return _make


@pytest.fixture
def add_logs(db, user):
    """Insert logs directly, bypassing check-in (no streak recompute)."""
    async def _add(habit, days, completed=True, value=None):
        for d in days:
            db.add(HabitLog(habit_id=habit.id, user_id=user.id, date=d, completed=completed, value=value))
        await db.commit()
    return _add


@pytest.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
