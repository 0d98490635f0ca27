"""
Shared pytest configuration for courtside tests.

Each test gets a fresh SQLite database file (BEGIN IMMEDIATE transactions,
so concurrent sessions serialize the way they would on a real server).
Set TEST_DATABASE_URL to run against PostgreSQL instead.

SAFETY: a TEST_DATABASE_URL whose database name does not contain "test" is
refused, so a misconfigured environment can never drop real tables.
"""

import os

os.environ.setdefault("ENV", "test")

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

from courtside.database import db  # noqa: E402
from courtside.database.db import Base, build_engine  # noqa: E402
from courtside.database.models import Gender, PlayerProfile, PlayerRating, Sport, Venue  # noqa: E402
from courtside.services import matchmaking_service, subscription_service  # noqa: E402
from courtside.tests.factories import criteria  # noqa: E402
from courtside.utils.constants import INITIAL_RATING  # noqa: E402


def _resolve_test_database_url(tmp_path) -> str:
    """Build the test database URL with safety checks.

    Raises ``RuntimeError`` if TEST_DATABASE_URL points at a database whose
    name does not contain "test".
    """
    url = os.getenv("TEST_DATABASE_URL")
    if not url:
        return f"sqlite+aiosqlite:///{tmp_path / 'courtside_test.db'}"

    db_name = url.rsplit("/", 1)[-1].split("?")[0]  # strip query params
    if "test" not in db_name.lower():
        raise RuntimeError(
            f"SAFETY: Refusing to run tests against database '{db_name}'. "
            f"The database name must contain 'test'."
        )
    return url


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """Create a test database engine with all tables."""
    engine = build_engine(_resolve_test_database_url(tmp_path), echo=False, poolclass=NullPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    # Point code that opens its own sessions (sweeper, websocket routes)
    # at the test engine
    test_session_maker = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )
    original_async_session_local = db.AsyncSessionLocal
    db.AsyncSessionLocal = test_session_maker

    yield engine

    db.AsyncSessionLocal = original_async_session_local
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(test_engine):
    """Session factory bound to the test engine, for tests needing several sessions."""
    return db.AsyncSessionLocal


@pytest_asyncio.fixture
async def db_session(session_factory):
    """A database session for the test; rolled back and closed afterwards."""
    async with session_factory() as session:
        try:
            yield session
        finally:
            await session.rollback()
            await session.close()


@pytest.fixture(autouse=True)
def fresh_subscription_manager():
    """Give every test its own subscription manager."""
    subscription_service._subscription_manager = None
    yield
    subscription_service._subscription_manager = None


@pytest_asyncio.fixture
async def sport(db_session):
    """An active sport."""
    badminton = Sport(name="Badminton", icon="🏸", players_required=2, is_active=True)
    db_session.add(badminton)
    await db_session.commit()
    return badminton


@pytest_asyncio.fixture
async def venue(db_session):
    """An active venue."""
    v = Venue(name="Central Sports Hall", city="Jakarta", latitude=-6.2, longitude=106.8)
    db_session.add(v)
    await db_session.commit()
    return v


@pytest_asyncio.fixture
async def make_player(db_session, sport):
    """Factory: create a player with a rating in the test sport, return user_id."""

    async def _make_player(
        name: str,
        rating: int = INITIAL_RATING,
        gender: Gender = Gender.UNSPECIFIED,
        games_played: int = 0,
    ) -> int:
        player = PlayerProfile(name=name, gender=gender)
        db_session.add(player)
        await db_session.flush()
        db_session.add(
            PlayerRating(
                user_id=player.user_id,
                sport_id=sport.id,
                rating=rating,
                games_played=games_played,
                wins=0,
                losses=0,
            )
        )
        await db_session.commit()
        return player.user_id

    return _make_player


@pytest_asyncio.fixture
async def matched_pair(db_session, make_player, sport):
    """Two fresh players (1400 and 1500) already paired into a pending match."""
    alice = await make_player("Alice", 1400)
    bob = await make_player("Bob", 1500)
    await matchmaking_service.join_queue(db_session, alice, sport.id, criteria())
    entry = await matchmaking_service.join_queue(db_session, bob, sport.id, criteria())
    assert entry.match_id is not None
    return {"match_id": entry.match_id, "alice": alice, "bob": bob}
