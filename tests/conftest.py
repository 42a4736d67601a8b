"""
Shared pytest fixtures for SkyIntel tests.

Provides fixtures for database sessions, storage backends, HTTP clients
and sample aircraft data.
"""
import os
import pytest
import pytest_asyncio
from typing import AsyncGenerator
from datetime import datetime, timezone
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment variables before importing app
os.environ.setdefault('DATABASE_URL', 'sqlite+aiosqlite:///:memory:')
os.environ.setdefault('ULTRAFEEDER_HOST', 'ultrafeeder')
os.environ.setdefault('ULTRAFEEDER_PORT', '80')
os.environ.setdefault('CRON_SECRET', 'test-cron-secret')
os.environ.setdefault('POLLING_ENABLED', 'false')
os.environ.setdefault('CONTEXT_ENRICHMENT_ENABLED', 'true')

from skyintel.main import app
from skyintel.core.cache import clear_cache
from skyintel.core.database import Base, get_session_factory
from skyintel.domain import AircraftState
from skyintel.routers.cron import get_fetcher
from skyintel.services.storage import MemoryStorage, SqlStorage
from skyintel import models  # noqa: F401


FIXED_NOW = datetime(2024, 12, 21, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture(scope="session")
def anyio_backend():
    """Use asyncio for async tests."""
    return "asyncio"


@pytest.fixture(autouse=True)
def reset_cache():
    """Context lookups are memoised process-wide; start each test empty."""
    clear_cache()
    yield
    clear_cache()


@pytest.fixture
def fixed_now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def make_state():
    """Factory for aircraft states with sensible defaults."""
    def _make(
        aircraft_id: str = "a12345",
        latitude: float = 47.6062,
        longitude: float = -122.3321,
        observed_at: datetime = FIXED_NOW,
        **kwargs,
    ) -> AircraftState:
        kwargs.setdefault("icao_hex", aircraft_id)
        return AircraftState(
            aircraft_id=aircraft_id,
            latitude=latitude,
            longitude=longitude,
            observed_at=observed_at,
            **kwargs,
        )
    return _make


# =============================================================================
# Database and storage
# =============================================================================

@pytest_asyncio.fixture
async def db_engine():
    """Create async test database engine with a fresh in-memory schema."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine) -> async_sessionmaker:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Session for seeding tables directly."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def sql_storage(session_factory) -> SqlStorage:
    return SqlStorage(session_factory)


@pytest.fixture
def memory_storage() -> MemoryStorage:
    return MemoryStorage()


@pytest_asyncio.fixture(params=["memory", "sql"])
async def storage(request, memory_storage, sql_storage):
    """Run a test against both storage backends."""
    if request.param == "memory":
        return memory_storage
    return sql_storage


# =============================================================================
# HTTP client
# =============================================================================

class FakeFeed:
    """Stand-in ingestion function returning preset states."""

    def __init__(self):
        self.states: list[AircraftState] = []
        self.error: Exception | None = None
        self.calls = 0

    async def __call__(self, now: datetime) -> list[AircraftState]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.states)


@pytest.fixture
def fake_feed() -> FakeFeed:
    return FakeFeed()


@pytest_asyncio.fixture
async def client(session_factory, fake_feed) -> AsyncGenerator[AsyncClient, None]:
    """Create async test client wired to the test database and a fake feed."""
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_fetcher] = lambda: fake_feed

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


# =============================================================================
# Sample Aircraft Data Fixtures
# =============================================================================

@pytest.fixture
def sample_aircraft_data():
    """Sample aircraft.json response from ultrafeeder."""
    return {
        "now": 1734782400.0,  # 2024-12-21T12:00:00Z
        "messages": 123456,
        "aircraft": [
            {
                "hex": "A12345",
                "flight": "UAL123  ",
                "lat": 47.95,
                "lon": -121.95,
                "alt_baro": 35000,
                "alt_geom": 35100,
                "gs": 450,
                "track": 180,
                "baro_rate": -500,
                "seen_pos": 0.4,
            },
            {
                "hex": "ae1234",
                "flight": "RCH001  ",
                "lat": 47.90,
                "lon": -121.90,
                "alt_baro": 25000,
                "gs": 380,
                "track": 90,
                "track_rate": 1.5,
                "geom_rate": 1500,
                "seen_pos": 2.0,
            },
            {
                "hex": "b99999",
                "lat": 47.94,
                "lon": -121.97,
                "alt_baro": "ground",
                "gs": 12,
            },
            {
                "hex": "c00001",
                "flight": "NOPOS",
                "alt_baro": 12000,
            },
        ]
    }
