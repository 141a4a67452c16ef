"""
Shared test fixtures.

Service, API and WebSocket tests run against the in-memory repositories and
broadcaster so no PostgreSQL / Redis is needed.  The SQL repository is
exercised against an in-memory SQLite database (via aiosqlite) built from
the production models.
"""

from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from src.domain.entities import UserIdentity
from src.domain.enums import UserRole
from src.infrastructure import models  # noqa: F401  (registers the tables)
from src.infrastructure.database import Base
from src.infrastructure.locks import LocalRideLocks
from src.infrastructure.memory import InMemoryRideRepository, InMemoryUserDirectory
from src.realtime.broadcaster import Event, InMemoryBroadcaster
from src.services.ride_service import RideService


# ── Test DB (SQLite in-memory) ────────────────────────────────────────

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"

test_engine = create_async_engine(TEST_DB_URL, echo=False)
TestSessionFactory = async_sessionmaker(
    test_engine, class_=AsyncSession, expire_on_commit=False
)


# ── Cast ──────────────────────────────────────────────────────────────

ASHA = UserIdentity(1, "Asha")
BILAL = UserIdentity(2, "Bilal")
CHEN = UserIdentity(3, "Chen")
DEEPA = UserIdentity(4, "Deepa")
DRIVER = UserIdentity(10, "Dinesh", UserRole.DRIVER, {"model": "Dzire", "plate": "MH 01 X 1"})
OTHER_DRIVER = UserIdentity(11, "Farhan", UserRole.DRIVER)


def point(lng: float, lat: float, name: str = "") -> dict:
    """Client-style location: coordinates in GeoJSON ``[lng, lat]`` order."""
    return {"name": name, "coordinates": [lng, lat]}


class RecordingBroadcaster(InMemoryBroadcaster):
    """In-memory broadcaster that also keeps every published event."""

    def __init__(self):
        super().__init__()
        self.published: list[Event] = []

    async def publish(self, event: Event) -> None:
        self.published.append(event)
        await super().publish(event)

    def events(self, name: Optional[str] = None, room: Optional[str] = None) -> list[Event]:
        return [
            e
            for e in self.published
            if (name is None or e.name == name) and (room is None or e.room == room)
        ]

    def clear(self) -> None:
        self.published.clear()


# ── Fixtures ──────────────────────────────────────────────────────────


@pytest.fixture
def users() -> InMemoryUserDirectory:
    return InMemoryUserDirectory([ASHA, BILAL, CHEN, DEEPA, DRIVER, OTHER_DRIVER])


@pytest.fixture
def ride_repo() -> InMemoryRideRepository:
    return InMemoryRideRepository()


@pytest.fixture
def broadcaster() -> RecordingBroadcaster:
    return RecordingBroadcaster()


@pytest.fixture
def service(ride_repo, users, broadcaster) -> RideService:
    return RideService(ride_repo, users, broadcaster, locks=LocalRideLocks())


@pytest.fixture
def app(ride_repo, users, broadcaster):
    """FastAPI app wired to the in-memory collaborators."""
    from src.api.app import create_app
    from src.api.dependencies import get_ride_repository, get_user_directory

    application = create_app()
    application.state.broadcaster = broadcaster
    application.dependency_overrides[get_ride_repository] = lambda: ride_repo
    application.dependency_overrides[get_user_directory] = lambda: users
    return application


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create tables, yield a session, then drop everything."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with TestSessionFactory() as session:
        yield session

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
