"""FastAPI dependency injection helpers."""

from typing import Optional

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import settings
from src.domain.entities import UserIdentity
from src.infrastructure.database import async_session_factory
from src.infrastructure.repositories import (
    RideRepository,
    SqlRideRepository,
    UserDirectory,
    UserRepository,
)
from src.services.ride_service import RideService


async def get_db() -> AsyncSession:  # type: ignore[misc]
    """Yield an async DB session; commit on success, rollback on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_ride_repository(
    db: AsyncSession = Depends(get_db),
) -> RideRepository:
    return SqlRideRepository(db)


async def get_user_directory(
    db: AsyncSession = Depends(get_db),
) -> UserDirectory:
    return UserRepository(db)


def get_ride_service(
    request: Request,
    rides: RideRepository = Depends(get_ride_repository),
    users: UserDirectory = Depends(get_user_directory),
) -> RideService:
    state = request.app.state
    return RideService(
        rides,
        users,
        state.broadcaster,
        fare_engine=state.fare_engine,
        locks=state.ride_locks,
        max_attempts=settings.conflict_retry_attempts,
        max_passengers=settings.max_passengers,
        default_base_fare=settings.default_base_fare,
    )


async def get_current_user(
    x_user_id: Optional[int] = Header(None),
    users: UserDirectory = Depends(get_user_directory),
) -> UserIdentity:
    """Resolve the caller from ``X-User-Id`` (authentication lives upstream)."""
    if x_user_id is None:
        raise HTTPException(status_code=401, detail="X-User-Id header required")
    user = await users.get_user(x_user_id)
    if user is None:
        raise HTTPException(status_code=401, detail=f"Unknown user {x_user_id}")
    return user
