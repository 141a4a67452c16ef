"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

``RideRepository`` is the persistence contract of the ride core:

* ``get``  returns a *fresh copy* of the aggregate on every call,
* ``save`` is a compare-and-set on ``Ride.version`` and raises
  ``ConflictError`` when another writer got there first.

The SQL implementations receive an ``AsyncSession`` (unit-of-work).  Each
``add`` / ``save`` commits, so a transition is durable before anything is
broadcast about it.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterable, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import RideModel, UserModel
from src.domain.entities import (
    Approval,
    Passenger,
    Pricing,
    Ride,
    Route,
    Safety,
    UserIdentity,
)
from src.domain.enums import RideStatus, UserRole
from src.domain.errors import ConflictError, RideNotFound


class RideRepository(ABC):
    @abstractmethod
    async def get(self, ride_id: int) -> Ride: ...

    @abstractmethod
    async def add(self, ride: Ride) -> Ride: ...

    @abstractmethod
    async def save(self, ride: Ride) -> Ride: ...

    @abstractmethod
    async def list_by_status(
        self, statuses: Iterable[RideStatus], limit: int = 100
    ) -> list[Ride]:
        """Rides in any of *statuses*, newest first."""

    @abstractmethod
    async def find_by_driver(
        self, driver_id: int, statuses: Iterable[RideStatus]
    ) -> Optional[Ride]: ...


class UserDirectory(ABC):
    @abstractmethod
    async def get_user(self, user_id: int) -> Optional[UserIdentity]: ...


# ── Row <-> aggregate mapping ─────────────────────────────────────────


def ride_from_row(row: RideModel) -> Ride:
    return Ride(
        id=row.id,
        driver_id=row.driver_id,
        route=Route.from_document(row.route or {}),
        passengers=[Passenger.from_document(p) for p in row.passengers or []],
        approvals=[Approval.from_document(a) for a in row.approvals or []],
        status=RideStatus(row.status),
        pricing=Pricing(
            base_fare=row.base_fare or 0.0,
            current_total=row.current_total or 0.0,
        ),
        safety=Safety(otp=row.otp, is_verified=bool(row.otp_verified)),
        seats_requested=row.seats_requested,
        max_passengers=row.max_passengers,
        version=row.version,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def ride_columns(ride: Ride) -> dict:
    return {
        "driver_id": ride.driver_id,
        "route": ride.route.to_document(),
        "passengers": [p.to_document() for p in ride.passengers],
        "approvals": [a.to_document() for a in ride.approvals],
        "status": ride.status,
        "base_fare": ride.pricing.base_fare,
        "current_total": ride.pricing.current_total,
        "otp": ride.safety.otp,
        "otp_verified": ride.safety.is_verified,
        "seats_requested": ride.seats_requested,
        "max_passengers": ride.max_passengers,
    }


# ── SQLAlchemy implementations ────────────────────────────────────────


class SqlRideRepository(RideRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, ride_id: int) -> Ride:
        result = await self.session.execute(
            select(RideModel)
            .where(RideModel.id == ride_id)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        if row is None:
            raise RideNotFound(f"Ride {ride_id} not found")
        return ride_from_row(row)

    async def add(self, ride: Ride) -> Ride:
        row = RideModel(**ride_columns(ride), version=0)
        self.session.add(row)
        await self.session.commit()
        await self.session.refresh(row)
        return ride_from_row(row)

    async def save(self, ride: Ride) -> Ride:
        """Write the aggregate iff nobody saved it since it was loaded."""
        result = await self.session.execute(
            update(RideModel)
            .where(RideModel.id == ride.id, RideModel.version == ride.version)
            .values(**ride_columns(ride), version=RideModel.version + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.session.rollback()
            exists = await self.session.scalar(
                select(RideModel.id).where(RideModel.id == ride.id)
            )
            if exists is None:
                raise RideNotFound(f"Ride {ride.id} not found")
            raise ConflictError(
                f"Ride {ride.id} was modified concurrently (version {ride.version} is stale)"
            )
        await self.session.commit()
        return await self.get(ride.id)

    async def list_by_status(
        self, statuses: Iterable[RideStatus], limit: int = 100
    ) -> list[Ride]:
        result = await self.session.execute(
            select(RideModel)
            .where(RideModel.status.in_(list(statuses)))
            .order_by(RideModel.created_at.desc(), RideModel.id.desc())
            .limit(limit)
        )
        return [ride_from_row(row) for row in result.scalars().all()]

    async def find_by_driver(
        self, driver_id: int, statuses: Iterable[RideStatus]
    ) -> Optional[Ride]:
        result = await self.session.execute(
            select(RideModel)
            .where(
                RideModel.driver_id == driver_id,
                RideModel.status.in_(list(statuses)),
            )
            .order_by(RideModel.created_at.desc(), RideModel.id.desc())
            .limit(1)
        )
        row = result.scalar_one_or_none()
        return ride_from_row(row) if row else None


class UserRepository(UserDirectory):
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_user(self, user_id: int) -> Optional[UserIdentity]:
        user = await self.session.get(UserModel, user_id)
        if user is None:
            return None
        return UserIdentity(
            id=user.id,
            name=user.name,
            role=UserRole(user.role),
            vehicle=user.vehicle,
        )
